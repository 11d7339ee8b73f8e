# src/mobsf_proxy/engine/models.py
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CachedReport(Base):
    __tablename__ = 'cached_reports'
    job_id = Column(String, primary_key=True)
    format = Column(String, primary_key=True)  # json | pdf
    storage_path = Column(String, nullable=False)
    retrieved_at = Column(DateTime, default=datetime.utcnow, nullable=False)
