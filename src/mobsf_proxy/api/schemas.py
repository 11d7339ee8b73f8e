# src/mobsf_proxy/api/schemas.py
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ScanRequest(BaseModel):
    hash: Optional[str] = Field(None, description="Job identifier (MobSF hash) returned by upload")
    re_scan: bool = Field(False, description="Ask the engine to scan again even if a result exists")
    watch: bool = Field(True, description="Start a server-side watch that saves the JSON report on completion")


class HashRequest(BaseModel):
    hash: Optional[str] = Field(None, description="Job identifier (MobSF hash)")


class UploadResult(BaseModel):
    hash: str
    file_name: str


class ScanStarted(BaseModel):
    hash: str
    watching: bool
    status: Optional[dict] = None
    result: Any = None  # engine response to the scan trigger


class SavedJsonReport(BaseModel):
    cached: bool
    path: str
    retrieved_at: Optional[str] = None
    data: Any


class SavedReport(BaseModel):
    hash: str
    json_path: str
    retrieved_at: str
    pdf_path: Optional[str] = None


class SavedReportList(BaseModel):
    count: int
    reports: List[SavedReport]


class RecentScans(BaseModel):
    content: List[dict]
