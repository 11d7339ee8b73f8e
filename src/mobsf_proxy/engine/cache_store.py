# src/mobsf_proxy/engine/cache_store.py
"""
ReportCacheStore: durable mapping (job_id, format) -> report payload.

Layout on disk is one directory per format, one file per job id:

    <root>/json/<job_id>.json
    <root>/pdf/<job_id>.pdf

File existence is the cache-hit test. A metadata row per file (cached_reports table)
records where and when it was retrieved. Writes are idempotent overwrites.
"""
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Union

from sqlalchemy.orm import sessionmaker

from mobsf_proxy.engine.models import CachedReport
from mobsf_proxy.errors import CacheIOError, ValidationError
from mobsf_proxy.tools.base import REPORT_FORMATS

logger = logging.getLogger(__name__)

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

Payload = Union[dict, bytes]


@dataclass
class ReportRecord:
    job_id: str
    format: str
    storage_path: str
    retrieved_at: datetime


def validate_job_id(job_id: Optional[str]) -> str:
    if not job_id or not job_id.strip():
        raise ValidationError("hash required")
    job_id = job_id.strip()
    if not JOB_ID_PATTERN.match(job_id):
        raise ValidationError(f"Invalid hash: {job_id!r}")
    return job_id


def validate_format(fmt: str) -> str:
    if fmt not in REPORT_FORMATS:
        raise ValidationError(f"Unsupported report format: {fmt!r}")
    return fmt


class ReportCacheStore:
    def __init__(self, root_dir: str, session_factory: sessionmaker):
        self.root_dir = root_dir
        self.session_factory = session_factory
        self.dirs = {fmt: os.path.join(root_dir, fmt) for fmt in REPORT_FORMATS}
        try:
            for d in self.dirs.values():
                os.makedirs(d, exist_ok=True)
        except OSError as e:
            raise CacheIOError(f"Cannot create report directories under {root_dir}: {e}")

    def path_for(self, job_id: str, fmt: str) -> str:
        job_id = validate_job_id(job_id)
        fmt = validate_format(fmt)
        return os.path.join(self.dirs[fmt], f"{job_id}.{fmt}")

    def has(self, job_id: str, fmt: str) -> bool:
        return os.path.isfile(self.path_for(job_id, fmt))

    def read(self, job_id: str, fmt: str) -> Payload:
        path = self.path_for(job_id, fmt)
        try:
            if fmt == "json":
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            with open(path, "rb") as f:
                return f.read()
        except (OSError, ValueError) as e:
            raise CacheIOError(f"Failed to read cached {fmt} report for {job_id}: {e}")

    def write(self, job_id: str, fmt: str, payload: Payload) -> ReportRecord:
        path = self.path_for(job_id, fmt)
        directory = os.path.dirname(path)
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(dir=directory, prefix=f".{job_id}.", suffix=".tmp",
                                             delete=False) as tmp:
                tmp_path = tmp.name
                if fmt == "json":
                    tmp.write(json.dumps(payload, indent=2).encode("utf-8"))
                else:
                    tmp.write(bytes(payload))
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise CacheIOError(f"Failed to write {fmt} report for {job_id}: {e}")

        record = ReportRecord(job_id=job_id, format=fmt, storage_path=path, retrieved_at=datetime.utcnow())
        self._save_metadata(record)
        logger.info(f"[job_id={job_id}] Cached {fmt} report at {path}")
        return record

    def _save_metadata(self, record: ReportRecord) -> None:
        db = self.session_factory()
        try:
            db.merge(CachedReport(job_id=record.job_id, format=record.format,
                                  storage_path=record.storage_path, retrieved_at=record.retrieved_at))
            db.commit()
        except Exception as e:
            db.rollback()
            raise CacheIOError(f"Failed to record metadata for {record.job_id}/{record.format}: {e}")
        finally:
            db.close()

    def _metadata(self) -> Dict[tuple, CachedReport]:
        db = self.session_factory()
        try:
            rows = db.query(CachedReport).all()
            return {(row.job_id, row.format): row for row in rows}
        finally:
            db.close()

    def record_for(self, job_id: str, fmt: str) -> Optional[ReportRecord]:
        path = self.path_for(job_id, fmt)
        if not os.path.isfile(path):
            return None
        db = self.session_factory()
        try:
            row = db.get(CachedReport, (job_id, fmt))
        finally:
            db.close()
        retrieved_at = row.retrieved_at if row else datetime.utcfromtimestamp(os.path.getmtime(path))
        return ReportRecord(job_id=job_id, format=fmt, storage_path=path, retrieved_at=retrieved_at)

    def list_reports(self) -> List[dict]:
        """
        One entry per cached JSON report, newest first, with the PDF path when a PDF
        was cached for the same job.
        """
        try:
            json_files = [f for f in os.listdir(self.dirs["json"]) if f.endswith(".json")]
            pdf_files = set(f for f in os.listdir(self.dirs["pdf"]) if f.endswith(".pdf"))
        except OSError as e:
            raise CacheIOError(f"Failed to list cached reports: {e}")

        metadata = self._metadata()
        reports = []
        for fn in json_files:
            job_id = fn[:-len(".json")]
            json_path = os.path.join(self.dirs["json"], fn)
            row = metadata.get((job_id, "json"))
            if row:
                retrieved_at = row.retrieved_at
            else:
                retrieved_at = datetime.utcfromtimestamp(os.path.getmtime(json_path))
            entry = {"hash": job_id, "json_path": json_path, "retrieved_at": retrieved_at.isoformat()}
            if f"{job_id}.pdf" in pdf_files:
                entry["pdf_path"] = os.path.join(self.dirs["pdf"], f"{job_id}.pdf")
            reports.append(entry)
        reports.sort(key=lambda r: r["retrieved_at"], reverse=True)
        return reports
