# src/mobsf_proxy/engine/report_service.py
"""
ReportService: idempotent "get or produce" for scan reports.

A cached report is returned without touching the engine. Otherwise the report is
fetched once, persisted and returned. Concurrent callers asking for the same
(job_id, format) while a fetch is outstanding share that fetch instead of issuing
their own. Nothing here retries.

Disk and metadata access runs in the threadpool so multi-megabyte reports do not
stall the event loop the pollers share.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple, Union

from fastapi.concurrency import run_in_threadpool

from mobsf_proxy.engine.cache_store import ReportCacheStore, validate_format, validate_job_id
from mobsf_proxy.tools.base import ScanEngineAdapter

logger = logging.getLogger(__name__)


@dataclass
class ReportResult:
    job_id: str
    format: str
    payload: Union[dict, bytes]
    cached: bool
    storage_path: str
    retrieved_at: Optional[datetime] = None


class ReportService:
    def __init__(self, gateway: ScanEngineAdapter, store: ReportCacheStore):
        self.gateway = gateway
        self.store = store
        self._inflight: Dict[Tuple[str, str], asyncio.Task] = {}

    async def get_report(self, job_id: str, fmt: str) -> ReportResult:
        job_id = validate_job_id(job_id)
        fmt = validate_format(fmt)
        key = (job_id, fmt)

        task = self._inflight.get(key)
        if task is None:
            cached = await run_in_threadpool(self._read_cached, job_id, fmt)
            if cached is not None:
                logger.info(f"[job_id={job_id}] Serving cached {fmt} report")
                return cached
            # another caller may have started the fetch while the cache was checked
            task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(job_id, fmt))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        else:
            logger.info(f"[job_id={job_id}] Joining in-flight {fmt} report fetch")
        # shield: one caller going away must not cancel the fetch the others wait on
        return await asyncio.shield(task)

    def _read_cached(self, job_id: str, fmt: str) -> Optional[ReportResult]:
        record = self.store.record_for(job_id, fmt)
        if record is None:
            return None
        return ReportResult(
            job_id=job_id,
            format=fmt,
            payload=self.store.read(job_id, fmt),
            cached=True,
            storage_path=record.storage_path,
            retrieved_at=record.retrieved_at,
        )

    async def _fetch_and_store(self, job_id: str, fmt: str) -> ReportResult:
        logger.info(f"[job_id={job_id}] Cache miss for {fmt} report, fetching from engine")
        payload = await self.gateway.fetch_report(job_id, fmt)
        return await self.save_report(job_id, fmt, payload)

    async def save_report(self, job_id: str, fmt: str, payload: Union[dict, bytes]) -> ReportResult:
        """Persist a report that was already fetched from the engine."""
        job_id = validate_job_id(job_id)
        fmt = validate_format(fmt)
        record = await run_in_threadpool(self.store.write, job_id, fmt, payload)
        return ReportResult(
            job_id=job_id,
            format=fmt,
            payload=payload,
            cached=False,
            storage_path=record.storage_path,
            retrieved_at=record.retrieved_at,
        )

    async def fetch_live(self, job_id: str) -> dict:
        """JSON report straight from the engine; the cache is neither read nor written."""
        job_id = validate_job_id(job_id)
        return await self.gateway.fetch_report(job_id, "json")
