# src/mobsf_proxy/services.py
"""
Services: wires settings into the gateway, cache store, report service and job tracker.
"""
from dataclasses import dataclass
from typing import Optional

from mobsf_proxy.config import Settings
from mobsf_proxy.engine.cache_store import ReportCacheStore
from mobsf_proxy.engine.db import make_session_factory
from mobsf_proxy.engine.job_tracker import JobTracker
from mobsf_proxy.engine.report_service import ReportService
from mobsf_proxy.tools.base import ScanEngineAdapter
from mobsf_proxy.tools.mobsf_adapter import MobSFAdapter
from mobsf_proxy.utils.policy_loader import load_completion_policy


@dataclass
class Services:
    settings: Settings
    gateway: ScanEngineAdapter
    store: ReportCacheStore
    report_service: ReportService
    tracker: JobTracker

    @classmethod
    def build(cls, settings: Settings, gateway: Optional[ScanEngineAdapter] = None) -> "Services":
        if gateway is None:
            gateway = MobSFAdapter(settings.mobsf_url, settings.mobsf_api_key, timeout=settings.request_timeout)
        store = ReportCacheStore(settings.reports_dir, make_session_factory(settings.database_url))
        report_service = ReportService(gateway, store)
        tracker = JobTracker(
            gateway,
            report_service,
            policy=load_completion_policy(settings.completion_policy_file),
            base_interval_ms=settings.poll_base_interval_ms,
            max_interval_ms=settings.poll_max_interval_ms,
            backoff_factor=settings.poll_backoff_factor,
            error_threshold=settings.poll_error_threshold,
        )
        return cls(settings=settings, gateway=gateway, store=store, report_service=report_service, tracker=tracker)

    async def close(self) -> None:
        self.tracker.shutdown()
        await self.gateway.aclose()
