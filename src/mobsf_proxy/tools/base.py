# src/mobsf_proxy/tools/base.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Union

REPORT_FORMATS = ("json", "pdf")


@dataclass(frozen=True)
class LogEntry:
    status: str
    timestamp: Optional[str] = None
    exception: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> "LogEntry":
        if isinstance(raw, dict):
            return cls(
                status=str(raw.get("status") or ""),
                timestamp=raw.get("timestamp"),
                exception=raw.get("exception") or None,
            )
        return cls(status=str(raw))

    def describe(self) -> str:
        if self.timestamp:
            return f"{self.timestamp} - {self.status}"
        return self.status


class ScanEngineAdapter(ABC):
    """Request/response boundary to a scanning engine. Upstream failures surface as GatewayError only."""

    @abstractmethod
    async def upload(self, filename: str, content: bytes) -> str:
        pass

    @abstractmethod
    async def trigger_scan(self, job_id: str, rescan: bool = False) -> dict:
        pass

    @abstractmethod
    async def fetch_logs(self, job_id: str) -> List[LogEntry]:
        pass

    @abstractmethod
    async def fetch_report(self, job_id: str, fmt: str) -> Union[dict, bytes]:
        pass

    @abstractmethod
    async def list_recent_jobs(self, page: int = 1, page_size: int = 10) -> List[dict]:
        pass

    async def aclose(self) -> None:
        pass
