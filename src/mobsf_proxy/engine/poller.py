# src/mobsf_proxy/engine/poller.py
"""
JobPoller: watches one scan through the engine's log stream.

The engine has no status or progress API, only an append-only list of log entries.
The poller classifies the latest entry against a keyword policy to decide whether
the scan is done, fabricates a smooth progress estimate from the number of new
entries, and backs off geometrically while the engine is unreachable.

State machine:  Idle -> Polling -> Ready | Failed   (Stopped if disposed first)

Exactly one terminal transition happens per poller. The check-and-set of the
terminal flag never spans an await, so overlapping triggers (a keyword match and
a successful report probe) collapse into a single completion.
"""
import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence

from mobsf_proxy.errors import GatewayError
from mobsf_proxy.tools.base import LogEntry, ScanEngineAdapter

logger = logging.getLogger(__name__)

DEFAULT_READY_KEYWORDS = (
    "generating report",
    "generation complete",
    "completed",
    "finished",
    "saving to database",
    "saved to database",
    "report generated",
    "saving results",
    "saving to db",
)

PROGRESS_CAP = 95
PROGRESS_FAST_PHASE_END = 50

DEGRADED_MESSAGE = "Temporary connection problems fetching logs. Will keep checking in background."
AUTH_DEGRADED_MESSAGE = "Scanning engine rejected the API key. Will keep checking in background."
RETRYING_MESSAGE = "Polling logs... (temporary error, retrying)"


class JobStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    SCANNING = "scanning"
    READY = "ready"
    FAILED = "failed"


class PollerState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class Job:
    job_id: str
    status: JobStatus = JobStatus.SUBMITTED
    progress: int = 0
    log_cursor: int = 0
    last_error: Optional[str] = None
    message: str = ""
    degraded: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.READY, JobStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "log_cursor": self.log_cursor,
            "last_error": self.last_error,
            "message": self.message,
            "degraded": self.degraded,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True)
class CompletionPolicy:
    """Case-insensitive substring match of a log status against fixed keyword lists."""
    ready_keywords: Sequence[str] = DEFAULT_READY_KEYWORDS
    failure_keywords: Sequence[str] = ()

    def __post_init__(self):
        object.__setattr__(self, "ready_keywords", tuple(k.lower() for k in self.ready_keywords))
        object.__setattr__(self, "failure_keywords", tuple(k.lower() for k in self.failure_keywords))

    def is_ready(self, status_text: str) -> bool:
        text = (status_text or "").lower()
        return any(k in text for k in self.ready_keywords)

    def is_failure(self, status_text: str) -> bool:
        text = (status_text or "").lower()
        return any(k in text for k in self.failure_keywords)


def advance_progress(current: int, new_entries: int, rng: random.Random = None) -> int:
    """
    Progress estimate after observing `new_entries` more log entries.

    Each new entry adds 3-8 points while below 50 and 1-3 points from 50 on. The
    result never decreases and never passes 95; only completion reaches 100.
    """
    rng = rng or random
    progress = max(0, current)
    for _ in range(max(0, new_entries)):
        if progress >= PROGRESS_CAP:
            break
        if progress < PROGRESS_FAST_PHASE_END:
            progress += rng.randint(3, 8)
        else:
            progress += rng.randint(1, 3)
    return max(current, min(PROGRESS_CAP, progress))


def next_interval(current_ms: int, factor: float, max_ms: int) -> int:
    return min(int(round(current_ms * factor)), max_ms)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        # no running loop
        return None


class PollObserver:
    """Receives poller notifications. Every hook is optional."""

    def on_progress(self, job: Job) -> None:
        pass

    def on_degraded(self, job: Job, message: str) -> None:
        pass

    def on_ready(self, job: Job) -> None:
        pass

    def on_failed(self, job: Job) -> None:
        pass


class JobPoller:
    def __init__(
        self,
        job_id: str,
        gateway: ScanEngineAdapter,
        *,
        policy: Optional[CompletionPolicy] = None,
        observer: Optional[PollObserver] = None,
        persist: Optional[Callable[[str, Optional[dict]], Awaitable]] = None,
        base_interval_ms: int = 5000,
        max_interval_ms: int = 60000,
        backoff_factor: float = 1.8,
        error_threshold: int = 6,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.job = Job(job_id=job_id)
        self.gateway = gateway
        self.policy = policy or CompletionPolicy()
        self.observer = observer or PollObserver()
        self.persist = persist
        self.base_interval_ms = base_interval_ms
        self.max_interval_ms = max_interval_ms
        self.backoff_factor = backoff_factor
        self.error_threshold = error_threshold
        self.rng = rng or random.Random()
        self._sleep = sleep

        self.state = PollerState.IDLE
        self.interval_ms = base_interval_ms
        self.error_count = 0
        self._terminal_claimed = False
        self._stopped = False
        self._task: Optional[asyncio.Task] = None

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        """Idle -> Polling. Must be called from within a running event loop."""
        if self.state != PollerState.IDLE:
            raise RuntimeError(f"Poller for {self.job_id} already started (state={self.state.value})")
        self.state = PollerState.POLLING
        self.job.message = "Scan triggered, polling logs..."
        logger.info(f"[job_id={self.job_id}] Started polling scan logs")
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel any pending tick. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        if self.state in (PollerState.IDLE, PollerState.POLLING):
            self.state = PollerState.STOPPED
        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        logger.info(f"[job_id={self.job_id}] Stopped polling (status={self.job.status.value})")

    async def wait(self) -> Job:
        """Wait for the polling task to end; returns the job as it stands."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.job

    async def _run(self) -> None:
        try:
            while not self._stopped and not self.job.is_terminal:
                await self.tick()
                if self._stopped or self.job.is_terminal:
                    break
                await self._sleep(self.interval_ms / 1000)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[job_id={self.job_id}] Poller crashed: {e}")
            await self._finish(JobStatus.FAILED, f"Internal error while polling: {e}")

    async def tick(self) -> Job:
        """One poll: fetch logs, classify, update progress or back off."""
        if self._stopped or self._terminal_claimed:
            return self.job
        try:
            logs = await self.gateway.fetch_logs(self.job_id)
        except GatewayError as e:
            await self._on_failure(e)
        else:
            await self._on_logs(logs)
        return self.job

    async def _on_logs(self, logs: List[LogEntry]) -> None:
        if self._stopped or self._terminal_claimed:
            return
        last = logs[-1] if logs else None
        if last is not None and self.policy.is_ready(last.status):
            logger.info(f"[job_id={self.job_id}] Completion detected in logs: {last.status!r}")
            await self._finish(JobStatus.READY, "Scan complete.")
            return
        if last is not None and self.policy.is_failure(last.status):
            logger.warning(f"[job_id={self.job_id}] Failure detected in logs: {last.status!r}")
            await self._finish(JobStatus.FAILED, last.describe())
            return

        new_entries = max(0, len(logs) - self.job.log_cursor)
        self.job.progress = advance_progress(self.job.progress, new_entries, self.rng)
        self.job.log_cursor = max(self.job.log_cursor, len(logs))
        self.job.status = JobStatus.SCANNING
        self.job.message = last.describe() if last and last.status else "Scanning... (waiting for logs)"
        if self.error_count:
            logger.info(f"[job_id={self.job_id}] Logs reachable again after {self.error_count} errors")
        self.error_count = 0
        self.job.degraded = False
        self.interval_ms = self.base_interval_ms
        self.observer.on_progress(self.job)

    async def _on_failure(self, error: GatewayError) -> None:
        if self._stopped or self._terminal_claimed:
            return
        self.job.last_error = error.message
        logger.warning(f"[job_id={self.job_id}] scan_logs polling error ({error.status_code}): {error.body}")

        if await self._probe_report():
            return

        self.error_count += 1
        self.interval_ms = next_interval(self.interval_ms, self.backoff_factor, self.max_interval_ms)
        if self.error_count >= self.error_threshold:
            message = AUTH_DEGRADED_MESSAGE if error.is_auth_failure else DEGRADED_MESSAGE
            self.job.degraded = True
            self.job.message = message
            logger.warning(f"[job_id={self.job_id}] {self.error_count} consecutive errors, "
                           f"next poll in {self.interval_ms}ms")
            self.observer.on_degraded(self.job, message)
        else:
            self.job.message = RETRYING_MESSAGE

    async def _probe_report(self) -> bool:
        """The logs may be gone while the report is already available."""
        try:
            report = await self.gateway.fetch_report(self.job_id, "json")
        except GatewayError as e:
            logger.info(f"[job_id={self.job_id}] report_json probe failed ({e.status_code})")
            return False
        if self._stopped or self._terminal_claimed:
            return True
        logger.info(f"[job_id={self.job_id}] report_json probe succeeded, treating scan as complete")
        await self._finish(JobStatus.READY, "Scan complete.", report=report)
        return True

    async def _finish(self, status: JobStatus, message: str, report: Optional[dict] = None) -> None:
        if self._terminal_claimed or self._stopped:
            return
        self._terminal_claimed = True

        self.job.status = status
        self.job.message = message
        self.job.finished_at = datetime.utcnow()
        self.job.degraded = False
        if status == JobStatus.READY:
            self.job.progress = 100
            self.state = PollerState.READY
            if self.persist is not None:
                try:
                    await self.persist(self.job_id, report)
                except Exception as e:
                    logger.error(f"[job_id={self.job_id}] Saving report failed: {e}")
                    self.job.last_error = str(e)
            if not self._stopped:
                self.observer.on_ready(self.job)
        else:
            self.state = PollerState.FAILED
            if not self._stopped:
                self.observer.on_failed(self.job)
        logger.info(f"[job_id={self.job_id}] Poller finished with status={status.value}")

