# src/mobsf_proxy/engine/job_tracker.py
"""
JobTracker: in-memory registry of scan watches, one JobPoller per job id.

Only live pollers are held. A poller that ends (ready, failed or stopped) is
dropped and leaves a status snapshot behind; at most `max_finished` snapshots are
kept, oldest dropped first.
"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from mobsf_proxy.engine.poller import CompletionPolicy, Job, JobPoller, PollObserver
from mobsf_proxy.engine.report_service import ReportService
from mobsf_proxy.tools.base import ScanEngineAdapter

logger = logging.getLogger(__name__)

DEFAULT_MAX_FINISHED = 200


class _TrackerObserver(PollObserver):
    def __init__(self, tracker: "JobTracker"):
        self.tracker = tracker

    def on_degraded(self, job: Job, message: str) -> None:
        logger.warning(f"[job_id={job.job_id}] {message}")

    def on_ready(self, job: Job) -> None:
        logger.info(f"[job_id={job.job_id}] Scan complete, JSON report saved.")
        self.tracker._retire(job)

    def on_failed(self, job: Job) -> None:
        logger.error(f"[job_id={job.job_id}] Scan failed: {job.message}")
        self.tracker._retire(job)


def _poller_status(poller: JobPoller) -> dict:
    status = poller.job.to_dict()
    status["poller_state"] = poller.state.value
    status["next_poll_ms"] = poller.interval_ms
    return status


class JobTracker:
    def __init__(self, gateway: ScanEngineAdapter, report_service: ReportService,
                 policy: Optional[CompletionPolicy] = None, max_finished: int = DEFAULT_MAX_FINISHED,
                 **poller_options):
        self.gateway = gateway
        self.report_service = report_service
        self.policy = policy or CompletionPolicy()
        self.max_finished = max_finished
        self.poller_options = poller_options
        self.pollers: Dict[str, JobPoller] = {}
        self.finished: "OrderedDict[str, dict]" = OrderedDict()
        self.observer = _TrackerObserver(self)

    async def _persist_json(self, job_id: str, report: Optional[dict] = None) -> None:
        if report is not None:
            await self.report_service.save_report(job_id, "json", report)
        else:
            await self.report_service.get_report(job_id, "json")

    def _retire(self, job: Job) -> None:
        poller = self.pollers.get(job.job_id)
        # a re-watch may already have replaced this poller
        if poller is None or poller.job is not job:
            return
        del self.pollers[job.job_id]
        self.finished[job.job_id] = _poller_status(poller)
        self.finished.move_to_end(job.job_id)
        while len(self.finished) > self.max_finished:
            self.finished.popitem(last=False)

    def watch(self, job_id: str) -> Job:
        """
        Start a fresh poller for job_id. A poller already watching the same job is
        stopped first, so a re-scan begins a new lifecycle.
        """
        previous = self.pollers.get(job_id)
        if previous is not None:
            previous.stop()
        self.finished.pop(job_id, None)
        poller = JobPoller(
            job_id,
            self.gateway,
            policy=self.policy,
            observer=self.observer,
            persist=self._persist_json,
            **self.poller_options,
        )
        self.pollers[job_id] = poller
        poller.start()
        logger.info(f"[job_id={job_id}] Watching scan. restarted={previous is not None}")
        return poller.job

    def get(self, job_id: str) -> Optional[JobPoller]:
        return self.pollers.get(job_id)

    def get_status(self, job_id: str) -> dict:
        poller = self.pollers.get(job_id)
        if poller is not None:
            return _poller_status(poller)
        if job_id in self.finished:
            return dict(self.finished[job_id])
        return {"job_id": job_id, "status": "not_found"}

    def stop(self, job_id: str) -> bool:
        poller = self.pollers.get(job_id)
        if poller is None:
            # stopping a finished watch changes nothing
            return job_id in self.finished
        poller.stop()
        self._retire(poller.job)
        return True

    def list_jobs(self) -> List[dict]:
        live = [_poller_status(poller) for poller in self.pollers.values()]
        return live + [dict(status) for status in self.finished.values()]

    def shutdown(self) -> None:
        for poller in self.pollers.values():
            poller.stop()
