# src/mobsf_proxy/tools/mobsf_adapter.py
"""
MobSFAdapter: talks to the MobSF REST API (v1) and normalizes every failure into GatewayError.
No retries happen here; retry and backoff belong to callers.
"""
import json
import logging
from typing import Any, List, Optional, Union

import httpx

from mobsf_proxy.errors import GatewayError
from mobsf_proxy.tools.base import LogEntry, ScanEngineAdapter

logger = logging.getLogger(__name__)

# report format -> MobSF endpoint
REPORT_ENDPOINTS = {
    "json": "/api/v1/report_json",
    "pdf": "/api/v1/download_pdf",
}


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class MobSFAdapter(ScanEngineAdapter):
    def __init__(self, base_url: str, api_key: str, timeout: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": api_key, "X-Mobsf-Api-Key": api_key},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"MobSF {method} {path} timed out: {e}")
            raise GatewayError(504, {"message": str(e) or "timeout"}, message="Scanning engine timed out")
        except httpx.HTTPError as e:
            logger.warning(f"MobSF {method} {path} transport error: {e}")
            raise GatewayError(502, {"message": str(e)}, message="Scanning engine unreachable")
        if response.status_code >= 400:
            body = _decode_body(response)
            logger.error(f"Proxy error ({response.status_code}): {json.dumps(body, default=str)[:500]}")
            raise GatewayError(response.status_code, body)
        return response

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError:
            raise GatewayError(502, {"message": response.text[:500]},
                               message=f"Malformed response from scanning engine for {path}")

    async def upload(self, filename: str, content: bytes) -> str:
        logger.info(f"Forwarding upload of {filename} to MobSF")
        data = await self._json("POST", "/api/v1/upload", files={"file": (filename, content)})
        job_id = None
        if isinstance(data, dict):
            job_id = data.get("hash") or data.get("MD5") or data.get("md5")
        if not job_id:
            raise GatewayError(502, data, message="Upload succeeded but the engine did not return a hash")
        return job_id

    async def trigger_scan(self, job_id: str, rescan: bool = False) -> dict:
        form = {"hash": job_id}
        if rescan:
            form["re_scan"] = "1"
        logger.info(f"[job_id={job_id}] Triggering scan in MobSF (re_scan={rescan})")
        return await self._json("POST", "/api/v1/scan", data=form)

    async def fetch_logs(self, job_id: str) -> List[LogEntry]:
        data = await self._json("POST", "/api/v1/scan_logs", data={"hash": job_id})
        if not isinstance(data, dict):
            raise GatewayError(502, data, message="Malformed scan_logs response")
        return [LogEntry.from_raw(raw) for raw in data.get("logs") or []]

    async def fetch_report(self, job_id: str, fmt: str) -> Union[dict, bytes]:
        path = REPORT_ENDPOINTS[fmt]
        logger.info(f"[job_id={job_id}] Fetching {fmt} report from MobSF")
        if fmt == "pdf":
            response = await self._request("POST", path, data={"hash": job_id})
            return response.content
        data = await self._json("POST", path, data={"hash": job_id})
        if not isinstance(data, dict):
            raise GatewayError(502, data, message="Malformed report_json response")
        return data

    async def list_recent_jobs(self, page: int = 1, page_size: int = 10) -> List[dict]:
        data = await self._json("GET", "/api/v1/scans", params={"page": page, "page_size": page_size})
        content = data.get("content") if isinstance(data, dict) else None
        if not isinstance(content, list):
            raise GatewayError(502, data, message="Malformed scans response")
        jobs = []
        for summary in content:
            if not isinstance(summary, dict):
                continue
            job = dict(summary)
            job.setdefault("hash", summary.get("MD5") or summary.get("md5"))
            jobs.append(job)
        return jobs

    async def aclose(self) -> None:
        await self.client.aclose()
