# src/mobsf_proxy/errors.py
"""
Error taxonomy shared by the gateway, the report cache and the HTTP layer.
Every error renders to the same {kind, message} shape.
"""
from typing import Any, Optional


class ProxyError(Exception):
    kind = "Error"
    status_code = 500

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"kind": self.kind, "message": self.message}
        if self.detail is not None:
            body["detail"] = self.detail
        return body


class ConfigurationError(ProxyError):
    """Fatal: the process must not start."""
    kind = "ConfigurationError"


class ValidationError(ProxyError):
    kind = "ValidationError"
    status_code = 422


class CacheIOError(ProxyError):
    kind = "CacheIOError"


class GatewayError(ProxyError):
    """
    Any failure talking to the scanning engine: connection refused, timeout,
    non-2xx status or a body that could not be decoded.
    """
    kind = "UpstreamUnavailable"

    def __init__(self, status_code: int, body: Optional[Any] = None, message: Optional[str] = None):
        if message is None:
            message = f"Scanning engine request failed with status {status_code}"
        super().__init__(message, detail=body)
        self.status_code = status_code
        self.body = body

    @property
    def is_auth_failure(self) -> bool:
        return self.status_code in (401, 403)

