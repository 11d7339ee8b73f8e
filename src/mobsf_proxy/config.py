# src/mobsf_proxy/config.py
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from mobsf_proxy.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def mask_secret(value: str) -> str:
    if len(value) <= 12:
        return "*" * len(value)
    return f"{value[:6]}...{value[-6:]}"


@dataclass
class Settings:
    mobsf_api_key: str
    mobsf_url: str = "http://localhost:8000"
    reports_dir: str = "reports"
    database_url: str = "sqlite:///./mobsf_reports.db"
    request_timeout: float = 60.0
    poll_base_interval_ms: int = 5000
    poll_max_interval_ms: int = 60000
    poll_backoff_factor: float = 1.8
    poll_error_threshold: int = 6
    completion_policy_file: Optional[str] = None
    port: int = 4000

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """
        Build settings from the environment, reading a .env file first if one exists.
        A missing MOBSF_API_KEY is fatal.
        """
        load_dotenv(dotenv_path)
        api_key = (os.getenv("MOBSF_API_KEY") or "").strip()
        if not api_key:
            raise ConfigurationError("MOBSF_API_KEY is not set")

        settings = cls(
            mobsf_api_key=api_key,
            mobsf_url=os.getenv("MOBSF_URL", cls.mobsf_url).rstrip("/"),
            reports_dir=os.getenv("REPORTS_DIR", cls.reports_dir),
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            request_timeout=_float_env("MOBSF_TIMEOUT", cls.request_timeout),
            poll_base_interval_ms=_int_env("POLL_BASE_INTERVAL_MS", cls.poll_base_interval_ms),
            poll_max_interval_ms=_int_env("POLL_MAX_INTERVAL_MS", cls.poll_max_interval_ms),
            poll_backoff_factor=_float_env("POLL_BACKOFF_FACTOR", cls.poll_backoff_factor),
            poll_error_threshold=_int_env("POLL_ERROR_THRESHOLD", cls.poll_error_threshold),
            completion_policy_file=os.getenv("COMPLETION_POLICY_FILE") or None,
            port=_int_env("PORT", cls.port),
        )
        logger.info(f"Using MOBSF_URL: {settings.mobsf_url}")
        logger.info(f"Using MOBSF_API_KEY: {mask_secret(settings.mobsf_api_key)}")
        return settings
