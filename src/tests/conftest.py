import pytest
from fakes import FakeEngine

from mobsf_proxy.config import Settings
from mobsf_proxy.engine.cache_store import ReportCacheStore
from mobsf_proxy.engine.db import make_session_factory


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        mobsf_api_key="test-api-key-0123456789",
        reports_dir=str(tmp_path / "reports"),
        database_url=f"sqlite:///{tmp_path / 'reports.db'}",
    )


@pytest.fixture
def store(settings):
    return ReportCacheStore(settings.reports_dir, make_session_factory(settings.database_url))
