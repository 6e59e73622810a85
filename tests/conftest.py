from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from memlog.config import get_settings
from memlog.db.session import create_schema, get_engine
from memlog.main import app
from memlog.observability.metrics import reset_metrics
from memlog.storage.event_log import EventLogStore
from memlog.telemetry.memory import set_memory_source

MB = 1024 * 1024


class FixedMemorySource:
    def __init__(self, usage_bytes: int, peak_bytes: int) -> None:
        self.usage = usage_bytes
        self.peak = peak_bytes

    def usage_bytes(self) -> int:
        return self.usage

    def peak_bytes(self) -> int:
        return self.peak

    def window(self) -> "FixedMemorySource":
        return self


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[FixedMemorySource]:
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "content"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'memlog.db'}")
    monkeypatch.setenv("MEMORY_LIMIT", "256M")
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    get_settings.cache_clear()

    source = FixedMemorySource(usage_bytes=200 * MB, peak_bytes=230 * MB)
    set_memory_source(source)
    reset_metrics()

    settings = get_settings()
    settings.log_path.parent.mkdir(parents=True, exist_ok=True)
    create_schema()

    yield source

    set_memory_source(None)
    get_settings.cache_clear()


@pytest.fixture
def memory_source(test_environment: FixedMemorySource) -> FixedMemorySource:
    return test_environment


@pytest.fixture
def store() -> EventLogStore:
    return EventLogStore(get_settings().log_path)


@pytest.fixture
def db() -> Iterator[Session]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
    with SessionLocal() as session:
        yield session


@pytest.fixture
async def api_client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
