import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from courier.core.errors import ConfigurationError
from courier.db.base import Base
from courier.db.repositories import DeliveryLogRepository
from courier.db.session import build_engine, make_session_factory
from courier.delivery.base import DeliveryResult
from courier.queue.delivery_queue import DeliveryQueue
from courier.queue.store import DeadLetterStore

HANG = "hang"


class FakeClock:
    """Manually advanced UTC clock; 2026-03-01 06:00 UTC is 09:00 in Riyadh."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedAdapter:
    """Delivery adapter whose per-recipient outcomes are scripted by the test.

    An outcome is a ``DeliveryResult``, an exception instance to raise, or
    ``HANG`` to never resolve.  Unscripted sends succeed.
    """

    def __init__(self):
        self.calls: list[str] = []
        self.scripts: dict[str, list] = {}
        self.config_error: str | None = None
        self.gate: asyncio.Event | None = None

    def script(self, recipient: str, *outcomes) -> None:
        self.scripts.setdefault(recipient, []).extend(outcomes)

    def check(self) -> None:
        if self.config_error:
            raise ConfigurationError(self.config_error)

    async def send(self, recipient, subject, body_html, body_text=None):
        self.calls.append(recipient)
        if self.gate is not None:
            await self.gate.wait()
        pending = self.scripts.get(recipient)
        outcome = pending.pop(0) if pending else DeliveryResult.ok(f"msg-{len(self.calls)}")
        if outcome == HANG:
            await asyncio.Event().wait()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture
def make_queue(session_factory, adapter, clock):
    def _make(**kwargs) -> DeliveryQueue:
        kwargs.setdefault("base_delay_ms", 0)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("delivery_log", DeliveryLogRepository(session_factory))
        return DeliveryQueue(adapter, DeadLetterStore(session_factory), **kwargs)

    return _make


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("COURIER_AUTOSTART", "false")

    from courier.core.settings import get_settings

    get_settings.cache_clear()

    from courier.main import app

    with TestClient(app) as test_client:
        yield test_client

    get_settings.cache_clear()
    os.environ.pop("DATABASE_URL", None)
