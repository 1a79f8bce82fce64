import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from hepeco_server.config import settings
from hepeco_server.gateway import GatewayResult, GatewayStatus
from hepeco_server.main import app, limiter
from hepeco_server.payments import PaymentLifecycle
from hepeco_server.store import InMemoryQuoteStore

NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeGateway:
    """Replays ``statuses`` in order; the last one repeats forever."""

    def __init__(self):
        self.statuses = [GatewayStatus.VERIFIED]
        self.calls = []

    async def check_status(self, reference: str) -> GatewayResult:
        self.calls.append(reference)
        # Yield like real I/O so concurrent verifies interleave
        await asyncio.sleep(0)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        transaction_id = f"TX-{len(self.calls)}" if status == GatewayStatus.VERIFIED else None
        return GatewayResult(status, transaction_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def lifecycle(clock, gateway) -> PaymentLifecycle:
    return PaymentLifecycle(gateway=gateway, clock=clock)


@pytest.fixture
def client(lifecycle, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_TOKEN", "admin-secret")
    monkeypatch.setattr(settings, "WEBHOOK_SECRET", "hook-secret")
    app.state.lifecycle = lifecycle
    app.state.quotes = InMemoryQuoteStore()
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
