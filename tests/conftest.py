from __future__ import annotations

from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from dedup_window.api.app import create_app
from dedup_window.config.settings import Settings, get_settings
from dedup_window.infra.claim_store import ClaimStoreError, InMemoryClaimStore
from dedup_window.infra.event_stream import InMemoryEventPublisher
from dedup_window.infra.http import HttpClient


class FakeClock:
    """Relógio monotônico controlado pelo teste."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass(slots=True)
class FlakyClaimStore(InMemoryClaimStore):
    """InMemoryClaimStore que pode ficar indisponível sob demanda."""

    available: bool = True

    def _check(self) -> None:
        if not self.available:
            raise ClaimStoreError("store unreachable")

    def claim(self, key: str, ttl_seconds: int) -> bool:
        self._check()
        return InMemoryClaimStore.claim(self, key, ttl_seconds)

    def snapshot(self) -> dict[str, str]:
        self._check()
        return InMemoryClaimStore.snapshot(self)

    def count(self) -> int:
        self._check()
        return InMemoryClaimStore.count(self)

    def ping(self) -> None:
        self._check()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        environment="development",
        claim_store_backend="memory",
        event_stream_backend="memory",
        aggregation_interval_seconds=60,
    )


@pytest.fixture()
def claim_store(fake_clock: FakeClock) -> FlakyClaimStore:
    return FlakyClaimStore(clock=fake_clock)


@pytest.fixture()
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture()
def http_client() -> AsyncMock:
    mock = AsyncMock(spec=HttpClient)
    mock.post.return_value = MagicMock(status_code=200)
    return mock


@pytest.fixture()
def app(settings, claim_store, publisher, http_client):
    get_settings.cache_clear()
    return create_app(
        settings,
        claim_store=claim_store,
        publisher=publisher,
        http_client=http_client,
    )


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
