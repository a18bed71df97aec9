"""Shared test fixtures."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from posesync.config import RelayConfig
from posesync.registry import ConnectionRegistry
from posesync.router import EventRouter
from posesync.sessions import SessionStore


@dataclass(eq=False)
class FakeConnection:
    """Records everything the router sends to it."""

    name: str
    sent: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    closed: bool = False
    close_error: Exception | None = None

    def send(self, event: str, data: dict[str, Any]) -> bool:
        if self.closed:
            return False
        self.sent.append((event, data))
        return True

    async def close(self, message: str = "") -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error

    def events(self, name: str) -> list[dict[str, Any]]:
        return [data for event, data in self.sent if event == name]

    def __repr__(self) -> str:
        return f"<FakeConnection {self.name}>"


@dataclass
class FakeClock:
    """Monotonic clock the tests advance by hand."""

    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(clock=clock)


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def router(store: SessionStore, registry: ConnectionRegistry) -> EventRouter:
    return EventRouter(store, registry)


@pytest.fixture
def relay_config(tmp_path: Path) -> RelayConfig:
    return RelayConfig(
        static_dir=tmp_path / "missing",
        reap_interval=3600.0,
        idle_timeout=300.0,
        ws_heartbeat=None,
        rate_limit=1000,
    )
