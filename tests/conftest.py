from __future__ import annotations

import httpx
import pytest

from wakegate import db
from wakegate.runtime import Route


@pytest.fixture(autouse=True)
def event_db(tmp_path):
    """Keep the event log out of the working directory."""
    db.configure(str(tmp_path / "events.db"), enabled=True)
    db.init_db()
    yield
    db.configure(None)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRuntime:
    """In-memory RuntimeController: tracks which containers are running."""

    def __init__(self, running=(), existing=None, start_brings_up: bool = True):
        self.running: set[str] = set(running)
        self.existing = set(existing) if existing is not None else None
        self.start_brings_up = start_brings_up
        self.started: list[list[str]] = []
        self.stopped: list[tuple[list[str], int]] = []

    def is_running(self, names) -> bool:
        return all(n in self.running for n in names)

    def start(self, names, route_id=None) -> None:
        names = list(names)
        self.started.append(names)
        if self.start_brings_up:
            self.running.update(names)

    def stop(self, names, grace_s: int, route_id=None) -> None:
        names = list(names)
        self.stopped.append((names, grace_s))
        self.running.difference_update(names)

    def exists(self, name: str) -> bool:
        return self.existing is None or name in self.existing


class FakeBackend:
    """httpx transport standing in for a backend container.

    mode: "down" (connection refused), "up" (200), "error" (500).
    """

    def __init__(self, mode: str = "down"):
        self.mode = mode
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.mode == "down":
            raise httpx.ConnectError("Connection refused", request=request)
        if self.mode == "error":
            return httpx.Response(500, text="boom")
        return httpx.Response(
            200,
            text=f"hello from {request.url.path}",
            headers={"content-type": "text/plain", "x-backend": "yes"},
        )

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_route(clock):
    def _make(route_id: str = "app", **kw) -> Route:
        kw.setdefault("match_hosts", (f"{route_id}.example.com",))
        kw.setdefault("backend_address", f"http://{route_id}:8080")
        kw.setdefault("last_activity_at", clock.now)
        return Route(id=route_id, **kw)

    return _make
