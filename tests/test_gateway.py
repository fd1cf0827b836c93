from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.responses import StreamingResponse

from conftest import FakeBackend, FakeClock, FakeRuntime
from wakegate import db
from wakegate.app import create_app
from wakegate.gateway import GatewayHandler, InboundRequest
from wakegate.pages import PageRenderer, PageRenderError
from wakegate.runtime import RouteRegistry


@pytest.fixture
def backend():
    return FakeBackend("down")


@pytest.fixture
def runtime():
    return FakeRuntime()


def _client(routes, runtime, backend, clock, **kw) -> TestClient:
    app = create_app(
        routes=routes,
        runtime=runtime,
        probe_client=backend.client(),
        proxy_client=backend.client(),
        clock=clock,
        start_reaper=False,
        **kw,
    )
    return TestClient(app)


def test_unmatched_host_is_not_proxied(make_route, runtime, backend, clock):
    client = _client([make_route("app")], runtime, backend, clock)
    r = client.get("http://other.example.com/")
    assert r.status_code == 404
    assert backend.requests == []
    assert runtime.started == []


def test_healthy_backend_is_proxied(make_route, runtime, backend, clock):
    runtime.running = {"app"}
    backend.mode = "up"
    client = _client([make_route("app")], runtime, backend, clock)

    r = client.post("http://app.example.com/api/items?page=2", content=b"payload", headers={"x-token": "t"})
    assert r.status_code == 200
    assert r.text == "hello from /api/items"
    assert r.headers["x-backend"] == "yes"
    assert runtime.started == []

    probe, forwarded = backend.requests
    assert probe.method == "GET"
    assert forwarded.method == "POST"
    assert forwarded.url.path == "/api/items"
    assert forwarded.url.query == b"page=2"
    assert forwarded.headers["host"] == "app:8080"
    assert forwarded.headers["x-token"] == "t"
    assert forwarded.content == b"payload"


def test_stopped_group_is_started_and_loading_page_shown(make_route, runtime, backend, clock):
    route = make_route("app", helper_containers=("app-db",))
    client = _client([route], runtime, backend, clock)

    r = client.get("http://app.example.com/")
    assert r.status_code == 200
    assert "app is starting" in r.text
    assert runtime.started == [["app-db", "app"]]

    # Already running now: no second start.
    client.get("http://app.example.com/")
    assert runtime.started == [["app-db", "app"]]


def test_retry_budget_end_to_end(make_route, runtime, backend, clock):
    route = make_route("app", max_retries=5)
    client = _client([route], runtime, backend, clock)

    for expected in (4, 3, 2, 1, 0):
        clock.advance(5)
        r = client.get("http://app.example.com/")
        assert r.status_code == 200
        assert "app is starting" in r.text
        assert route.current_retries == expected
        assert f"{expected} / 5" in r.text

    clock.advance(5)
    before = len(backend.requests)
    r = client.get("http://app.example.com/")
    # Probe only, no forward behind the error page.
    assert len(backend.requests) == before + 1
    assert route.current_retries == -1
    assert r.status_code == 503
    assert "could not be reached" in r.text

    forwards_before = len(backend.requests)

    backend.mode = "up"
    clock.advance(1)
    r = client.get("http://app.example.com/dashboard")
    assert r.status_code == 200
    assert r.text == "hello from /dashboard"
    assert route.current_retries == 5
    assert len(backend.requests) == forwards_before + 2


def test_burst_of_requests_costs_one_retry(make_route, runtime, backend, clock):
    route = make_route("app")
    client = _client([route], runtime, backend, clock)
    clock.advance(6)
    for _ in range(4):
        client.get("http://app.example.com/")
        clock.advance(1)
    assert route.current_retries == 4


def test_backend_answering_after_probe_overrides_loading_page(make_route, runtime, clock):
    calls = {"n": 0}

    def flaky(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, text="late but here")

    transport = httpx.MockTransport(flaky)
    app = create_app(
        routes=[make_route("app")],
        runtime=runtime,
        probe_client=httpx.Client(transport=transport),
        proxy_client=httpx.Client(transport=transport),
        clock=clock,
        start_reaper=False,
    )
    r = TestClient(app).get("http://app.example.com/")
    assert r.status_code == 200
    assert r.text == "late but here"


def test_sleep_window_blocks_start(make_route, runtime, backend):
    clock = FakeClock(datetime(2024, 3, 14, 23, 30).timestamp())
    route = make_route("app", sleep_start="22:00", sleep_stop="06:00", last_activity_at=clock.now)
    client = _client([route], runtime, backend, clock)
    r = client.get("http://app.example.com/")
    assert runtime.started == []
    assert r.status_code == 200
    assert "app is starting" in r.text


def test_forward_failure_after_healthy_probe_is_502(make_route, runtime, clock):
    def handler(request):
        if request.method == "GET" and request.url.path == "/":
            return httpx.Response(200)
        raise httpx.ConnectError("gone", request=request)

    transport = httpx.MockTransport(handler)
    runtime.running = {"app"}
    app = create_app(
        routes=[make_route("app")],
        runtime=runtime,
        probe_client=httpx.Client(transport=transport),
        proxy_client=httpx.Client(transport=transport),
        clock=clock,
        start_reaper=False,
    )
    r = TestClient(app).delete("http://app.example.com/items/1")
    assert r.status_code == 502


class _BrokenRenderer(PageRenderer):
    def render(self, kind, snap):
        raise PageRenderError("template missing")


def test_render_failure_still_attempts_proxy(make_route, runtime, backend, clock):
    handler = GatewayHandler(
        registry=RouteRegistry([make_route("app")], clock=clock),
        runtime=runtime,
        renderer=_BrokenRenderer(),
        probe_client=backend.client(),
        proxy_client=backend.client(),
    )
    resp = handler.handle(InboundRequest(method="GET", host="app.example.com", path="/"))
    assert resp.status_code == 503
    assert b"backend not ready" in resp.body
    # probe + forward attempt
    assert len(backend.requests) == 2


def test_template_dir_overrides_bundled_pages(make_route, runtime, backend, clock, tmp_path):
    (tmp_path / "loadingPage.html").write_text("custom {{ route_id }} {{ current_retries }}/{{ max_retries }}")
    client = _client([make_route("app")], runtime, backend, clock, renderer=PageRenderer(str(tmp_path)))
    r = client.get("http://app.example.com/")
    assert r.text == "custom app 5/5"


def test_backend_body_is_streamed_not_buffered(make_route, runtime, clock):
    pulled = []

    def chunks():
        for part in (b"data: one\n\n", b"data: two\n\n"):
            pulled.append(part)
            yield part

    def handler(request):
        if request.url.path == "/events":
            return httpx.Response(200, content=chunks(), headers={"content-type": "text/event-stream"})
        return httpx.Response(200)

    transport = httpx.MockTransport(handler)
    runtime.running = {"app"}
    gateway = GatewayHandler(
        registry=RouteRegistry([make_route("app")], clock=clock),
        runtime=runtime,
        renderer=PageRenderer(),
        probe_client=httpx.Client(transport=transport),
        proxy_client=httpx.Client(transport=transport),
    )
    resp = gateway.handle(InboundRequest(method="GET", host="app.example.com", path="/events"))
    # Headers are ready before a single body chunk has been read.
    assert isinstance(resp, StreamingResponse)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "text/event-stream"
    assert pulled == []

    app = create_app(
        routes=[make_route("app")],
        runtime=runtime,
        probe_client=httpx.Client(transport=transport),
        proxy_client=httpx.Client(transport=transport),
        clock=clock,
        start_reaper=False,
    )
    r = TestClient(app).get("http://app.example.com/events")
    assert r.text == "data: one\n\ndata: two\n\n"


def test_exhausted_budget_is_logged_once(make_route, runtime, clock):
    backend = FakeBackend("error")
    client = _client([make_route("app", max_retries=1)], runtime, backend, clock)

    for _ in range(4):
        clock.advance(1)
        client.get("http://app.example.com/")

    events = [e for e in db.latest_events(route_id="app") if "Backend unreachable" in e["message"]]
    assert len(events) == 1
    assert events[0]["message"] == "Backend unreachable after 1 retries"
    assert events[0]["level"] == "WARN"


def test_sleeping_route_requests_do_not_grow_event_log(make_route, runtime, backend):
    clock = FakeClock(datetime(2024, 3, 14, 23, 30).timestamp())
    route = make_route("app", sleep_start="22:00", sleep_stop="06:00", last_activity_at=clock.now)
    client = _client([route], runtime, backend, clock)
    for _ in range(50):
        client.get("http://app.example.com/")
    assert runtime.started == []
    assert db.latest_events(limit=1000, route_id="app") == []
