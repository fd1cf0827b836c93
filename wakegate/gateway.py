from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlsplit

import httpx
from starlette.background import BackgroundTask
from starlette.responses import HTMLResponse, PlainTextResponse, Response, StreamingResponse

from . import db
from .docker_ops import RuntimeController
from .health import probe_route
from .pages import PageKind, PageRenderer, PageRenderError
from .runtime import Route, RouteRegistry, RouteSnapshot
from .settings import settings
from .sleep import in_sleep_window

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# iter_bytes() yields a decoded body, so length and encoding no longer describe it.
_DROP_RESPONSE = HOP_BY_HOP | {"content-encoding", "content-length"}


@dataclass
class InboundRequest:
    method: str
    host: str
    path: str = "/"
    query: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""


class GatewayHandler:
    """Per-request entry point: match, wake, probe, then render or forward.

    Blocking calls (docker, probe, forward) are made inline, so the caller runs
    ``handle`` on a worker thread.
    """

    def __init__(
        self,
        registry: RouteRegistry,
        runtime: RuntimeController,
        renderer: PageRenderer,
        probe_client: httpx.Client,
        proxy_client: httpx.Client,
        probe_debounce_s: float = settings.probe_debounce_s,
    ):
        self.registry = registry
        self.runtime = runtime
        self.renderer = renderer
        self.probe_client = probe_client
        self.proxy_client = proxy_client
        self.probe_debounce_s = probe_debounce_s

    def handle(self, req: InboundRequest) -> Response:
        route = self.registry.match_host(req.host)
        if route is None:
            return PlainTextResponse(f"No route for host '{req.host}'", status_code=404)

        self._wake(route)

        alive, snap = probe_route(self.registry, route, self.probe_client, debounce_s=self.probe_debounce_s)
        if alive:
            return self.forward(route, req)

        if snap.exhausted:
            if snap.spent_retry and snap.current_retries == -1:
                db.log_event("WARN", f"Backend unreachable after {snap.max_retries} retries", route_id=route.id)
            page = self._render(PageKind.ERROR, snap)
            return HTMLResponse(page if page is not None else _fallback_text(snap), status_code=503)

        # The backend may come up between the probe and the forward; if it
        # answers, its response wins over the loading page.
        page = self._render(PageKind.LOADING, snap)
        try:
            return self._send(route, req)
        except httpx.HTTPError:
            if page is None:
                return PlainTextResponse(_fallback_text(snap), status_code=503, headers={"Retry-After": "5"})
            return HTMLResponse(page, status_code=200)

    def _wake(self, route: Route) -> None:
        group = route.container_group
        if self.runtime.is_running(group):
            return
        if route.has_sleep_window and in_sleep_window(
            route.sleep_start, route.sleep_stop, datetime.fromtimestamp(self.registry.clock())
        ):
            db.logger.debug("%s: container will not be started during its sleep window", route.id)
            return
        db.log_event("INFO", "Starting container group " + ", ".join(group), route_id=route.id)
        self.runtime.start(group, route_id=route.id)

    def _render(self, kind: PageKind, snap: RouteSnapshot) -> str | None:
        try:
            return self.renderer.render(kind, snap)
        except PageRenderError as e:
            db.log_event("ERROR", str(e), route_id=snap.route_id)
            return None

    def forward(self, route: Route, req: InboundRequest) -> Response:
        try:
            return self._send(route, req)
        except httpx.TimeoutException:
            db.log_event("WARN", f"Backend request timeout: {req.method} {req.path}", route_id=route.id)
            return PlainTextResponse("Backend request timeout", status_code=504)
        except httpx.HTTPError as e:
            db.log_event("WARN", f"Backend request failed: {e}", route_id=route.id)
            return PlainTextResponse("Backend request failed", status_code=502)

    def _send(self, route: Route, req: InboundRequest) -> Response:
        url = route.backend_address.rstrip("/") + (req.path or "/")
        if req.query:
            url = f"{url}?{req.query}"
        headers = [(k, v) for k, v in req.headers if k.lower() not in HOP_BY_HOP and k.lower() != "host"]
        headers.append(("host", urlsplit(route.backend_address).netloc))

        outbound = self.proxy_client.build_request(req.method, url, headers=headers, content=req.body)
        resp = self.proxy_client.send(outbound, stream=True)
        # The body is relayed as it arrives; the connection is released once
        # the client has drained it.
        out = StreamingResponse(
            resp.iter_bytes(),
            status_code=resp.status_code,
            background=BackgroundTask(resp.close),
        )
        for k, v in resp.headers.multi_items():
            if k.lower() not in _DROP_RESPONSE:
                out.headers.append(k, v)
        return out


def _fallback_text(snap: RouteSnapshot) -> str:
    return f"{snap.route_id}: backend not ready ({snap.current_retries}/{snap.max_retries} retries left)"
