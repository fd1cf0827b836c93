from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Callable, Iterable

import httpx
from fastapi import FastAPI, Request
from starlette.concurrency import run_in_threadpool

from . import db
from .config import load_routes
from .docker_ops import DockerRuntime, RuntimeController
from .gateway import GatewayHandler, InboundRequest
from .health import probe_client as make_probe_client
from .pages import PageRenderer
from .reaper import IdleReaper
from .runtime import Route, RouteRegistry
from .settings import Settings, settings

METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def create_app(
    routes: Iterable[Route] | None = None,
    runtime: RuntimeController | None = None,
    renderer: PageRenderer | None = None,
    probe_client: httpx.Client | None = None,
    proxy_client: httpx.Client | None = None,
    cfg: Settings = settings,
    start_reaper: bool = True,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Build the gateway app.

    Routes are loaded from ``cfg.config_path`` unless given; a bad file raises
    ``ConfigError`` here, before the server binds its port.
    """
    db.init_db()
    runtime = runtime or DockerRuntime()
    if routes is None:
        routes = load_routes(cfg.config_path, runtime)
    registry = RouteRegistry(routes, clock=clock)

    handler = GatewayHandler(
        registry=registry,
        runtime=runtime,
        renderer=renderer or PageRenderer(cfg.template_dir),
        probe_client=probe_client or make_probe_client(cfg.probe_timeout_s),
        proxy_client=proxy_client or httpx.Client(timeout=cfg.proxy_timeout_s, follow_redirects=False),
        probe_debounce_s=cfg.probe_debounce_s,
    )
    reaper = IdleReaper(registry, runtime, interval_s=cfg.reaper_interval_s, stop_grace_s=cfg.stop_grace_s)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Idle reaping only matters when some route can time out.
        if start_reaper and registry.any_idle_timeout():
            reaper.start()
        yield
        reaper.stop()
        handler.probe_client.close()
        handler.proxy_client.close()

    app = FastAPI(title="wakegate", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.registry = registry
    app.state.handler = handler
    app.state.reaper = reaper

    @app.api_route("/{path:path}", methods=METHODS)
    async def gateway(request: Request, path: str):
        inbound = InboundRequest(
            method=request.method,
            host=request.headers.get("host", ""),
            path=request.url.path,
            query=request.url.query,
            headers=list(request.headers.items()),
            body=await request.body(),
        )
        return await run_in_threadpool(handler.handle, inbound)

    return app
