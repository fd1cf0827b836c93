from __future__ import annotations

import httpx

from .runtime import ProbeOutcome, Route, RouteRegistry, RouteSnapshot
from .settings import settings


def probe_client(timeout_s: float = settings.probe_timeout_s) -> httpx.Client:
    return httpx.Client(timeout=timeout_s, follow_redirects=True)


def check_backend(client: httpx.Client, url: str) -> ProbeOutcome:
    """GET the backend once and classify the result.

    Any 2xx (after redirects) is alive. A response with another status is
    BAD_STATUS; no response at all (refused, reset, timed out) is UNREACHABLE.
    """
    try:
        resp = client.get(url)
    except httpx.HTTPError:
        return ProbeOutcome.UNREACHABLE
    if resp.is_success:
        return ProbeOutcome.ALIVE
    return ProbeOutcome.BAD_STATUS


def probe_route(
    registry: RouteRegistry,
    route: Route,
    client: httpx.Client,
    now: float | None = None,
    debounce_s: float = settings.probe_debounce_s,
) -> tuple[bool, RouteSnapshot]:
    """Probe a route's backend and fold the outcome into its retry budget.

    Returns (alive, snapshot taken right after the update).
    """
    outcome = check_backend(client, route.backend_address)
    snap = registry.record_probe(route.id, outcome, now=now, debounce_s=debounce_s)
    return outcome is ProbeOutcome.ALIVE, snap
