from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Callable, Iterable


class ProbeOutcome(str, Enum):
    ALIVE = "alive"
    UNREACHABLE = "unreachable"  # transport error, no HTTP response
    BAD_STATUS = "bad_status"  # backend answered with a non-success status


@dataclass
class Route:
    """One configured service: its hosts, backend and container group.

    ``current_retries`` and ``last_activity_at`` are mutated concurrently by
    request handlers and the idle reaper; go through ``RouteRegistry`` (which
    holds ``lock``) rather than writing them directly.
    """

    id: str
    match_hosts: tuple[str, ...]
    backend_address: str
    helper_containers: tuple[str, ...] = ()
    max_retries: int = 5
    inactivity_timeout_minutes: int = 10
    sleep_start: str = ""
    sleep_stop: str = ""
    current_retries: int | None = None
    last_activity_at: float = field(default_factory=time.time)
    lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.current_retries is None or self.current_retries > self.max_retries:
            self.current_retries = self.max_retries

    @property
    def container_group(self) -> list[str]:
        # Helpers start before the primary container.
        return [*self.helper_containers, self.id]

    @property
    def has_sleep_window(self) -> bool:
        return bool(self.sleep_start and self.sleep_stop)


@dataclass(frozen=True)
class RouteSnapshot:
    route_id: str
    current_retries: int
    max_retries: int
    inactivity_timeout_minutes: int
    last_activity_at: float
    spent_retry: bool = False  # this update consumed one retry

    @property
    def exhausted(self) -> bool:
        return self.current_retries < 0


def _snapshot(route: Route, spent_retry: bool = False) -> RouteSnapshot:
    return RouteSnapshot(
        route_id=route.id,
        current_retries=route.current_retries,
        max_retries=route.max_retries,
        inactivity_timeout_minutes=route.inactivity_timeout_minutes,
        last_activity_at=route.last_activity_at,
        spent_retry=spent_retry,
    )


class RouteRegistry:
    """In-memory route table shared by the gateway and the idle reaper.

    The id and host indexes are built once and never change, so lookups take
    no lock. Mutable per-route fields are only touched under the route's own
    lock.
    """

    def __init__(self, routes: Iterable[Route], clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._routes: dict[str, Route] = {}
        self._by_host: dict[str, Route] = {}
        for r in routes:
            if r.id in self._routes:
                raise ValueError(f"Duplicate route '{r.id}'.")
            self._routes[r.id] = r
            for h in r.match_hosts:
                key = h.lower()
                if key in self._by_host:
                    raise ValueError(f"Host '{h}' is claimed by both '{self._by_host[key].id}' and '{r.id}'.")
                self._by_host[key] = r

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self):
        return iter(list(self._routes.values()))

    def get(self, route_id: str) -> Route:
        return self._routes[route_id]

    def match_host(self, host: str | None) -> Route | None:
        if not host:
            return None
        host = host.strip().lower()
        route = self._by_host.get(host)
        if route is None and not host.endswith("]"):
            # Fall back to the bare name when the Host header carries a port.
            name, _, port = host.rpartition(":")
            if name and port.isdigit():
                route = self._by_host.get(name)
        return route

    def any_idle_timeout(self) -> bool:
        return any(r.inactivity_timeout_minutes > 0 for r in self._routes.values())

    def snapshot(self, route_id: str) -> RouteSnapshot:
        route = self._routes[route_id]
        with route.lock:
            return _snapshot(route)

    def record_probe(
        self,
        route_id: str,
        outcome: ProbeOutcome,
        now: float | None = None,
        debounce_s: float = 5,
    ) -> RouteSnapshot:
        """Apply a probe result to the retry budget and activity clock.

        - ALIVE resets the budget and refreshes the activity clock.
        - BAD_STATUS always consumes one retry and refreshes the clock.
        - UNREACHABLE consumes one retry only when ``debounce_s`` has passed
          since the last activity, so a burst of requests against a booting
          backend costs a single retry.
        """
        now = self.clock() if now is None else now
        route = self._routes[route_id]
        spent = False
        with route.lock:
            if outcome is ProbeOutcome.ALIVE:
                route.current_retries = route.max_retries
                route.last_activity_at = max(route.last_activity_at, now)
            elif outcome is ProbeOutcome.BAD_STATUS:
                route.current_retries -= 1
                spent = True
                route.last_activity_at = max(route.last_activity_at, now)
            elif now - route.last_activity_at >= debounce_s:
                route.current_retries -= 1
                route.last_activity_at = now
                spent = True
            return _snapshot(route, spent)

    def idle_deadline_passed(self, route_id: str, now: float | None = None) -> bool:
        now = self.clock() if now is None else now
        route = self._routes[route_id]
        with route.lock:
            if route.inactivity_timeout_minutes <= 0:
                return False
            return now >= route.last_activity_at + route.inactivity_timeout_minutes * 60
