from __future__ import annotations

from datetime import datetime
from threading import Event, Thread

from . import db
from .docker_ops import RuntimeController
from .runtime import RouteRegistry
from .settings import settings
from .sleep import in_sleep_window

REASON_SLEEP = "sleep window started"
REASON_IDLE = "inactivity"


class IdleReaper:
    """Periodically stops container groups that are idle or due to sleep."""

    def __init__(
        self,
        registry: RouteRegistry,
        runtime: RuntimeController,
        interval_s: int = settings.reaper_interval_s,
        stop_grace_s: int = settings.stop_grace_s,
    ):
        self.registry = registry
        self.runtime = runtime
        self.interval_s = max(1, int(interval_s))
        self.stop_grace_s = stop_grace_s
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="idle-reaper", daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def running(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    def _loop(self) -> None:
        db.log_event("INFO", f"Idle reaper started (every {self.interval_s}s)")
        while not self._stop.wait(self.interval_s):
            try:
                self.tick()
            except Exception as e:
                db.log_event("ERROR", f"Idle reaper tick failed: {type(e).__name__}: {e}")

    def tick(self, now: float | None = None) -> list[tuple[str, str]]:
        """Scan every route once; return the (route_id, reason) pairs stopped.

        A sleep-window stop does not end the pass; later routes are still
        checked in the same tick.
        """
        now = self.registry.clock() if now is None else now
        wall = datetime.fromtimestamp(now)
        stopped: list[tuple[str, str]] = []
        for route in self.registry:
            group = route.container_group
            if not self.runtime.is_running(group):
                continue
            if route.has_sleep_window and in_sleep_window(route.sleep_start, route.sleep_stop, wall):
                reason = REASON_SLEEP
            elif self.registry.idle_deadline_passed(route.id, now):
                reason = REASON_IDLE
            else:
                continue
            db.log_event("INFO", f"Stopping container group because {reason}", route_id=route.id)
            self.runtime.stop(group, self.stop_grace_s, route_id=route.id)
            stopped.append((route.id, reason))
        return stopped
