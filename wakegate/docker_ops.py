from __future__ import annotations

from typing import Callable, Iterable, Protocol

import docker
from docker.errors import DockerException, NotFound

from .db import log_event


class RuntimeController(Protocol):
    """The container operations the gateway and the idle reaper need."""

    def is_running(self, names: Iterable[str]) -> bool: ...

    def start(self, names: Iterable[str], route_id: str | None = None) -> None: ...

    def stop(self, names: Iterable[str], grace_s: int, route_id: str | None = None) -> None: ...

    def exists(self, name: str) -> bool: ...


def _client() -> docker.DockerClient:
    return docker.from_env()


def docker_available() -> bool:
    try:
        c = _client()
        c.ping()
        return True
    except DockerException:
        return False


class DockerRuntime:
    """RuntimeController backed by the local Docker daemon.

    Failures against the daemon are logged and reported as "did not happen";
    they never propagate into request handling.
    """

    def __init__(self, client_factory: Callable[[], docker.DockerClient] = _client):
        self._client_factory = client_factory
        self._cached: docker.DockerClient | None = None

    def _docker(self) -> docker.DockerClient:
        if self._cached is None:
            self._cached = self._client_factory()
        return self._cached

    def exists(self, name: str) -> bool:
        try:
            # containers.get also resolves ids and id prefixes; only a name counts.
            return self._docker().containers.get(name).name == name
        except NotFound:
            return False
        except DockerException as e:
            log_event("ERROR", f"Unable to look up container {name}: {e}")
            return False

    def is_running(self, names: Iterable[str]) -> bool:
        """True only when every named container reports ``running``."""
        try:
            c = self._docker()
            for name in names:
                cont = c.containers.get(name)
                cont.reload()
                if cont.status != "running":
                    return False
            return True
        except NotFound:
            return False
        except DockerException as e:
            log_event("ERROR", f"Unable to query container state: {e}")
            return False

    def start(self, names: Iterable[str], route_id: str | None = None) -> None:
        for name in names:
            try:
                self._docker().containers.get(name).start()
                log_event("INFO", f"Started container {name}", route_id=route_id)
            except DockerException as e:
                log_event("ERROR", f"Unable to start container {name}: {e}", route_id=route_id)

    def stop(self, names: Iterable[str], grace_s: int = 5, route_id: str | None = None) -> None:
        for name in names:
            try:
                self._docker().containers.get(name).stop(timeout=grace_s)
                log_event("INFO", f"Stopped container {name}", route_id=route_id)
            except DockerException as e:
                log_event("ERROR", f"Unable to stop container {name}: {e}", route_id=route_id)
