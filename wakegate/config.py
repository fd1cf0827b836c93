from __future__ import annotations

import json
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from .db import log_event
from .docker_ops import RuntimeController
from .runtime import Route
from .sleep import crosses_midnight, parse_hhmm

DEFAULT_MAX_RETRIES = 5
DEFAULT_INACTIVITY_TIMEOUT = 10


class ConfigError(Exception):
    """Invalid route configuration; the gateway cannot start."""


def normalize_host(value: str) -> str:
    """Reduce a configured host (bare or URL form) to a lowercase host[:port]."""
    value = value.strip()
    if "://" in value:
        value = urlsplit(value).netloc
    return value.lower()


class RouteConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    container_name: str = Field(..., alias="containerName", min_length=1, description="Primary container name")
    helper_containers: list[str] = Field(default_factory=list, alias="helperContainers")
    hosts: list[str] = Field(..., min_length=1, description="Hosts (or URLs) routed to this container")
    backend: str = Field(..., min_length=1, description="Backend URL to proxy to and probe")
    max_retries: int = Field(0, alias="maxRetries")
    inactivity_timeout: int = Field(DEFAULT_INACTIVITY_TIMEOUT, alias="inactivityTimeout", description="Minutes")
    sleep_start_time: str = Field("", alias="sleepStartTime", description="HH:MM")
    sleep_stop_time: str = Field("", alias="sleepStopTime", description="HH:MM")

    @field_validator("hosts")
    @classmethod
    def _hosts(cls, v: list[str]) -> list[str]:
        out = [normalize_host(h) for h in v]
        if any(not h for h in out):
            raise ValueError("parameter 'hosts' cannot contain empty entries")
        return out

    @field_validator("backend")
    @classmethod
    def _backend(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError(f"backend must be an absolute http(s) URL, got {v!r}")
        return v

    @field_validator("sleep_start_time", "sleep_stop_time")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        v = v.strip()
        if v:
            parse_hhmm(v)
        return v

    @model_validator(mode="after")
    def _sleep_pair(self) -> "RouteConfig":
        if bool(self.sleep_start_time) != bool(self.sleep_stop_time):
            raise ValueError("sleepStartTime and sleepStopTime must be given together")
        return self


_ROUTE_LIST = TypeAdapter(list[RouteConfig])


def parse_routes(raw: str | bytes) -> list[RouteConfig]:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid config file, not valid JSON: {e}") from e
    try:
        return _ROUTE_LIST.validate_python(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config file: {e}") from e


def to_route(i: int, cfg: RouteConfig) -> Route:
    """Apply defaults the way the config file format documents them."""
    max_retries = cfg.max_retries
    if max_retries < 1:
        max_retries = DEFAULT_MAX_RETRIES
        log_event(
            "WARN",
            f"Missing or invalid parameter 'maxRetries' for configuration set #{i}, using default value of {max_retries}",
        )
    timeout = cfg.inactivity_timeout
    if timeout < 0:
        timeout = DEFAULT_INACTIVITY_TIMEOUT
        log_event(
            "WARN",
            f"Invalid parameter 'inactivityTimeout' for configuration set #{i}, using default value of {timeout}",
        )
    if cfg.sleep_start_time and not crosses_midnight(cfg.sleep_start_time, cfg.sleep_stop_time):
        log_event(
            "WARN",
            f"Sleep window {cfg.sleep_start_time}-{cfg.sleep_stop_time} does not cross midnight; "
            "windows always wrap past midnight, so this route is always inside its sleep window",
            route_id=cfg.container_name,
        )
    return Route(
        id=cfg.container_name,
        match_hosts=tuple(cfg.hosts),
        backend_address=cfg.backend,
        helper_containers=tuple(cfg.helper_containers),
        max_retries=max_retries,
        inactivity_timeout_minutes=timeout,
        sleep_start=cfg.sleep_start_time,
        sleep_stop=cfg.sleep_stop_time,
    )


def check_containers(routes: list[Route], runtime: RuntimeController) -> None:
    for r in routes:
        if not runtime.exists(r.id):
            raise ConfigError(f"Invalid config file, no container with name {r.id} found")
        for h in r.helper_containers:
            if not runtime.exists(h):
                raise ConfigError(f"Invalid config file, no helper container with name {h} found")


def build_routes(configs: list[RouteConfig]) -> list[Route]:
    routes: list[Route] = []
    seen_ids: set[str] = set()
    seen_hosts: dict[str, str] = {}
    for i, cfg in enumerate(configs):
        if cfg.container_name in seen_ids:
            raise ConfigError(f"Invalid config file, container {cfg.container_name} is configured twice")
        seen_ids.add(cfg.container_name)
        for h in cfg.hosts:
            if h in seen_hosts:
                raise ConfigError(
                    f"Invalid config file, host {h} is used by both {seen_hosts[h]} and {cfg.container_name}"
                )
            seen_hosts[h] = cfg.container_name
        routes.append(to_route(i, cfg))
    return routes


def load_routes(path: str, runtime: RuntimeController | None = None) -> list[Route]:
    """Read, validate and materialize the route file.

    With a ``runtime``, every primary and helper container must exist.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e

    routes = build_routes(parse_routes(raw))
    if runtime is not None:
        check_containers(routes, runtime)
    log_event("INFO", f"{path} successfully parsed ({len(routes)} routes)")
    return routes
