from __future__ import annotations

import argparse
import json
import sys

from wakegate import db
from wakegate.config import ConfigError, load_routes
from wakegate.docker_ops import DockerRuntime, docker_available
from wakegate.settings import settings


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _route_dict(r) -> dict:
    return {
        "id": r.id,
        "helperContainers": list(r.helper_containers),
        "hosts": list(r.match_hosts),
        "backend": r.backend_address,
        "maxRetries": r.max_retries,
        "inactivityTimeout": r.inactivity_timeout_minutes,
        "sleepStartTime": r.sleep_start,
        "sleepStopTime": r.sleep_stop,
    }


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="On-demand reverse proxy for Docker containers")
    p.add_argument("--config", default=settings.config_path, help="Route configuration file (JSON)")
    p.add_argument("--log-level", default=settings.log_level)
    sub = p.add_subparsers(dest="cmd", required=True)

    s_serve = sub.add_parser("serve", help="Run the gateway")
    s_serve.add_argument("--host", default=settings.listen_host)
    s_serve.add_argument("--port", type=int, default=settings.listen_port)

    sub.add_parser("check", help="Validate the config file against the Docker daemon")

    sub.add_parser("routes", help="Print the parsed routes (no Docker access)")

    s_ev = sub.add_parser("events", help="Show recent gateway events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--route", default=None, help="Only events for this route")

    args = p.parse_args(argv)
    db.configure_logging(args.log_level)
    db.init_db()

    if args.cmd == "serve":
        import uvicorn

        from wakegate.app import create_app

        try:
            runtime = DockerRuntime()
            app = create_app(routes=load_routes(args.config, runtime), runtime=runtime)
        except ConfigError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    if args.cmd == "check":
        if not docker_available():
            print("error: Docker is not available. Check that the docker socket is mounted.", file=sys.stderr)
            return 1
        try:
            routes = load_routes(args.config, DockerRuntime())
        except ConfigError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1
        _print({"ok": True, "routes": len(routes)})
        return 0

    if args.cmd == "routes":
        try:
            routes = load_routes(args.config)
        except ConfigError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1
        _print([_route_dict(r) for r in routes])
        return 0

    if args.cmd == "events":
        _print(db.latest_events(args.limit, route_id=args.route))
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
