from __future__ import annotations

import argparse
import logging
import os
import sys
import uuid

from fastapi import FastAPI
import uvicorn

from registrar.api.http_app import build_app
from registrar.logging_setup import configure_logging
from registrar.roles import SUPPORTED_ROLES, RuntimeRole, validate_role
from registrar.services.bootstrap import build_runtime_container

logger = logging.getLogger("runtime")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="IP registration pipeline runtime")
    parser.add_argument("--role", required=True, help=f"Runtime role, one of: {', '.join(SUPPORTED_ROLES)}")
    parser.add_argument("--host", default=os.getenv("APP_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=None, help="Defaults to 8000 for api, 8100 for the worker")
    parser.add_argument("--dry-run-startup", action="store_true", help="Validate role and wiring, then exit")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (dev mode)")
    return parser.parse_args(argv)


def build_role_app(role: RuntimeRole, run_id: str) -> FastAPI:
    container = build_runtime_container(role)
    return build_app(
        role=role.name,
        run_id=run_id,
        worker_loop=container.worker_loop,
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )


def create_runtime_app() -> FastAPI:
    """Uvicorn factory used by ``--reload``; the role comes from APP_ROLE."""
    configure_logging()
    return build_role_app(validate_role(os.getenv("APP_ROLE", "api")), str(uuid.uuid4()))


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        role = validate_role(args.role)
    except ValueError as exc:
        sys.stderr.write(f"ERROR: {exc}\n")
        sys.stderr.write(f"Try one of: {', '.join(SUPPORTED_ROLES)}\n")
        return 2

    configure_logging()
    run_id = str(uuid.uuid4())
    context = {"role": role.name, "service": role.name, "run_id": run_id}
    port = args.port if args.port is not None else role.default_port

    if args.dry_run_startup:
        build_runtime_container(role)
        logger.info("dry-run startup complete", extra=context)
        return 0

    logger.info("starting runtime", extra=context)
    if args.reload:
        os.environ["APP_ROLE"] = role.name
        uvicorn.run(
            "registrar.main:create_runtime_app",
            host=args.host,
            port=port,
            log_level="warning",
            reload=True,
            factory=True,
        )
    else:
        uvicorn.run(build_role_app(role, run_id), host=args.host, port=port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
