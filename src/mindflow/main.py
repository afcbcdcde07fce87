"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import uvicorn

from mindflow.config import get_settings
from mindflow.engine.config import load_engine_config
from mindflow.errors import EngineConfigError
from mindflow.logger import setup_logging


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="mindflow",
        description="Per-session digital stress scoring engine.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── show-config ───────────────────────────────────────────
    sub.add_parser("show-config", help="Print the active engine table as JSON.")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "mindflow.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "init-db":
        from mindflow.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "show-config":
        try:
            config = load_engine_config(settings)
        except EngineConfigError as exc:
            print(exc, file=sys.stderr)
            sys.exit(2)
        print(json.dumps(config.model_dump(mode="json"), indent=2))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
