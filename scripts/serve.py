#!/usr/bin/env python3
"""Run the vidtube API under uvicorn.

Flags default to the VIDTUBE_* environment so containers can configure the
process without a command line.
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import uvicorn


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

_TRUTHY = {"1", "true", "yes", "y", "on"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the vidtube API.")
    parser.add_argument("--host", default=os.getenv("VIDTUBE_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("VIDTUBE_PORT", "8000")))
    parser.add_argument("--log-level", default=os.getenv("VIDTUBE_LOG_LEVEL", "info"))
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=_env_flag("VIDTUBE_RELOAD", "0"),
        help="Restart on code changes (development only).",
    )
    parser.add_argument(
        "--with-worker",
        action=argparse.BooleanOptionalAction,
        default=_env_flag("VIDTUBE_ENABLE_WORKER", "1"),
        help="Run the AI workflow worker inside the API process.",
    )
    parser.add_argument("--db-path", default=os.getenv("VIDTUBE_SQLITE_PATH", ""))
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])

    # The app reads its wiring from the environment, including reloaded children.
    os.environ["VIDTUBE_ENABLE_WORKER"] = "1" if args.with_worker else "0"
    if args.db_path:
        os.environ["VIDTUBE_SQLITE_PATH"] = str(args.db_path)

    uvicorn.run(
        "vidtube.api.app:app",
        host=args.host,
        port=int(args.port),
        reload=bool(args.reload),
        log_level=str(args.log_level).lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
