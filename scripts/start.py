#!/usr/bin/env python3
"""
Container entrypoint: release (migrate + seed), then exec gunicorn.

Usage:
    python scripts/start.py

gunicorn replaces this process so it runs as PID 1 and receives container signals.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

DEFAULT_PORT = "3000"
REQUEST_TIMEOUT = "120"


def validate_port(raw: str | None) -> str:
    port = (raw or "").strip()
    if not port:
        print(f"WARNING: PORT not set, using default {DEFAULT_PORT}", flush=True)
        return DEFAULT_PORT
    try:
        port_int = int(port)
    except ValueError:
        port_int = 0
    if not 1 <= port_int <= 65535:
        print(f"ERROR: Invalid PORT value '{port}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)
    return port


def scheduler_enabled() -> bool:
    return (os.environ.get("SCHEDULER_ENABLED") or "").strip().lower() in ("1", "true", "yes", "on")


def gunicorn_argv(port: str, *, with_scheduler: bool) -> list[str]:
    # The daily import timer lives in the worker, so it needs exactly one worker and no
    # --preload (a thread started in the master does not survive the fork).
    workers = "1" if with_scheduler else "2"
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", workers,
        "--timeout", REQUEST_TIMEOUT,
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    port = validate_port(os.environ.get("PORT"))

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    argv = gunicorn_argv(port, with_scheduler=scheduler_enabled())
    print(f"Starting gunicorn on 0.0.0.0:{port} ({argv[argv.index('--workers') + 1]} workers); health check at /healthz", flush=True)
    os.execvp(argv[0], argv)


if __name__ == "__main__":
    main()
