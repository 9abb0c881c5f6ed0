#!/usr/bin/env python3
"""
Container entrypoint: release (migrate + seed), then exec gunicorn on app.wsgi:app.

Environment: PORT (default 8080), WEB_CONCURRENCY (gunicorn workers, default 2).

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def parse_port(raw: str | None, default: int = 8080) -> int:
    raw = (raw or "").strip()
    if not raw:
        return default
    port = int(raw)
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return port


def gunicorn_argv(port: int, workers: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", "60",
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    try:
        port = parse_port(os.environ.get("PORT"))
        workers = max(1, int(os.environ.get("WEB_CONCURRENCY") or 2))
    except ValueError as e:
        print(f"ERROR: {e}", flush=True)
        sys.exit(1)

    from scripts.release import run_release

    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    print(f"=== gunicorn on 0.0.0.0:{port} with {workers} workers ===", flush=True)
    # exec so gunicorn is PID 1 and receives container signals
    os.execvp("gunicorn", gunicorn_argv(port, workers))


if __name__ == "__main__":
    main()
