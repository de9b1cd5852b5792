#!/usr/bin/env python3
"""
Production startup: migrate + seed, then exec gunicorn.

Usage:
    python scripts/start.py

Environment:
    PORT              bind port (default 8080)
    WEB_CONCURRENCY   gunicorn worker count (default 2)
    SKIP_RELEASE=1    start the server without running migrations/seed
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, low: int, high: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = -1
    if value < low or value > high:
        print(f"ERROR: Invalid {name} value '{raw}'. Must be integer {low}-{high}.", flush=True)
        sys.exit(1)
    return value


def main() -> None:
    port = _int_env("PORT", 8080, low=1, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2, low=1, high=64)

    if (os.environ.get("SKIP_RELEASE") or "").strip() != "1":
        print("=== Running release phase ===", flush=True)
        from scripts.release import run_release

        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    print(f"=== Starting gunicorn on 0.0.0.0:{port} ({workers} workers) ===", flush=True)

    # exec so gunicorn becomes PID 1 and receives container signals directly
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", str(workers),
            "--timeout", "60",
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
