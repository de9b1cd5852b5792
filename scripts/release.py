"""
Release phase: bring the schema to Alembic head, then seed the tenant.

Runs before the web process starts (see scripts/start.py) and can be run by hand:

    python scripts/release.py

Environment:
    DATABASE_URL   required; sqlite is refused when ENV is prod/production
    SKIP_SEED=1    migrate only (company/roles/admin are left alone)
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def release_database_url(environ: Mapping[str, str]) -> str:
    db_url = (environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")
    return db_url


def _alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    # ConfigParser interpolation treats "%" specially (url-encoded passwords).
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    return cfg


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.runtime.migration import MigrationContext
    from alembic.script import ScriptDirectory
    from sqlalchemy import create_engine

    cfg = _alembic_config(db_url)
    head = ScriptDirectory.from_config(cfg).get_current_head()
    engine = create_engine(db_url, future=True)
    try:
        with engine.connect() as conn:
            current = MigrationContext.configure(conn).get_current_revision()
    finally:
        engine.dispose()

    if current == head:
        print(f"Schema already at head ({head}).", flush=True)
        return
    print(f"Upgrading schema {current or '(empty)'} -> {head}...", flush=True)
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)


def run_release() -> None:
    db_url = release_database_url(os.environ)
    env = (os.environ.get("ENV") or "").strip().lower()
    print(f"=== corhub release start (ENV={env or '(unset)'}) ===", flush=True)

    migrate(db_url)

    if (os.environ.get("SKIP_SEED") or "").strip() == "1":
        print("SKIP_SEED=1; not seeding.", flush=True)
    else:
        from scripts import init_db

        init_db.seed_only(database_url=db_url)
        print("Seeded company, permissions, roles and admin (existing rows kept).", flush=True)
    print("=== corhub release done ===", flush=True)


if __name__ == "__main__":
    run_release()
