"""
Release phase: migrate the schema, then seed reference data.

Seeding is idempotent: categories, staff authors, the admin account and the page-builder
zones are created only when missing, and an existing admin password is never overwritten.

Usage:
  python scripts/release.py [--skip-seed]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

PRODUCTION_ENVS = ("prod", "production")


def check_database_url() -> str:
    """DATABASE_URL must be set, and must not point at SQLite in production."""
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set. Configure it on the service before deploying.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in PRODUCTION_ENVS and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against SQLite in production. Point DATABASE_URL at Postgres.")
    return db_url


def alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    # Absolute paths so the release works from any working directory.
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def run_migrations(db_url: str) -> None:
    from alembic import command

    print("Applying migrations...", flush=True)
    command.upgrade(alembic_config(db_url), "head")
    print("Schema is at head.", flush=True)


def run_release(*, seed: bool = True) -> None:
    db_url = check_database_url()
    print("=== Fiscal Wire release ===", flush=True)
    print(f"ENV={(os.environ.get('ENV') or '(unset)').strip()}", flush=True)

    run_migrations(db_url)

    if not seed:
        print("Seed skipped.", flush=True)
        return
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("=== Release finished ===", flush=True)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Migrate and seed the Fiscal Wire database.")
    parser.add_argument("--skip-seed", action="store_true", help="Only apply migrations.")
    args = parser.parse_args(argv)
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
