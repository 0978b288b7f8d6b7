"""
Release phase for a Skill Loop deployment.

Runs before the web process starts:
- checks the environment the app needs (database, cron secret, mail, proof storage);
- upgrades the schema to the latest Alembic revision;
- seeds permissions, roles, system configuration defaults and the first admin
  (idempotent; an existing admin keeps their password).

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _env(name: str) -> str:
    return (os.environ.get(name) or "").strip()


def check_environment() -> tuple[str, list[str]]:
    """
    Return (database_url, warnings). Raises RuntimeError for settings the app cannot run without.
    """
    db_url = _env("DATABASE_URL")
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set. Point it at the Skill Loop Postgres database.")

    production = _env("ENV").lower() in ("prod", "production")
    warnings: list[str] = []
    if production and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against SQLite in production. Set DATABASE_URL to Postgres.")
    if _env("STORAGE_BACKEND").lower() == "s3" and not _env("S3_BUCKET"):
        raise RuntimeError("STORAGE_BACKEND=s3 needs S3_BUCKET for completion proofs.")

    if production:
        if not _env("CRON_SECRET"):
            warnings.append("CRON_SECRET is empty: /cron/reminders and /cron/journeys will refuse every call.")
        if _env("MAIL_ENABLED").lower() not in ("1", "true", "yes", "on") and not _env("SMTP_SERVER"):
            warnings.append("No SMTP server configured: OTP codes and magic links cannot be delivered.")
        if not _env("GOOGLE_API_KEY"):
            warnings.append("GOOGLE_API_KEY is empty: AI question drafting is disabled.")
    return db_url, warnings


def run_release() -> None:
    db_url, warnings = check_environment()
    print("=== Skill Loop release ===", flush=True)
    for w in warnings:
        print(f"WARNING: {w}", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    print("Upgrading schema to head...", flush=True)
    command.upgrade(cfg, "head")

    from scripts import init_db

    print("Seeding roles, permissions, config defaults and admin...", flush=True)
    init_db.seed_only(database_url=db_url)
    print("=== Skill Loop release done ===", flush=True)


if __name__ == "__main__":
    run_release()
