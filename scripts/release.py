"""
Release-phase helper.

Goal:
- Fail fast if the database is not configured (avoid silently using SQLite in prod).
- Run alembic migrations.
- Seed standard deduction types (idempotent).

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


def _require_database_url() -> str:
    from app.hrms.config import build_database_url

    v = build_database_url()
    if not v:
        raise RuntimeError(
            "Missing database configuration. Set DATABASE_URL, or DB_HOST, DB_PORT, DB_NAME, DB_USER and DB_PASSWORD."
        )
    return v


def run_release() -> None:
    db_url = _require_database_url()
    # Guardrail: prevent accidental prod deploys against SQLite.
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Point it at Postgres.")

    print("=== HRMS release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    print("Running Alembic migrations...", flush=True)

    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    # ConfigParser interpolation: escape % in URL-encoded passwords
    cfg.set_main_option("sqlalchemy.url", db_url.replace("%", "%%"))
    command.upgrade(cfg, "head")
    print("Migrations complete.", flush=True)

    print("Seeding deduction types (idempotent)...", flush=True)
    from scripts import init_db

    inserted = init_db.seed_only(database_url=db_url)
    print(f"Seed complete ({inserted} inserted).", flush=True)
    print("=== HRMS release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
