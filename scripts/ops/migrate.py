#!/usr/bin/env python3
"""Run database migrations using Alembic."""

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config


def _alembic_config() -> Config:
    # Project root is two levels up from scripts/ops/
    project_root = Path(__file__).parent.parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    return alembic_cfg


def run_migrations(exit_on_error=True):
    """Run all pending database migrations.

    Args:
        exit_on_error: If True, exit the process on error. If False, raise exception.
    """
    alembic_cfg = _alembic_config()

    try:
        print("Running database migrations...")
        command.upgrade(alembic_cfg, "heads")
        print("✅ Database migrations completed successfully!")
    except Exception as e:
        error_msg = str(e)
        print(f"❌ Error running migrations: {error_msg}")

        # Another process created alembic_version at the same time
        if "pg_type_typname_nsp_index" in error_msg and "alembic_version" in error_msg:
            print("⚠️ alembic_version table already exists (race condition with another process)")
            print("🔄 Retrying migration...")
            try:
                command.upgrade(alembic_cfg, "heads")
                print("✅ Database migrations completed successfully on retry!")
                return
            except Exception as retry_error:
                print(f"❌ Migration retry also failed: {retry_error}")

        if exit_on_error:
            sys.exit(1)
        else:
            raise


def check_migration_status():
    """Check current migration status."""
    try:
        print("Checking migration status...")
        command.current(_alembic_config())
    except Exception as e:
        print(f"Error checking status: {e}")


def downgrade(revision: str):
    """Downgrade to the given revision ("base" removes the webhook tables)."""
    try:
        print(f"Downgrading to {revision}...")
        command.downgrade(_alembic_config(), revision)
        print("✅ Downgrade completed successfully!")
    except Exception as e:
        print(f"❌ Error downgrading: {e}")
        sys.exit(1)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        if sys.argv[1] == "status":
            check_migration_status()
        elif sys.argv[1] == "downgrade" and len(sys.argv) > 2:
            downgrade(sys.argv[2])
        elif sys.argv[1] == "upgrade":
            run_migrations()
        else:
            print(
                """Usage:
    python migrate.py                  # Run all pending migrations
    python migrate.py upgrade          # Run all pending migrations
    python migrate.py status           # Check current migration status
    python migrate.py downgrade <rev>  # Downgrade to a revision
            """
            )
    else:
        # Default action is to run migrations
        run_migrations()
