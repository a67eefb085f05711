#!/usr/bin/env python3
"""
Create the Obsidian PM tables.

Usage:
    python -m obsidian_pm.scripts.init_db [--database-url sqlite:///./obsidian.db] [--drop]

Idempotent: tables that already exist are left alone unless --drop is given.
"""
import argparse
import sys

from obsidian_pm.core.config import settings
from obsidian_pm.core.database import check_connection, create_all_tables, drop_all_tables, init_engine
from obsidian_pm.core.logging import configure_logging, log_event


def main():
    parser = argparse.ArgumentParser(description="Create Obsidian PM database tables")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    parser.add_argument("--drop", action="store_true", help="Drop all tables first (destructive)")
    args = parser.parse_args()

    configure_logging(settings.ENV)
    init_engine(args.database_url)

    if not check_connection():
        log_event("error", "init_db.unreachable", error_code="db_unreachable")
        sys.exit(1)

    if args.drop:
        drop_all_tables()
        log_event("warning", "init_db.dropped")

    create_all_tables()
    log_event("info", "init_db.created")


if __name__ == "__main__":
    main()
