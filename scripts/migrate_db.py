#!/usr/bin/env python3
"""
Database Migration — Create the message_jobs table (and, for standalone
deployments, the contacts / tenant settings tables it reads).

Usage:
    python scripts/migrate_db.py            # create missing tables
    python scripts/migrate_db.py --check    # report status only
    python scripts/migrate_db.py --jobs-only
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _existing_tables(conn) -> list[str]:
    from sqlalchemy import inspect
    return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())


async def run_migration(check_only: bool = False, jobs_only: bool = False):
    from config.settings import load_settings
    load_settings()

    from database.session import get_engine, close_db
    from database.models import Base, MessageJobRow

    engine = get_engine()
    url = str(engine.url)
    print(f"Database: {engine.dialect.name}")
    print(f"URL: {url.split('@')[-1] if '@' in url else url}")

    tables = [MessageJobRow.__table__] if jobs_only else list(Base.metadata.sorted_tables)
    wanted = [t.name for t in tables]

    async with engine.connect() as conn:
        existing = await _existing_tables(conn)

    missing = [name for name in wanted if name not in existing]
    print(f"Tables defined: {', '.join(wanted)}")
    print(f"Tables existing: {', '.join(existing) or '(none)'}")

    if check_only:
        if missing:
            print(f"Tables MISSING: {', '.join(missing)}")
            print("Run without --check to create them.")
        else:
            print("All tables exist.")
        await close_db()
        return

    print("Running database migration...")
    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables))

    async with engine.connect() as conn:
        existing = await _existing_tables(conn)
    print(f"Tables created/verified: {', '.join(n for n in wanted if n in existing)}")

    await close_db()
    print("Migration complete.")


def main():
    parser = argparse.ArgumentParser(description="Database migration")
    parser.add_argument("--check", action="store_true", help="Check status only")
    parser.add_argument("--jobs-only", action="store_true",
                        help="Only create message_jobs (contacts/settings owned elsewhere)")
    args = parser.parse_args()

    asyncio.run(run_migration(check_only=args.check, jobs_only=args.jobs_only))


if __name__ == "__main__":
    main()
