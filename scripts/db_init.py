#!/usr/bin/env python3
"""
Database initialization script for CrushAI.

Creates the entitlement table on the configured database and checks that the
storage backends answer. Tables are created automatically only for sqlite.
"""
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from crushai.config import get_config  # noqa: E402
from crushai.database import Database, init_redis  # noqa: E402


def main():
    """Create all tables and report storage health."""
    print("=" * 60)
    print("CrushAI Database Initialization")
    print("=" * 60)

    cfg = get_config()
    db_url = cfg.get("DATABASE_URL")
    if not db_url:
        print("\nDATABASE_URL is not set; entitlements would be held in memory.")
        return 1

    print(f"\nDatabase: {db_url.split('@')[1] if '@' in db_url else db_url.split(':', 1)[0]}")

    database = Database(db_url, create_tables=True)
    try:
        print("Tables created")
        health = database.health()
    finally:
        database.close()

    redis_status = "not configured"
    if cfg.get("REDIS_URL"):
        client = init_redis(cfg["REDIS_URL"])
        redis_status = "healthy" if client is not None else "unreachable"
        if client is not None:
            client.close()

    print(f"\n  Database: {health['status']}")
    print(f"  Redis: {redis_status}")

    if health["status"] == "healthy" and redis_status != "unreachable":
        print("\nDatabase initialization complete")
        return 0
    print("\nSome services are not healthy. Check configuration.")
    return 1


if __name__ == "__main__":
    sys.exit(main())
