#!/usr/bin/env python
# ============================================================================
# SCHEMA DEPLOYMENT SCRIPT
# ============================================================================
# PURPOSE: Deploy the dispatch schema to PostgreSQL using PydanticToSQL
# USAGE:
#   python scripts/deploy_schema.py --dry-run    # Preview SQL
#   python scripts/deploy_schema.py              # Execute deployment
#   python scripts/deploy_schema.py --status     # Check current status
# ============================================================================

import sys
import os
import argparse
import asyncio
import logging

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import psycopg

from core.schema import PydanticToSQL
from repositories.database import SCHEMA, get_connection_string, mask_conninfo

logger = logging.getLogger("deploy_schema")


async def _status(conninfo: str) -> int:
    async with await psycopg.AsyncConnection.connect(conninfo) as conn:
        result = await conn.execute(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = %s ORDER BY table_name",
            (SCHEMA,),
        )
        tables = [row[0] for row in await result.fetchall()]

    if not tables:
        print(f"Schema {SCHEMA} has no tables")
        return 1

    print(f"Tables ({len(tables)}):")
    for table in tables:
        print(f"  - {SCHEMA}.{table}")
    return 0


async def _deploy(conninfo: str, dry_run: bool, drop_first: bool) -> int:
    generator = PydanticToSQL(schema_name=SCHEMA)

    if dry_run:
        for i, stmt in enumerate(generator.generate_all(drop_first=drop_first), 1):
            print(f"-- Statement {i}")
            print(stmt.as_string(None))
            print()
        return 0

    async with await psycopg.AsyncConnection.connect(conninfo) as conn:
        count = await generator.execute(conn, drop_first=drop_first)
        await conn.commit()

    print(f"Executed {count} DDL statements")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Deploy the dispatch schema to PostgreSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/deploy_schema.py --dry-run     # Preview DDL without executing
  python scripts/deploy_schema.py               # Deploy schema
  python scripts/deploy_schema.py --status      # Check current installation
  python scripts/deploy_schema.py --drop        # Rebuild (DESTROYS DATA)

Environment Variables:
  DATABASE_URL          Full PostgreSQL connection string
  POSTGRES_HOST         Database host (default: localhost)
  POSTGRES_DB           Database name (default: postgres)
  POSTGRES_USER         Database user (default: postgres)
  POSTGRES_PASSWORD     Database password
  POSTGRES_PORT         Database port (default: 5432)
  POSTGRES_SSLMODE      SSL mode (default: prefer)
        """
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print DDL without executing"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="List tables in the dispatch schema"
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop the schema first (development rebuild only)"
    )
    parser.add_argument(
        "--connection",
        type=str,
        help="PostgreSQL connection string (overrides environment)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    conninfo = args.connection or get_connection_string()

    print("=" * 70)
    print("TASK DISPATCH ENGINE - Schema Deployment")
    print("=" * 70)
    print(f"Connection: {mask_conninfo(conninfo)}")
    print(f"Schema: {SCHEMA}")
    print("=" * 70)

    try:
        if args.status:
            code = asyncio.run(_status(conninfo))
        else:
            print(f"\nMode: {'DRY RUN' if args.dry_run else 'EXECUTE'}\n")
            code = asyncio.run(_deploy(conninfo, args.dry_run, args.drop))
    except psycopg.Error as e:
        logger.error(f"Deployment failed: {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
