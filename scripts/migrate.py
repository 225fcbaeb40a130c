#!/usr/bin/env python3
"""Apply SQL migrations in migrations/versions (sorted by name) to POSTGRES_APP_URL."""
import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

import asyncpg

from src.core.config.env import load_default_env

MIGRATIONS_DIR = ROOT / "migrations" / "versions"


def split_statements(sql: str) -> list[str]:
    """Drop full-line comments and split on semicolons."""
    lines = [line for line in sql.split("\n") if not line.strip().startswith("--")]
    return [stmt.strip() for stmt in "\n".join(lines).split(";") if stmt.strip()]


async def run_migrations(url: str, only: str | None = None) -> None:
    # asyncpg uses postgresql:// not postgresql+asyncpg://
    conn = await asyncpg.connect(url.replace("postgresql+asyncpg://", "postgresql://"))
    try:
        for sql_path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            if only and sql_path.name != only:
                continue
            async with conn.transaction():
                for stmt in split_statements(sql_path.read_text(encoding="utf-8")):
                    await conn.execute(stmt + ";")
            print(f"Migration {sql_path.name} applied successfully.")
    finally:
        await conn.close()


def main():
    parser = argparse.ArgumentParser(description="Apply engine migrations.")
    parser.add_argument("--only", default=None, help="Apply a single migration file by name")
    args = parser.parse_args()
    load_default_env(ROOT)
    url = os.getenv("POSTGRES_APP_URL")
    if not url:
        print("POSTGRES_APP_URL not set. Set it in config/env/.env or .env", file=sys.stderr)
        sys.exit(1)
    asyncio.run(run_migrations(url, args.only))


if __name__ == "__main__":
    main()
