from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import asyncpg

BACKEND_ROOT = Path(__file__).resolve().parent.parent / "backend"
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from beatguard.infra.migrations import apply_migrations  # noqa: E402
from beatguard.settings import settings  # noqa: E402


async def wait_for_db(retries: int = 30, delay: int = 2) -> asyncpg.Connection:
    for attempt in range(retries):
        try:
            return await asyncpg.connect(settings.postgres_url)
        except (OSError, asyncpg.CannotConnectNowError):
            print(f"Database starting up... waiting {delay}s ({attempt + 1}/{retries})")
            await asyncio.sleep(delay)
    raise SystemExit("Could not connect to database after multiple retries")


async def main() -> None:
    conn = await wait_for_db()
    try:
        applied = await apply_migrations(conn)
    finally:
        await conn.close()
    for name in applied:
        print(f"Applied {name}")
    if not applied:
        print("Database schema up to date")


if __name__ == "__main__":
    asyncio.run(main())
