"""Apply pending SQL migrations from ``migrations/`` in filename order.

Applied files are recorded in ``schema_migrations`` so reruns only execute
new ones. Each file runs in its own transaction; the first failure stops the
run with a non-zero exit code.
"""

import asyncio
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from nearbyconnect.infra.postgres import close_pool, get_pool  # noqa: E402
from nearbyconnect.obs.logging import configure_logging  # noqa: E402

MIGRATION_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")

logger = logging.getLogger("nearbyconnect.migrations")


async def main() -> int:
    if not os.path.isdir(MIGRATION_DIR):
        logger.error("migrations directory not found", extra={"path": MIGRATION_DIR})
        return 1

    files = sorted(f for f in os.listdir(MIGRATION_DIR) if f.endswith(".sql"))
    pool = await get_pool()
    try:
        async with pool.acquire() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version TEXT PRIMARY KEY,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            applied = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}
            for filename in files:
                version = filename.rsplit(".", 1)[0]
                if version in applied:
                    continue
                with open(os.path.join(MIGRATION_DIR, filename), "r", encoding="utf-8") as fh:
                    sql = fh.read()
                logger.info("applying migration", extra={"version": version})
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute("INSERT INTO schema_migrations (version) VALUES ($1)", version)
    finally:
        await close_pool()
    return 0


if __name__ == "__main__":
    configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    sys.exit(asyncio.run(main()))
