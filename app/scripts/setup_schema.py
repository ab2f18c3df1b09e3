# app/scripts/setup_schema.py
import asyncio
import logging
from tortoise import connections
from app.core.config import OUTBOX_TABLE_NAME
from app.core.db import init_db, close_db

log = logging.getLogger("setup_schema")


async def setup():
    # Creates cars and outbox tables if they do not exist
    await init_db(generate_schemas=True)

    conn = connections.get("default")
    if conn.capabilities.dialect != "postgres":
        log.info("Not a PostgreSQL database, skipping replica identity setup.")
        return

    # Log-based change capture needs full row images of outbox inserts
    await conn.execute_script(f'ALTER TABLE "{OUTBOX_TABLE_NAME}" REPLICA IDENTITY FULL;')
    log.info(f"Replica identity set to FULL on {OUTBOX_TABLE_NAME}.")


async def main():
    try:
        await setup()
    finally:
        await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
