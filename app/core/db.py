import asyncio
import logging
from logging import INFO
from typing import Any, Dict, Optional

from tortoise import Tortoise
from tortoise.backends.base.config_generator import expand_db_url

from app.core.config import (
    DB_URL,
    DB_POOL_MIN_SIZE,
    DB_POOL_MAX_SIZE,
    DB_POOL_IDLE_TIMEOUT,
    DB_CONNECT_TIMEOUT,
    GENERATE_SCHEMAS,
)

# Set logging level for Tortoise ORM
logging.getLogger('tortoise').setLevel(INFO)
log = logging.getLogger("db")

# Define all models modules for the ORM
MODELS_MODULES = [
    "app.models.car",
    "app.models.outbox",
]

# Process-wide pool state: created once by init_db(), released by close_db()
_initialized = False
_init_lock: Optional[asyncio.Lock] = None


def _get_init_lock() -> asyncio.Lock:
    # Created on first use so it belongs to the running event loop
    global _init_lock
    if _init_lock is None:
        _init_lock = asyncio.Lock()
    return _init_lock


def build_tortoise_config(db_url: str = DB_URL) -> Dict[str, Any]:
    """
    Builds the Tortoise config for a database URL, attaching the bounded pool
    settings when the engine is asyncpg.
    """
    connection = expand_db_url(db_url)
    if connection["engine"].endswith("asyncpg"):
        connection["credentials"].update({
            "minsize": DB_POOL_MIN_SIZE,
            "maxsize": DB_POOL_MAX_SIZE,
            "max_inactive_connection_lifetime": DB_POOL_IDLE_TIMEOUT,
            "timeout": DB_CONNECT_TIMEOUT, # forwarded to asyncpg.connect
        })
    return {
        "connections": {"default": connection},
        "apps": {
            "models": {
                "models": MODELS_MODULES,
                "default_connection": "default",
            }
        },
    }


def is_initialized() -> bool:
    return _initialized


async def init_db(db_url: str = DB_URL, generate_schemas: bool = GENERATE_SCHEMAS):
    """
    Initializes the Tortoise ORM connection pool once per process.
    Subsequent calls are no-ops until close_db() is called.
    """
    global _initialized
    async with _get_init_lock():
        if _initialized:
            return
        try:
            await Tortoise.init(config=build_tortoise_config(db_url))
            if generate_schemas:
                # Generate the database schema (create tables)
                await Tortoise.generate_schemas(safe=True)
            _initialized = True
            log.info("Database connection pool established (max %s connections).", DB_POOL_MAX_SIZE)
        except Exception as e:
            log.error(f"FATAL ERROR: Could not connect to the database. Error: {e}")
            # Re-raise to prevent the application from starting without a database
            raise


async def close_db():
    """Closes all database connections and resets the pool state."""
    global _initialized, _init_lock
    async with _get_init_lock():
        if _initialized:
            await Tortoise.close_connections()
            _initialized = False
            log.info("Database connections closed.")
    # The next init may run on a different event loop
    _init_lock = None
