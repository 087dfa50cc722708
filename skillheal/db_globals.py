"""Global HealingDB instance and helper functions."""

from __future__ import annotations

import logging

from skillheal.config import HEALING_DB_PATH
from skillheal.healing_db import HealingDB

logger = logging.getLogger(__name__)

# Global singleton instance
_db_instance: HealingDB | None = None


async def get_db(db_path: str | None = None) -> HealingDB:
    """Get or create the global HealingDB instance.

    Args:
        db_path: Database file for the first call (default: HEALING_DB_PATH);
            ignored once the instance exists

    Returns:
        HealingDB instance (initialized)

    """
    global _db_instance
    if _db_instance is None:
        db = HealingDB(db_path or HEALING_DB_PATH)
        await db.init()
        _db_instance = db
    return _db_instance


async def close_db() -> None:
    """Close the global database connection.

    Should be called on application shutdown.

    """
    global _db_instance
    if _db_instance is not None:
        await _db_instance.close()
        _db_instance = None
        logger.info("HealingDB connection closed")
