# housekeeping: purge inert credentials
# expiry is checked live on every verification, so this is storage hygiene only
# run periodically: python -m park_access.housekeeping

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from park_access.config import settings
from park_access.services.db import Database, db

logger = logging.getLogger(__name__)


async def purge_inert_credentials(database: Database, older_than: Optional[datetime] = None) -> int:
    """delete credentials that expired or were consumed before the cutoff"""
    cutoff = older_than or datetime.now(timezone.utc) - timedelta(hours=settings.HOUSEKEEPING_RETENTION_HOURS)
    result = await database.credentials.delete_many({
        "$or": [
            {"expires_at": {"$lt": cutoff}},
            {"consumed_at": {"$lt": cutoff}},
        ]
    })
    deleted = result.deleted_count or 0
    logger.info(f"Purged {deleted} inert credentials older than {cutoff.isoformat()}")
    return deleted


async def main():
    await db.connect()
    try:
        await purge_inert_credentials(db)
    finally:
        await db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    asyncio.run(main())
