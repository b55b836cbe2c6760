# access log: append-only audit trail of issuance, unlocks and invite actions
# writes are non-critical: a failed audit insert never fails the access request

import logging
from datetime import datetime, timezone

from park_access.services.db import Database

logger = logging.getLogger(__name__)


async def record_access_event(db: Database, event: str, **fields) -> None:
    doc = {
        "event": event,
        "recorded_at": datetime.now(timezone.utc),
        **fields,
    }
    try:
        await db.access_events.insert_one(doc)
    except Exception as e:
        logger.warning(f"Could not record access event {event}: {e}")
