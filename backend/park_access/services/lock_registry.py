# lock registry: maps smart locks to facilities
# smart_locks is maintained by the admin lock setup tooling; read-only here

import logging
from typing import Optional

from pymongo.errors import PyMongoError

from park_access.errors import LockNotFound, PersistenceFailed, PinAccessDisabled
from park_access.models.credential import Purpose
from park_access.services.db import Database

logger = logging.getLogger(__name__)


async def get_lock(db: Database, lock_id: str) -> dict:
    """fetch an active lock or raise LockNotFound"""
    try:
        lock = await db.smart_locks.find_one({"lock_id": lock_id})
    except PyMongoError as e:
        logger.error(f"Lock registry unavailable for {lock_id}: {e}")
        raise PersistenceFailed()
    if not lock or lock.get("status", "active") != "active":
        raise LockNotFound()
    return lock


async def get_pin_lock(db: Database, lock_id: str) -> dict:
    """fetch an active lock that accepts pin codes"""
    lock = await get_lock(db, lock_id)
    if not lock.get("pin_enabled", True):
        raise PinAccessDisabled()
    return lock


async def find_facility_lock(db: Database, facility_id: str, purpose: Purpose) -> dict:
    """pick the lock an invite should open at a facility.
    prefers a lock dedicated to the purpose, then any pin-enabled lock, then any lock."""
    queries = [
        {"facility_id": facility_id, "purpose": purpose.value, "status": "active"},
        {"facility_id": facility_id, "pin_enabled": True, "status": "active"},
        {"facility_id": facility_id, "status": "active"},
    ]
    try:
        for query in queries:
            lock = await db.smart_locks.find_one(query)
            if lock:
                return lock
    except PyMongoError as e:
        logger.error(f"Lock registry unavailable for facility {facility_id}: {e}")
        raise PersistenceFailed()

    logger.warning(f"No active lock configured for facility {facility_id}")
    raise LockNotFound("No active lock is configured for this facility")


async def is_owner_or_staff(db: Database, identity: str, facility_id: Optional[str]) -> bool:
    """true when the identity owns or staffs the facility"""
    if not facility_id:
        return False
    facility = await db.facilities.find_one({"facility_id": facility_id})
    if not facility:
        return False
    return facility.get("owner_id") == identity or identity in facility.get("staff_ids", [])
