# seed script: creates a demo facility, its locks and member entitlements in mongodb
# stands in for the records the park admin and billing systems maintain
# run once: python -m park_access.seed

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone

from park_access.services.db import db
from park_access.services.auth_service import create_access_token

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# demo identities from env, defaults match the frontend fixtures
OWNER_ID = os.getenv("SEED_OWNER_ID", "owner-001")
MEMBER_ID = os.getenv("SEED_MEMBER_ID", "member-001")
FACILITY_ID = os.getenv("SEED_FACILITY_ID", "park-shibuya")


async def seed():
    """create facility, entry/exit locks, a subscription and a vaccinated dog, skips existing"""
    await db.connect()
    now = datetime.now(timezone.utc)

    existing_facility = await db.facilities.find_one({"facility_id": FACILITY_ID})
    if existing_facility:
        logger.info(f"Facility already exists: {FACILITY_ID}")
    else:
        await db.facilities.insert_one({
            "facility_id": FACILITY_ID,
            "name": "Shibuya Dog Run",
            "owner_id": OWNER_ID,
            "staff_ids": [],
        })
        logger.info(f"Created facility: {FACILITY_ID} (owner: {OWNER_ID})")

    locks = [
        {"lock_id": f"{FACILITY_ID}-entry", "purpose": "entry", "vendor_lock_id": "1000001"},
        {"lock_id": f"{FACILITY_ID}-exit", "purpose": "exit", "vendor_lock_id": "1000002"},
    ]
    for lock in locks:
        if await db.smart_locks.find_one({"lock_id": lock["lock_id"]}):
            logger.info(f"Lock already exists: {lock['lock_id']}")
            continue
        await db.smart_locks.insert_one({
            **lock,
            "facility_id": FACILITY_ID,
            "pin_enabled": True,
            "status": "active",
        })
        logger.info(f"Created lock: {lock['lock_id']}")

    await db.entitlements.update_one(
        {"identity": MEMBER_ID, "kind": "subscription"},
        {"$set": {"status": "active", "valid_until": now + timedelta(days=30)}},
        upsert=True,
    )
    await db.dog_vaccinations.update_one(
        {"owner_id": MEMBER_ID, "dog_id": "dog-001"},
        {"$set": {
            "status": "approved",
            "rabies_expires_at": now + timedelta(days=365),
            "combo_expires_at": now + timedelta(days=365),
        }},
        upsert=True,
    )
    logger.info(f"Member {MEMBER_ID} has an active subscription and a vaccinated dog")

    await db.ensure_indexes()

    token = create_access_token({"sub": MEMBER_ID, "role": "member"})
    logger.info(f"Demo member bearer token: {token}")

    logger.info("Seed complete!")
    await db.close()


if __name__ == "__main__":
    asyncio.run(seed())
