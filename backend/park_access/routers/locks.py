# locks router: lock vendor webhook for pins typed directly on a keypad

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from park_access.models.lock import LockRecordEvent, LockRecordResult, RECORD_TYPE_KEYPAD_UNLOCK
from park_access.services.credential_service import record_keypad_unlock
from park_access.services.db import Database, get_db
from park_access.dependencies import require_facility_device

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/locks", tags=["locks"], dependencies=[Depends(require_facility_device)])


@router.post("/events", response_model=LockRecordResult)
async def lock_record_event(
    event: LockRecordEvent,
    db: Database = Depends(get_db),
):
    """mark a pin consumed when the lock reports it opened with that pin"""
    if event.record_type != RECORD_TYPE_KEYPAD_UNLOCK:
        logger.info(f"Ignoring lock record type {event.record_type} from {event.lock_id}")
        return LockRecordResult(message=f"Event type {event.record_type} ignored")

    occurred_at = datetime.fromtimestamp(event.date / 1000, tz=timezone.utc)
    consumed = await record_keypad_unlock(db, event.lock_id, event.keyboard_pwd, occurred_at)
    if not consumed:
        return LockRecordResult(message="No matching live PIN (already used or issued elsewhere)")
    return LockRecordResult(message="PIN marked as used", consumed=True)
