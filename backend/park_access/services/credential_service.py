# credential service: pin issuance and verification
# one live pin per (lock, purpose, identity): re-issuing atomically replaces the previous one.
# the raw pin is returned once and only its keyed hash is stored.

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from park_access.config import settings
from park_access.errors import (
    AlreadyUsed,
    CredentialExpired,
    InvalidCode,
    LockActuationFailed,
    NotReservationHolder,
    PersistenceFailed,
)
from park_access.models.credential import Purpose, VerifyStatus
from park_access.services.access_log import record_access_event
from park_access.services.db import Database
from park_access.services.entitlement_service import check_entitlement, check_vaccination
from park_access.services.lock_controller import LockController, LockHardwareError, actuate_with_retry
from park_access.services.lock_registry import get_lock, get_pin_lock
from park_access.services.reservation_window import resolve_window

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def generate_pin() -> str:
    """random fixed-length numeric pin from a cryptographic source"""
    return f"{secrets.randbelow(10 ** settings.PIN_LENGTH):0{settings.PIN_LENGTH}d}"


def hash_pin(code: str) -> str:
    return hmac.new(settings.PIN_HASH_SECRET.encode(), code.encode(), hashlib.sha256).hexdigest()


async def _allocate_pin(db: Database, lock_id: str, purpose: Purpose, identity: str, now: datetime) -> tuple[str, str]:
    """pick a pin not shared with any other live credential on this lock and purpose"""
    for _ in range(settings.PIN_COLLISION_RETRIES):
        code = generate_pin()
        code_hash = hash_pin(code)
        clash = await db.credentials.find_one({
            "lock_id": lock_id,
            "purpose": purpose.value,
            "code_hash": code_hash,
            "issued_to": {"$ne": identity},
            "consumed_at": None,
            "expires_at": {"$gt": now},
        })
        if not clash:
            return code, code_hash

    logger.error(f"Could not allocate a unique pin for {lock_id}/{purpose.value}")
    raise PersistenceFailed("Could not generate a unique PIN, please try again")


async def _replace_credential(db: Database, doc: dict) -> Optional[dict]:
    """invalidate-and-insert as one single-document atomic replace.
    returns the credential that was replaced, if any."""
    key = {"lock_id": doc["lock_id"], "purpose": doc["purpose"], "issued_to": doc["issued_to"]}
    try:
        return await db.credentials.find_one_and_replace(key, doc, upsert=True)
    except DuplicateKeyError:
        # a concurrent request upserted the same key first; the unique index
        # guarantees one document, replacing it again keeps the latest pin
        return await db.credentials.find_one_and_replace(key, doc, upsert=True)


async def _provision_on_keypad(
    controller: LockController,
    lock_id: str,
    code: str,
    start: datetime,
    end: datetime,
) -> Optional[str]:
    """push the pin to the lock's own keypad. a vendor failure leaves the pin
    usable through verify only, so issuance carries on."""
    try:
        return await controller.provision_pin(lock_id, code, start, end)
    except LockHardwareError as e:
        logger.warning(f"Keypad provisioning failed on {lock_id}, pin usable via verify only: {e.detail}")
        return None


async def _revoke_on_keypad(controller: LockController, lock_id: str, previous: Optional[dict]) -> None:
    pin_id = (previous or {}).get("vendor_pin_id")
    if not pin_id:
        return
    try:
        await controller.revoke_pin(lock_id, pin_id)
    except LockHardwareError as e:
        # the replaced pin stays on the keypad until its own end date
        logger.warning(f"Could not remove replaced keypad pin {pin_id} from {lock_id}: {e.detail}")


async def issue_credential(
    db: Database,
    identity: str,
    lock_id: str,
    purpose: Purpose,
    reservation_ref: Optional[str] = None,
    now: Optional[datetime] = None,
    controller: Optional[LockController] = None,
) -> dict:
    """issue a pin for one lock and purpose.

    checks, in order: the lock accepts pins, the identity is entitled at the
    lock's facility (owner/staff bypass), entry requires a vaccinated dog, and
    the reservation window has not closed. only then is the previous pin for
    the same (lock, purpose, identity) replaced. with a controller the pin is
    also registered on the lock's keypad for the same window.
    """
    now = now or _now()
    lock = await get_pin_lock(db, lock_id)
    facility_id = lock.get("facility_id")

    entitlement = await check_entitlement(db, identity, facility_id, now)
    if purpose == Purpose.ENTRY and not entitlement.bypass and settings.REQUIRE_VACCINATION_FOR_ENTRY:
        await check_vaccination(db, identity, now)

    # a rental at another facility never extends this lock's pin
    window = await resolve_window(db, reservation_ref, now, facility_id=facility_id)
    if not window.is_default and window.holder != identity and not entitlement.bypass:
        raise NotReservationHolder("This reservation belongs to another member")
    bound_ref = None if window.is_default else window.reservation_ref

    try:
        code, code_hash = await _allocate_pin(db, lock_id, purpose, identity, now)
    except PyMongoError as e:
        logger.error(f"Pin allocation failed for {identity} on {lock_id}: {e}")
        raise PersistenceFailed()

    vendor_pin_id = None
    if controller is not None:
        vendor_pin_id = await _provision_on_keypad(controller, lock_id, code, now, window.end)

    try:
        previous = await _replace_credential(db, {
            "lock_id": lock_id,
            "purpose": purpose.value,
            "issued_to": identity,
            "code_hash": code_hash,
            "facility_id": facility_id,
            "reservation_ref": bound_ref,
            "entitlement": entitlement.basis.value,
            "issued_at": now,
            "expires_at": window.end,
            "consumed_at": None,
            "vendor_pin_id": vendor_pin_id,
        })
    except PyMongoError as e:
        logger.error(f"Credential persistence failed for {identity} on {lock_id}: {e}")
        raise PersistenceFailed()

    if controller is not None:
        await _revoke_on_keypad(controller, lock_id, previous)

    logger.info(f"PIN issued to {identity} for {lock_id}/{purpose.value}, expires {window.end.isoformat()}")
    await record_access_event(
        db, "pin_issued",
        identity=identity, lock_id=lock_id, purpose=purpose.value,
        facility_id=facility_id, expires_at=window.end,
    )

    return {
        "code": code,
        "lock_id": lock_id,
        "purpose": purpose,
        "issued_at": now,
        "expires_at": window.end,
        "reservation_ref": bound_ref,
    }


async def _find_live_credential(db: Database, lock_id: str, purpose: Purpose, code_hash: str, now: datetime) -> dict:
    """find the one live credential matching a code.
    the same code may also sit on consumed or expired credentials of other
    identities; those only decide the error when no live one matches."""
    query = {"lock_id": lock_id, "purpose": purpose.value, "code_hash": code_hash}
    try:
        cred = await db.credentials.find_one({**query, "consumed_at": None, "expires_at": {"$gte": now}})
        if cred:
            return cred
        inert = await db.credentials.find_one(query)
    except PyMongoError as e:
        logger.error(f"Credential lookup failed on {lock_id}: {e}")
        raise PersistenceFailed()

    if not inert:
        raise InvalidCode()
    if inert.get("consumed_at") is not None:
        raise AlreadyUsed()
    raise CredentialExpired()


async def verify_credential(
    db: Database,
    controller: LockController,
    code: str,
    lock_id: str,
    purpose: Purpose,
    now: Optional[datetime] = None,
) -> dict:
    """check a presented pin, open the lock, then mark the pin consumed.
    consumption happens only after the lock confirmed, so a hardware failure
    leaves the pin usable for a retry before it expires."""
    now = now or _now()
    code_hash = hash_pin(code)
    cred = await _find_live_credential(db, lock_id, purpose, code_hash, now)

    try:
        await actuate_with_retry(controller, lock_id, purpose)
    except LockActuationFailed:
        logger.error(f"Lock {lock_id} failed to actuate for {cred['issued_to']}, pin left unconsumed")
        await record_access_event(
            db, "actuation_failed",
            identity=cred["issued_to"], lock_id=lock_id, purpose=purpose.value,
        )
        raise

    unlocked_at = now
    try:
        consumed = await db.credentials.find_one_and_update(
            {"_id": cred["_id"], "code_hash": code_hash, "consumed_at": None},
            {"$set": {"consumed_at": unlocked_at, "consumed_via": "verify"}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Lock {lock_id} opened for {cred['issued_to']} but consumption was not recorded: {e}")
        raise PersistenceFailed()
    if consumed is None:
        # another presentation of the same pin won the race
        logger.warning(f"PIN on {lock_id}/{purpose.value} consumed concurrently")
        raise AlreadyUsed()

    logger.info(f"Unlocked {lock_id}/{purpose.value} for {cred['issued_to']}")
    await record_access_event(
        db, "unlocked",
        identity=cred["issued_to"], lock_id=lock_id, purpose=purpose.value,
        facility_id=cred.get("facility_id"), via="pin",
    )

    return {
        "status": VerifyStatus.UNLOCKED,
        "lock_id": lock_id,
        "purpose": purpose,
        "unlocked_at": unlocked_at,
    }


async def record_keypad_unlock(
    db: Database,
    lock_id: str,
    code: str,
    occurred_at: datetime,
) -> bool:
    """mark a pin consumed after the lock reported it was typed on the keypad.
    returns True when a live credential was consumed, False for unknown, expired or already-used pins."""
    lock = await get_lock(db, lock_id)
    query = {
        "lock_id": lock_id,
        "code_hash": hash_pin(code),
        "consumed_at": None,
        "expires_at": {"$gte": occurred_at},
    }
    if lock.get("purpose"):
        query["purpose"] = lock["purpose"]

    try:
        consumed = await db.credentials.find_one_and_update(
            query,
            {"$set": {"consumed_at": occurred_at, "consumed_via": "keypad"}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Keypad unlock on {lock_id} could not be recorded: {e}")
        raise PersistenceFailed()
    if consumed is None:
        logger.info(f"Keypad unlock on {lock_id} matched no live pin")
        return False

    await record_access_event(
        db, "unlocked",
        identity=consumed["issued_to"], lock_id=lock_id, purpose=consumed["purpose"],
        facility_id=lock.get("facility_id"), via="keypad",
    )
    return True
