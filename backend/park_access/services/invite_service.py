# invite service: shareable unlock links for whole-facility rentals
# a token is a bearer secret: anyone holding it may open the facility's lock
# while the copied reservation window is open and uses remain.

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from park_access.config import settings
from park_access.errors import (
    InviteNotFound,
    LockActuationFailed,
    NotOwner,
    NotReservationHolder,
    OutsideWindow,
    PersistenceFailed,
    ReservationNotRentalType,
    Revoked,
    UseLimitReached,
)
from park_access.models.credential import Purpose
from park_access.services.access_log import record_access_event
from park_access.services.db import Database
from park_access.services.lock_controller import LockController, actuate_with_retry
from park_access.services.lock_registry import find_facility_lock
from park_access.services.reservation_window import compute_window, get_reservation, is_rental

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def generate_invite_token() -> str:
    return secrets.token_urlsafe(settings.INVITE_TOKEN_BYTES)


def invite_url(token: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/invite/{token}"


def remaining_uses(invite: dict) -> Optional[int]:
    if invite.get("max_uses") is None:
        return None
    return max(0, invite["max_uses"] - invite.get("used_count", 0))


def invite_state(invite: dict, now: datetime) -> str:
    """lifecycle state shown on the guest landing page"""
    if invite.get("revoked"):
        return "revoked"
    if now > _as_utc(invite["window_end"]):
        return "ended"
    if now < _as_utc(invite["window_start"]):
        return "not_started"
    if remaining_uses(invite) == 0:
        return "used_up"
    return "open"


async def _rental_window(db: Database, host_identity: str, reservation_ref: str, now: datetime):
    """fetch a reservation the host holds and return (reservation, window_start, window_end)"""
    reservation = await get_reservation(db, reservation_ref)
    if reservation.get("user_id") != host_identity:
        raise NotReservationHolder()
    if not is_rental(reservation):
        raise ReservationNotRentalType()

    window = compute_window(reservation, now)
    # an invite made ahead of the booking opens when the booking starts
    start = max(window.start, window.booked_start) if window.booked_start else window.start
    return reservation, start, window.end


async def _get_invite(db: Database, token: str) -> dict:
    try:
        invite = await db.invite_tokens.find_one({"token": token})
    except PyMongoError as e:
        logger.error(f"Invite lookup failed: {e}")
        raise PersistenceFailed()
    if not invite:
        raise InviteNotFound()
    return invite


async def create_invite(
    db: Database,
    host_identity: str,
    reservation_ref: str,
    max_uses: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """create a shareable invite for a whole-facility rental the host holds"""
    now = now or _now()
    reservation, window_start, window_end = await _rental_window(db, host_identity, reservation_ref, now)

    invite = {
        "token": generate_invite_token(),
        "host_identity": host_identity,
        "facility_id": reservation.get("facility_id"),
        "reservation_ref": reservation_ref,
        "window_start": window_start,
        "window_end": window_end,
        "max_uses": max_uses,
        "used_count": 0,
        "revoked": False,
        "revoked_at": None,
        "created_at": now,
    }
    try:
        await db.invite_tokens.insert_one(invite)
    except PyMongoError as e:
        logger.error(f"Invite persistence failed for reservation {reservation_ref}: {e}")
        raise PersistenceFailed()

    logger.info(f"Invite created by {host_identity} for reservation {reservation_ref}, ends {window_end.isoformat()}")
    await record_access_event(
        db, "invite_created",
        identity=host_identity, facility_id=invite["facility_id"], reservation_ref=reservation_ref,
    )
    return invite


async def redeem_invite(
    db: Database,
    controller: LockController,
    token: str,
    identity: str,
    purpose: Purpose = Purpose.ENTRY,
    now: Optional[datetime] = None,
) -> dict:
    """open the facility's lock for the bearer of an invite token.

    a use slot is claimed with a conditional increment that also requires the
    token to be unrevoked, so concurrent redemptions can never exceed max_uses
    and a revocation that lands first always wins. unless the lock opened, the
    slot is handed back.
    """
    now = now or _now()
    invite = await _get_invite(db, token)

    if invite.get("revoked"):
        raise Revoked()
    if not (_as_utc(invite["window_start"]) <= now <= _as_utc(invite["window_end"])):
        raise OutsideWindow()
    max_uses = invite.get("max_uses")
    if max_uses is not None and invite.get("used_count", 0) >= max_uses:
        raise UseLimitReached()

    lock = await find_facility_lock(db, invite["facility_id"], purpose)
    lock_id = lock["lock_id"]

    claim_filter = {"token": token, "revoked": False}
    if max_uses is not None:
        claim_filter["used_count"] = {"$lt": max_uses}
    try:
        claimed = await db.invite_tokens.find_one_and_update(
            claim_filter,
            {"$inc": {"used_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Invite use claim failed on {lock_id}: {e}")
        raise PersistenceFailed()
    if claimed is None:
        current = await _get_invite(db, token)
        if current.get("revoked"):
            raise Revoked()
        raise UseLimitReached()

    opened = False
    try:
        # last look before touching the hardware
        if not await _still_open(db, token):
            raise Revoked()
        try:
            await actuate_with_retry(controller, lock_id, purpose)
        except LockActuationFailed:
            logger.error(f"Invite unlock failed on {lock_id}, use not counted")
            await record_access_event(
                db, "actuation_failed",
                identity=identity, lock_id=lock_id, purpose=purpose.value, via="invite",
            )
            raise
        opened = True
    finally:
        if not opened:
            await _release_use(db, token)

    try:
        await db.invite_uses.insert_one({
            "token": token,
            "identity": identity,
            "lock_id": lock_id,
            "purpose": purpose.value,
            "redeemed_at": now,
        })
    except PyMongoError as e:
        # the use is already counted on the token, only the redeemer record is missing
        logger.error(f"Could not record invite redeemer {identity} on {lock_id}: {e}")
    logger.info(f"Invite redeemed by {identity} on {lock_id} ({claimed['used_count']} uses)")
    await record_access_event(
        db, "unlocked",
        identity=identity, lock_id=lock_id, purpose=purpose.value,
        facility_id=invite["facility_id"], via="invite",
    )

    return {
        "status": "unlocked",
        "lock_id": lock_id,
        "purpose": purpose,
        "remaining_uses": remaining_uses(claimed),
    }


async def _still_open(db: Database, token: str) -> bool:
    try:
        return await db.invite_tokens.find_one({"token": token, "revoked": False}) is not None
    except PyMongoError as e:
        logger.error(f"Invite revocation check failed: {e}")
        raise PersistenceFailed()


async def _release_use(db: Database, token: str) -> None:
    """hand a claimed use back. runs while another error is propagating, so a
    store failure here is logged and never replaces that error."""
    try:
        await db.invite_tokens.update_one(
            {"token": token, "used_count": {"$gt": 0}},
            {"$inc": {"used_count": -1}},
        )
    except PyMongoError as e:
        logger.error(f"Could not hand back a claimed use on invite, count stays one high: {e}")


async def revoke_invite(
    db: Database,
    token: str,
    host_identity: str,
    now: Optional[datetime] = None,
) -> dict:
    """permanently revoke an invite; revoking twice is a no-op"""
    now = now or _now()
    invite = await _get_invite(db, token)
    if invite.get("host_identity") != host_identity:
        raise NotOwner()

    try:
        revoked = await db.invite_tokens.find_one_and_update(
            {"token": token, "host_identity": host_identity, "revoked": False},
            {"$set": {"revoked": True, "revoked_at": now}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Invite revocation failed for reservation {invite['reservation_ref']}: {e}")
        raise PersistenceFailed()
    if revoked is None:
        # already revoked, keep the original revocation time
        revoked = await _get_invite(db, token)
    else:
        logger.info(f"Invite for reservation {invite['reservation_ref']} revoked by {host_identity}")
        await record_access_event(
            db, "invite_revoked",
            identity=host_identity, facility_id=invite.get("facility_id"),
            reservation_ref=invite.get("reservation_ref"),
        )

    return revoked


async def refresh_invite(
    db: Database,
    token: str,
    host_identity: str,
    now: Optional[datetime] = None,
) -> dict:
    """re-copy the window from the reservation after the host edited it"""
    now = now or _now()
    invite = await _get_invite(db, token)
    if invite.get("host_identity") != host_identity:
        raise NotOwner()
    if invite.get("revoked"):
        raise Revoked()

    _, window_start, window_end = await _rental_window(db, host_identity, invite["reservation_ref"], now)
    try:
        refreshed = await db.invite_tokens.find_one_and_update(
            {"token": token, "revoked": False},
            {"$set": {"window_start": window_start, "window_end": window_end}},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Invite refresh failed for reservation {invite['reservation_ref']}: {e}")
        raise PersistenceFailed()
    if refreshed is None:
        raise Revoked()
    return refreshed


async def get_invite(db: Database, token: str) -> dict:
    return await _get_invite(db, token)


async def list_invites(db: Database, host_identity: str) -> list[dict]:
    try:
        cursor = db.invite_tokens.find({"host_identity": host_identity}).sort("created_at", -1)
        return [doc async for doc in cursor]
    except PyMongoError as e:
        logger.error(f"Invite listing failed for {host_identity}: {e}")
        raise PersistenceFailed()
