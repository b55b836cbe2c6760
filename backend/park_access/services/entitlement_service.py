# entitlement gate: is this identity allowed to request a pin for this facility?
# combines subscription, day pass, admin and owner/staff bypass facts.
# billing state is never computed here, only read from the entitlements collection.

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from pymongo.errors import PyMongoError

from park_access.errors import EntitlementCheckFailed, PaymentRequired, VaccinationRequired
from park_access.models.entitlement import Entitlement, EntitlementFact, EntitlementKind
from park_access.services.db import Database
from park_access.services.lock_registry import is_owner_or_staff

logger = logging.getLogger(__name__)

# subscription statuses mirrored from the billing provider that still grant access
ACTIVE_SUBSCRIPTION_STATUSES = {"active", "trialing"}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _doc_to_fact(doc: dict, now: datetime) -> EntitlementFact:
    """convert an entitlements document into an opaque fact"""
    kind = doc.get("kind")
    valid_until = _as_utc(doc.get("valid_until"))

    if kind == "admin_bypass":
        return EntitlementFact(kind=EntitlementKind.ADMIN_BYPASS)

    if kind == "subscription":
        if doc.get("status") in ACTIVE_SUBSCRIPTION_STATUSES and (valid_until is None or valid_until > now):
            return EntitlementFact(kind=EntitlementKind.ACTIVE_SUBSCRIPTION, valid_until=valid_until)
        return EntitlementFact(kind=EntitlementKind.NONE)

    if kind == "day_pass":
        return EntitlementFact(
            kind=EntitlementKind.ACTIVE_DAY_PASS,
            valid_until=valid_until,
            facility_ids=[str(f) for f in doc.get("facility_ids", [])],
        )

    return EntitlementFact(kind=EntitlementKind.NONE)


def evaluate_entitlement(
    facts: Iterable[EntitlementFact],
    facility_id: str,
    is_staff: bool,
    now: datetime,
) -> Entitlement:
    """pure decision over entitlement facts.

    owner/staff of the facility and admins bypass payment entirely, an active
    subscription covers every facility, a day pass only covers the facilities in
    its scope until valid_until. raises PaymentRequired otherwise, with a reason
    telling "nothing bought" apart from "bought for another facility".
    """
    if is_staff:
        return Entitlement(basis=EntitlementKind.ADMIN_BYPASS, bypass=True)

    facts = list(facts)
    if any(f.kind == EntitlementKind.ADMIN_BYPASS for f in facts):
        return Entitlement(basis=EntitlementKind.ADMIN_BYPASS, bypass=True)

    if any(f.kind == EntitlementKind.ACTIVE_SUBSCRIPTION for f in facts):
        return Entitlement(basis=EntitlementKind.ACTIVE_SUBSCRIPTION)

    live_passes = [
        f for f in facts
        if f.kind == EntitlementKind.ACTIVE_DAY_PASS
        and f.valid_until is not None
        and _as_utc(f.valid_until) > now
    ]
    if any(facility_id in f.facility_ids for f in live_passes):
        return Entitlement(basis=EntitlementKind.ACTIVE_DAY_PASS)

    if live_passes:
        raise PaymentRequired(
            reason="wrong_facility",
            detail="Your day pass is for a different facility. Buy a day pass for this facility or subscribe.",
        )
    raise PaymentRequired(
        reason="no_entitlement",
        detail="Buy a day pass or start a subscription to enter this facility.",
    )


async def get_entitlement_facts(db: Database, identity: str, now: datetime) -> list[EntitlementFact]:
    cursor = db.entitlements.find({"identity": identity})
    facts = []
    async for doc in cursor:
        facts.append(_doc_to_fact(doc, now))
    return facts


async def check_entitlement(
    db: Database,
    identity: str,
    facility_id: str,
    now: Optional[datetime] = None,
) -> Entitlement:
    """fetch facts for the identity and run the gate.
    an unreachable source is surfaced as EntitlementCheckFailed, never as entitled."""
    now = now or datetime.now(timezone.utc)
    try:
        is_staff = await is_owner_or_staff(db, identity, facility_id)
        facts = [] if is_staff else await get_entitlement_facts(db, identity, now)
    except PyMongoError as e:
        logger.error(f"Entitlement source unavailable for {identity}: {e}")
        raise EntitlementCheckFailed()

    return evaluate_entitlement(facts, facility_id, is_staff, now)


async def check_vaccination(db: Database, identity: str, now: Optional[datetime] = None) -> None:
    """require at least one dog with an approved, unexpired vaccine certificate"""
    now = now or datetime.now(timezone.utc)
    try:
        cursor = db.dog_vaccinations.find({"owner_id": identity, "status": "approved"})
        async for cert in cursor:
            rabies = _as_utc(cert.get("rabies_expires_at"))
            combo = _as_utc(cert.get("combo_expires_at"))
            if (rabies is None or rabies >= now) and (combo is None or combo >= now):
                return
    except PyMongoError as e:
        logger.error(f"Vaccination source unavailable for {identity}: {e}")
        raise EntitlementCheckFailed()

    raise VaccinationRequired()
