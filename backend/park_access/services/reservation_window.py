# reservation window resolver: how long may a credential stay valid?
# drop-in visits get a short default window anchored at server time,
# whole-facility rentals are capped at the reservation's end.

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from pymongo.errors import PyMongoError

from park_access.config import settings
from park_access.errors import PersistenceFailed, ReservationExpired, ReservationNotFound
from park_access.services.db import Database

logger = logging.getLogger(__name__)

WHOLE_FACILITY = "whole_facility"


class Window(BaseModel):
    start: datetime
    end: datetime
    is_default: bool = False
    # booked start of the rental, None for the default window
    booked_start: Optional[datetime] = None
    reservation_ref: Optional[str] = None
    holder: Optional[str] = None


def default_window(now: datetime) -> Window:
    return Window(
        start=now,
        end=now + timedelta(minutes=settings.DEFAULT_PIN_WINDOW_MINUTES),
        is_default=True,
    )


def _parse_time(value) -> time:
    if isinstance(value, time):
        return value
    return time.fromisoformat(str(value))


def _parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def reservation_bounds(reservation: dict) -> tuple[datetime, datetime]:
    """booked [start, end] of a reservation in utc.
    date and start_time are facility-local wall time."""
    tz = ZoneInfo(settings.FACILITY_TIMEZONE)
    local_start = datetime.combine(
        _parse_date(reservation["date"]),
        _parse_time(reservation["start_time"]),
        tzinfo=tz,
    )
    local_end = local_start + timedelta(hours=float(reservation.get("duration", 0)))
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def is_rental(reservation: Optional[dict]) -> bool:
    return bool(reservation) and reservation.get("reservation_type") == WHOLE_FACILITY


def compute_window(reservation: Optional[dict], now: datetime) -> Window:
    """pure window computation for an already-fetched reservation"""
    if not is_rental(reservation):
        # a per-visit pin is never extended by an unrelated reservation
        return default_window(now)

    booked_start, end = reservation_bounds(reservation)
    if end <= now:
        raise ReservationExpired()
    return Window(
        start=now,
        end=end,
        booked_start=booked_start,
        reservation_ref=reservation.get("reservation_id"),
        holder=reservation.get("user_id"),
    )


async def get_reservation(db: Database, reservation_ref: str) -> dict:
    try:
        reservation = await db.reservations.find_one({"reservation_id": reservation_ref})
    except PyMongoError as e:
        logger.error(f"Reservation store unavailable for {reservation_ref}: {e}")
        raise PersistenceFailed()

    if not reservation or reservation.get("status") == "cancelled":
        raise ReservationNotFound()
    return reservation


async def resolve_window(
    db: Database,
    reservation_ref: Optional[str],
    now: Optional[datetime] = None,
    facility_id: Optional[str] = None,
) -> Window:
    """resolve the validity window for a credential request.
    start is always the server's clock, never a client-supplied time.
    when facility_id is given, a rental at another facility falls back to the default window."""
    now = now or datetime.now(timezone.utc)
    if not reservation_ref:
        return default_window(now)

    reservation = await get_reservation(db, reservation_ref)
    if facility_id and reservation.get("facility_id") != facility_id:
        return default_window(now)
    return compute_window(reservation, now)
