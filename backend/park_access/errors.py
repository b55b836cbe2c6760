# typed access errors: one class per result the client must tell apart
# rendered as {status, category, detail} by the handler in main.py

from fastapi import status as http

from park_access.models.credential import VerifyStatus


# error categories drive client guidance (buy a pass vs. book again vs. retry)
ENTITLEMENT = "entitlement"
TEMPORAL = "temporal"
INTEGRITY = "integrity"
INFRASTRUCTURE = "infrastructure"


class AccessError(Exception):
    """base class for every expected access failure"""

    status: str = "access_error"
    category: str = INTEGRITY
    http_status: int = http.HTTP_400_BAD_REQUEST
    retryable: bool = False
    default_detail: str = "Access request failed"

    def __init__(self, detail: str | None = None, **extra):
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        body = {
            "status": self.status,
            "category": self.category,
            "detail": self.detail,
            "retryable": self.retryable,
        }
        body.update(self.extra)
        return body


# entitlement errors: recoverable by purchasing / completing requirements

class PaymentRequired(AccessError):
    status = "payment_required"
    category = ENTITLEMENT
    http_status = http.HTTP_402_PAYMENT_REQUIRED
    default_detail = "A subscription or day pass is required to use this facility"

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        super().__init__(detail, reason=reason)


class VaccinationRequired(AccessError):
    status = "vaccination_required"
    category = ENTITLEMENT
    http_status = http.HTTP_403_FORBIDDEN
    default_detail = "Upload a vaccine certificate and wait for approval before entering"


# temporal errors: a new reservation or credential is needed

class ReservationExpired(AccessError):
    status = "reservation_expired"
    category = TEMPORAL
    http_status = http.HTTP_410_GONE
    default_detail = "Your reservation has already ended"


class ReservationNotFound(AccessError):
    status = "reservation_not_found"
    category = TEMPORAL
    http_status = http.HTTP_404_NOT_FOUND
    default_detail = "Reservation not found"


class CredentialExpired(AccessError):
    status = VerifyStatus.EXPIRED.value
    category = TEMPORAL
    http_status = http.HTTP_410_GONE
    default_detail = "This PIN has expired, request a new one"


class OutsideWindow(AccessError):
    status = "outside_window"
    category = TEMPORAL
    http_status = http.HTTP_403_FORBIDDEN
    default_detail = "This invite is only valid during the reserved time"


# integrity errors: not recoverable for this credential / token

class InvalidCode(AccessError):
    status = VerifyStatus.INVALID_CODE.value
    http_status = http.HTTP_401_UNAUTHORIZED
    default_detail = "Invalid PIN code"


class AlreadyUsed(AccessError):
    status = VerifyStatus.ALREADY_USED.value
    http_status = http.HTTP_409_CONFLICT
    default_detail = "This PIN has already been used, request a new one"


class InviteNotFound(AccessError):
    status = "not_found"
    http_status = http.HTTP_404_NOT_FOUND
    default_detail = "Invite not found"


class Revoked(AccessError):
    status = "revoked"
    http_status = http.HTTP_410_GONE
    default_detail = "This invite has been revoked by the host"


class UseLimitReached(AccessError):
    status = "use_limit_reached"
    http_status = http.HTTP_409_CONFLICT
    default_detail = "This invite has no uses left"


class NotOwner(AccessError):
    status = "not_owner"
    http_status = http.HTTP_403_FORBIDDEN
    default_detail = "Only the host who created this invite can change it"


class NotReservationHolder(AccessError):
    status = "not_reservation_holder"
    http_status = http.HTTP_403_FORBIDDEN
    default_detail = "Only the reservation holder can share this reservation"


class ReservationNotRentalType(AccessError):
    status = "reservation_not_rental_type"
    http_status = http.HTTP_422_UNPROCESSABLE_CONTENT
    default_detail = "Only whole-facility rentals can be shared with guests"


class LockNotFound(AccessError):
    status = "lock_not_found"
    http_status = http.HTTP_404_NOT_FOUND
    default_detail = "Smart lock not found"


class PinAccessDisabled(AccessError):
    status = "pin_disabled"
    http_status = http.HTTP_403_FORBIDDEN
    default_detail = "PIN access is not enabled for this lock"


# infrastructure errors: safe for the caller to retry

class EntitlementCheckFailed(AccessError):
    status = "entitlement_check_failed"
    category = INFRASTRUCTURE
    http_status = http.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_detail = "Could not confirm your membership right now, please try again"


class PersistenceFailed(AccessError):
    status = "persistence_failed"
    category = INFRASTRUCTURE
    http_status = http.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_detail = "Could not save your request, please try again"


class LockActuationFailed(AccessError):
    status = VerifyStatus.LOCK_ACTUATION_FAILED.value
    category = INFRASTRUCTURE
    http_status = http.HTTP_502_BAD_GATEWAY
    retryable = True
    default_detail = "The lock did not respond, your code is still valid, please try again"
