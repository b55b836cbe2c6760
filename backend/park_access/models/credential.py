# credential models: pin issuance and verification schemas

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Purpose(str, Enum):
    """direction of passage; entry and exit always get separate credentials"""
    ENTRY = "entry"
    EXIT = "exit"


class VerifyStatus(str, Enum):
    # failure values double as the status field of the matching access errors
    UNLOCKED = "unlocked"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    ALREADY_USED = "already_used"
    LOCK_ACTUATION_FAILED = "lock_actuation_failed"


class IssueRequest(BaseModel):
    """payload for pin issuance: identity comes from the bearer token"""
    lock_id: str = Field(..., alias="lockId", min_length=1)
    purpose: Purpose = Purpose.ENTRY
    reservation_ref: Optional[str] = Field(None, alias="reservationRef")

    model_config = {"populate_by_name": True}


class IssueResponse(BaseModel):
    code: str = Field(..., description="6-digit pin, shown once")
    expires_at: str = Field(..., alias="expiresAt")
    issued_at: str = Field(..., alias="issuedAt")
    lock_id: str = Field(..., alias="lockId")
    purpose: Purpose
    reservation_ref: Optional[str] = Field(None, alias="reservationRef")

    model_config = {"populate_by_name": True}


class VerifyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=12)
    lock_id: str = Field(..., alias="lockId", min_length=1)
    purpose: Purpose = Purpose.ENTRY

    model_config = {"populate_by_name": True}


class VerifyResponse(BaseModel):
    status: VerifyStatus
    lock_id: str = Field(..., alias="lockId")
    purpose: Purpose
    unlocked_at: Optional[str] = Field(None, alias="unlockedAt")

    model_config = {"populate_by_name": True}
