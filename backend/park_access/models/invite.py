# invite token models: host-generated links for whole-facility rentals
# tokens are multi-use, revocable, valid only inside the reservation window

from typing import Optional
from pydantic import BaseModel, Field

from park_access.models.credential import Purpose


class InviteCreate(BaseModel):
    reservation_ref: str = Field(..., alias="reservationRef", min_length=1)
    max_uses: Optional[int] = Field(None, alias="maxUses", ge=1, description="cap on redemptions, unlimited if omitted")

    model_config = {"populate_by_name": True}


class InviteCreateResponse(BaseModel):
    """response returned when a host shares a reservation"""
    token: str
    invite_url: str = Field(..., alias="inviteUrl")
    window_start: str = Field(..., alias="windowStart")
    window_end: str = Field(..., alias="windowEnd")
    max_uses: Optional[int] = Field(None, alias="maxUses")
    message: str = "Share this link with your guests to let them open the gate during your reservation"

    model_config = {"populate_by_name": True}


class InviteRedeem(BaseModel):
    token: str = Field(..., min_length=1)
    purpose: Purpose = Purpose.ENTRY

    model_config = {"populate_by_name": True}


class InviteRedeemResponse(BaseModel):
    status: str = "unlocked"
    lock_id: str = Field(..., alias="lockId")
    purpose: Purpose
    remaining_uses: Optional[int] = Field(None, alias="remainingUses")

    model_config = {"populate_by_name": True}


class InviteTokenRequest(BaseModel):
    """payload for revoke and refresh: host identity comes from the bearer token"""
    token: str = Field(..., min_length=1)


class InviteRevokeResponse(BaseModel):
    status: str = "ok"
    token: str
    revoked_at: str = Field(..., alias="revokedAt")

    model_config = {"populate_by_name": True}


class InviteResponse(BaseModel):
    """invite as shown to the host"""
    token: str
    facility_id: str = Field(..., alias="facilityId")
    reservation_ref: str = Field(..., alias="reservationRef")
    window_start: str = Field(..., alias="windowStart")
    window_end: str = Field(..., alias="windowEnd")
    max_uses: Optional[int] = Field(None, alias="maxUses")
    used_count: int = Field(0, alias="usedCount")
    revoked: bool = False
    created_at: str = Field("", alias="createdAt")

    model_config = {"populate_by_name": True}


class InvitePublicInfo(BaseModel):
    """invite as shown on the guest landing page"""
    facility_id: str = Field(..., alias="facilityId")
    window_start: str = Field(..., alias="windowStart")
    window_end: str = Field(..., alias="windowEnd")
    remaining_uses: Optional[int] = Field(None, alias="remainingUses")
    state: str = Field(..., description="open | not_started | ended | revoked | used_up")

    model_config = {"populate_by_name": True}
