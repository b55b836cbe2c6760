# invites router: create, redeem, revoke and inspect shared rental links
# host endpoints use the bearer identity; redeem is open to any signed-in guest

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from park_access.models.invite import (
    InviteCreate,
    InviteCreateResponse,
    InvitePublicInfo,
    InviteRedeem,
    InviteRedeemResponse,
    InviteResponse,
    InviteRevokeResponse,
    InviteTokenRequest,
)
from park_access.services import invite_service
from park_access.services.db import Database, get_db
from park_access.services.lock_controller import LockController, get_lock_controller
from park_access.dependencies import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/invite", tags=["invites"])


def _doc_to_invite(doc: dict) -> InviteResponse:
    return InviteResponse(
        token=doc["token"],
        facilityId=doc.get("facility_id", ""),
        reservationRef=doc.get("reservation_ref", ""),
        windowStart=doc["window_start"].isoformat(),
        windowEnd=doc["window_end"].isoformat(),
        maxUses=doc.get("max_uses"),
        usedCount=doc.get("used_count", 0),
        revoked=doc.get("revoked", False),
        createdAt=doc["created_at"].isoformat() if doc.get("created_at") else "",
    )


@router.post("/create", response_model=InviteCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_invite(
    body: InviteCreate,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """share a whole-facility rental with guests"""
    invite = await invite_service.create_invite(
        db,
        host_identity=current_user["id"],
        reservation_ref=body.reservation_ref,
        max_uses=body.max_uses,
    )
    return InviteCreateResponse(
        token=invite["token"],
        inviteUrl=invite_service.invite_url(invite["token"]),
        windowStart=invite["window_start"].isoformat(),
        windowEnd=invite["window_end"].isoformat(),
        maxUses=invite["max_uses"],
    )


@router.post("/redeem", response_model=InviteRedeemResponse)
async def redeem_invite(
    body: InviteRedeem,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    controller: LockController = Depends(get_lock_controller),
):
    """open the facility gate with an invite token"""
    result = await invite_service.redeem_invite(
        db,
        controller,
        token=body.token,
        identity=current_user["id"],
        purpose=body.purpose,
    )
    return InviteRedeemResponse(
        status=result["status"],
        lockId=result["lock_id"],
        purpose=result["purpose"],
        remainingUses=result["remaining_uses"],
    )


@router.post("/revoke", response_model=InviteRevokeResponse)
async def revoke_invite(
    body: InviteTokenRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """permanently disable an invite link"""
    invite = await invite_service.revoke_invite(db, token=body.token, host_identity=current_user["id"])
    return InviteRevokeResponse(token=invite["token"], revokedAt=invite["revoked_at"].isoformat())


@router.post("/refresh", response_model=InviteResponse)
async def refresh_invite(
    body: InviteTokenRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """re-sync an invite's window after the reservation was edited"""
    invite = await invite_service.refresh_invite(db, token=body.token, host_identity=current_user["id"])
    return _doc_to_invite(invite)


@router.get("", response_model=list[InviteResponse])
async def list_invites(
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """list invites created by the signed-in host"""
    invites = await invite_service.list_invites(db, current_user["id"])
    return [_doc_to_invite(doc) for doc in invites]


@router.get("/{token}", response_model=InvitePublicInfo)
async def get_invite_info(
    token: str,
    db: Database = Depends(get_db),
):
    """public invite info for the guest landing page"""
    invite = await invite_service.get_invite(db, token)
    return InvitePublicInfo(
        facilityId=invite.get("facility_id", ""),
        windowStart=invite["window_start"].isoformat(),
        windowEnd=invite["window_end"].isoformat(),
        remainingUses=invite_service.remaining_uses(invite),
        state=invite_service.invite_state(invite, datetime.now(timezone.utc)),
    )
