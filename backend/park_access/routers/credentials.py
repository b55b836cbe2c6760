# credentials router: issue pins to members, verify pins presented at a lock
# issue is member-authenticated, verify is called by facility keypads

import logging

from fastapi import APIRouter, Depends

from park_access.models.credential import IssueRequest, IssueResponse, VerifyRequest, VerifyResponse
from park_access.services.credential_service import issue_credential, verify_credential
from park_access.services.db import Database, get_db
from park_access.services.lock_controller import LockController, get_lock_controller
from park_access.dependencies import get_current_user, require_facility_device

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/credentials", tags=["credentials"])


@router.post("/issue", response_model=IssueResponse)
async def issue(
    body: IssueRequest,
    current_user: dict = Depends(get_current_user),
    db: Database = Depends(get_db),
    controller: LockController = Depends(get_lock_controller),
):
    """issue a fresh pin for a lock, replacing any earlier pin for the same lock and purpose"""
    result = await issue_credential(
        db,
        identity=current_user["id"],
        lock_id=body.lock_id,
        purpose=body.purpose,
        reservation_ref=body.reservation_ref,
        controller=controller,
    )
    return IssueResponse(
        code=result["code"],
        expiresAt=result["expires_at"].isoformat(),
        issuedAt=result["issued_at"].isoformat(),
        lockId=result["lock_id"],
        purpose=result["purpose"],
        reservationRef=result["reservation_ref"],
    )


@router.post("/verify", response_model=VerifyResponse, dependencies=[Depends(require_facility_device)])
async def verify(
    body: VerifyRequest,
    db: Database = Depends(get_db),
    controller: LockController = Depends(get_lock_controller),
):
    """verify a presented pin and open the lock"""
    result = await verify_credential(
        db,
        controller,
        code=body.code,
        lock_id=body.lock_id,
        purpose=body.purpose,
    )
    return VerifyResponse(
        status=result["status"],
        lockId=result["lock_id"],
        purpose=result["purpose"],
        unlockedAt=result["unlocked_at"].isoformat(),
    )
