# fastapi dependency injection
# provides get_current_user for members and require_facility_device for lock hardware

import hmac
import logging
from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from park_access.config import settings
from park_access.services.auth_service import decode_token

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """extract and validate the current identity from the jwt bearer token"""
    token = credentials.credentials
    payload = decode_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing subject",
        )

    return {"id": str(user_id), "role": payload.get("role", "member")}


async def require_facility_device(
    x_facility_token: Optional[str] = Header(None, alias="X-Facility-Token"),
) -> None:
    """keypads and the lock vendor webhook authenticate with a shared device token.
    an empty FACILITY_DEVICE_TOKEN disables the check for local development."""
    expected = settings.FACILITY_DEVICE_TOKEN
    if not expected:
        return
    if not x_facility_token or not hmac.compare_digest(x_facility_token, expected):
        logger.warning("Rejected facility device request with bad token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid facility device token",
        )
