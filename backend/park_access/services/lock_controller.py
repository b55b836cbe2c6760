# lock controller adapter: the only code that talks to lock hardware
# actuate(lock_id, purpose) returns on success and raises LockHardwareError on failure.
# retries live in actuate_with_retry and are used by the verifier and invite manager only.

import asyncio
import hashlib
import logging
import time
from datetime import datetime
from typing import Optional

import httpx
from pymongo.errors import PyMongoError

from park_access.config import settings
from park_access.errors import LockActuationFailed
from park_access.models.credential import Purpose
from park_access.services.db import Database

logger = logging.getLogger(__name__)


class LockHardwareError(Exception):
    """raised by a controller when the lock could not be actuated"""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class LockController:
    """interface for lock vendors. opening an already-open door is not an error."""

    async def actuate(self, lock_id: str, purpose: Purpose) -> None:
        raise NotImplementedError

    async def provision_pin(self, lock_id: str, code: str, start: datetime, end: datetime) -> Optional[str]:
        """register a pin on the lock's own keypad for [start, end].
        returns the vendor's id for the pin, None when the controller keeps no keypad list."""
        return None

    async def revoke_pin(self, lock_id: str, pin_id: str) -> None:
        """remove a pin registered by provision_pin"""
        return None

    async def close(self) -> None:
        pass


class SimulatedLockController(LockController):
    """development controller: logs the command and always succeeds"""

    def __init__(self):
        self.actuations: list[tuple[str, Purpose]] = []

    async def actuate(self, lock_id: str, purpose: Purpose) -> None:
        self.actuations.append((lock_id, purpose))
        logger.info(f"[simulated] unlocked {lock_id} for {purpose.value}")


def _millis(value: datetime) -> str:
    return str(int(value.timestamp() * 1000))


class TTLockController(LockController):
    """ttlock / sciener cloud adapter.

    authenticates with the oauth2 password grant, caches the access token and
    calls the open api with the vendor's numeric lock id from smart_locks.
    the cloud answers errcode 0 on success. every failure mode (network,
    non-json body, vendor error, missing lock mapping) surfaces as LockHardwareError.
    """

    def __init__(self, db: Database, client: Optional[httpx.AsyncClient] = None):
        self.db = db
        self.client = client or httpx.AsyncClient(
            base_url=settings.TTLOCK_BASE_URL,
            timeout=settings.LOCK_ACTUATION_TIMEOUT_SECONDS,
        )
        self._access_token: Optional[str] = None

    async def _post(self, path: str, data: dict) -> tuple[int, dict]:
        try:
            resp = await self.client.post(path, data=data)
        except httpx.HTTPError as e:
            raise LockHardwareError(f"ttlock unreachable: {e}")

        try:
            body = resp.json()
        except ValueError:
            raise LockHardwareError(f"ttlock returned a non-json response ({resp.status_code}) from {path}")
        if not isinstance(body, dict):
            raise LockHardwareError(f"ttlock returned an unexpected body ({resp.status_code}) from {path}")
        return resp.status_code, body

    async def _authenticate(self) -> str:
        if self._access_token:
            return self._access_token

        status_code, body = await self._post("/oauth2/token", {
            "clientId": settings.TTLOCK_CLIENT_ID,
            "clientSecret": settings.TTLOCK_CLIENT_SECRET,
            "username": settings.TTLOCK_USERNAME,
            "password": hashlib.md5(settings.TTLOCK_PASSWORD.encode()).hexdigest(),
        })
        token = body.get("access_token")
        if status_code != 200 or not token:
            raise LockHardwareError(f"ttlock auth failed: {body.get('errmsg', status_code)}")

        self._access_token = token
        return token

    async def _vendor_lock_id(self, lock_id: str) -> str:
        try:
            lock = await self.db.smart_locks.find_one({"lock_id": lock_id})
        except PyMongoError as e:
            raise LockHardwareError(f"lock registry unavailable for {lock_id}: {e}")
        if not lock or not lock.get("vendor_lock_id"):
            raise LockHardwareError(f"no vendor lock id configured for {lock_id}")
        return str(lock["vendor_lock_id"])

    async def _call(self, path: str, lock_id: str, params: dict) -> dict:
        vendor_id = await self._vendor_lock_id(lock_id)
        token = await self._authenticate()
        status_code, body = await self._post(path, {
            "clientId": settings.TTLOCK_CLIENT_ID,
            "accessToken": token,
            "lockId": vendor_id,
            "date": str(int(time.time() * 1000)),
            **params,
        })
        if status_code != 200 or body.get("errcode", 0) != 0:
            # force re-auth on the next attempt in case the token went stale
            self._access_token = None
            raise LockHardwareError(f"ttlock error code {body.get('errcode')}: {body.get('errmsg', '')}")
        return body

    async def actuate(self, lock_id: str, purpose: Purpose) -> None:
        await self._call("/v3/lock/unlock", lock_id, {})

    async def provision_pin(self, lock_id: str, code: str, start: datetime, end: datetime) -> Optional[str]:
        body = await self._call("/v3/keyboardPwd/add", lock_id, {
            "keyboardPwd": code,
            "keyboardPwdName": f"park access pin {start.isoformat()}",
            "startDate": _millis(start),
            "endDate": _millis(end),
            # 2: pushed through the gateway rather than over bluetooth
            "addType": "2",
        })
        pin_id = body.get("keyboardPwdId")
        return str(pin_id) if pin_id is not None else None

    async def revoke_pin(self, lock_id: str, pin_id: str) -> None:
        await self._call("/v3/keyboardPwd/delete", lock_id, {
            "keyboardPwdId": pin_id,
            "deleteType": "2",
        })

    async def close(self) -> None:
        await self.client.aclose()


async def actuate_with_retry(
    controller: LockController,
    lock_id: str,
    purpose: Purpose,
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
) -> None:
    """actuate with bounded retries and linear backoff, LockActuationFailed after the last one"""
    attempts = attempts or settings.LOCK_ACTUATION_ATTEMPTS
    backoff = settings.LOCK_ACTUATION_BACKOFF_SECONDS if backoff is None else backoff

    for attempt in range(attempts):
        try:
            await controller.actuate(lock_id, purpose)
            return
        except LockHardwareError as e:
            logger.warning(f"Actuation attempt {attempt + 1}/{attempts} failed for {lock_id}: {e.detail}")
            if attempt < attempts - 1:
                await asyncio.sleep(backoff * (attempt + 1))

    raise LockActuationFailed()


_controller: Optional[LockController] = None


def build_lock_controller(db: Database) -> LockController:
    kind = settings.LOCK_CONTROLLER.lower()
    if kind == "ttlock":
        return TTLockController(db)
    if kind != "simulated":
        logger.warning(f"Unknown LOCK_CONTROLLER={kind}, using simulated controller")
    return SimulatedLockController()


async def get_lock_controller() -> LockController:
    """dependency injection for the configured lock controller"""
    global _controller
    if _controller is None:
        from park_access.services.db import db
        _controller = build_lock_controller(db)
    return _controller
