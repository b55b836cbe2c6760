# tests for the credentials router: issue and verify over http

from datetime import datetime

from park_access.config import settings
from park_access.services.auth_service import create_access_token
from park_access.services.credential_service import hash_pin
from tests.conftest import (
    ENTRY_LOCK,
    EXIT_LOCK,
    FailingCollection,
    MEMBER_ID,
    NO_PIN_LOCK,
    VISITOR_ID,
)


async def _issue(client, lock_id=ENTRY_LOCK, purpose="entry", **extra):
    return await client.post("/credentials/issue", json={"lockId": lock_id, "purpose": purpose, **extra})


class TestIssue:
    """pin issuance endpoint"""

    async def test_issue_success(self, member_client, mock_db):
        resp = await _issue(member_client)
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["code"]) == 6
        assert data["lockId"] == ENTRY_LOCK
        assert data["purpose"] == "entry"
        assert data["reservationRef"] is None
        assert datetime.fromisoformat(data["expiresAt"]) > datetime.fromisoformat(data["issuedAt"])
        assert mock_db.credentials._data[0]["code_hash"] == hash_pin(data["code"])

    async def test_issue_registers_keypad_pin(self, member_client, lock_controller, mock_db):
        data = (await _issue(member_client)).json()
        assert [pin[1] for pin in lock_controller.provisioned.values()] == [data["code"]]
        assert mock_db.credentials._data[0]["vendor_pin_id"] == "kp-1"

    async def test_issue_exit(self, member_client):
        resp = await _issue(member_client, EXIT_LOCK, "exit")
        assert resp.status_code == 200
        assert resp.json()["purpose"] == "exit"

    async def test_issue_with_real_token(self, client):
        token = create_access_token({"sub": MEMBER_ID, "role": "member"})
        resp = await client.post(
            "/credentials/issue",
            json={"lockId": ENTRY_LOCK},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 200

    async def test_issue_bad_token(self, client):
        resp = await client.post(
            "/credentials/issue",
            json={"lockId": ENTRY_LOCK},
            headers={"Authorization": "Bearer invalid.token.here"},
        )
        assert resp.status_code == 401

    async def test_issue_no_auth(self, client):
        resp = await _issue(client)
        assert resp.status_code in (401, 403)

    async def test_issue_payment_required(self, client):
        token = create_access_token({"sub": VISITOR_ID})
        resp = await client.post(
            "/credentials/issue",
            json={"lockId": ENTRY_LOCK},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 402
        data = resp.json()
        assert data["status"] == "payment_required"
        assert data["category"] == "entitlement"
        assert data["reason"] == "no_entitlement"
        assert data["retryable"] is False

    async def test_issue_unknown_lock(self, member_client):
        resp = await _issue(member_client, "no-such-lock")
        assert resp.status_code == 404
        assert resp.json()["status"] == "lock_not_found"

    async def test_issue_pin_disabled(self, member_client):
        resp = await _issue(member_client, NO_PIN_LOCK)
        assert resp.status_code == 403
        assert resp.json()["status"] == "pin_disabled"

    async def test_issue_unknown_reservation(self, member_client):
        resp = await _issue(member_client, reservationRef="missing")
        assert resp.status_code == 404
        assert resp.json()["status"] == "reservation_not_found"

    async def test_issue_entitlement_source_down(self, member_client, mock_db):
        mock_db.entitlements = FailingCollection([])
        resp = await _issue(member_client)
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "entitlement_check_failed"
        assert data["retryable"] is True

    async def test_issue_invalid_purpose(self, member_client):
        resp = await _issue(member_client, purpose="sideways")
        assert resp.status_code == 422

    async def test_issue_missing_lock(self, member_client):
        resp = await member_client.post("/credentials/issue", json={})
        assert resp.status_code == 422


class TestVerify:
    """pin verification endpoint used by keypads"""

    async def test_verify_then_already_used(self, member_client, lock_controller):
        code = (await _issue(member_client)).json()["code"]

        resp = await member_client.post("/credentials/verify", json={"code": code, "lockId": ENTRY_LOCK})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "unlocked"
        assert data["unlockedAt"] is not None
        assert lock_controller.calls == [(ENTRY_LOCK, "entry")]

        resp = await member_client.post("/credentials/verify", json={"code": code, "lockId": ENTRY_LOCK})
        assert resp.status_code == 409
        assert resp.json()["status"] == "already_used"

    async def test_verify_invalid_code(self, client):
        resp = await client.post("/credentials/verify", json={"code": "000000", "lockId": ENTRY_LOCK})
        assert resp.status_code == 401
        assert resp.json()["status"] == "invalid_code"

    async def test_verify_hardware_failure_keeps_code(self, member_client, lock_controller, mock_db):
        code = (await _issue(member_client)).json()["code"]
        lock_controller.failures = settings.LOCK_ACTUATION_ATTEMPTS

        resp = await member_client.post("/credentials/verify", json={"code": code, "lockId": ENTRY_LOCK})
        assert resp.status_code == 502
        data = resp.json()
        assert data["status"] == "lock_actuation_failed"
        assert data["category"] == "infrastructure"
        assert data["retryable"] is True
        assert mock_db.credentials._data[0]["consumed_at"] is None

        resp = await member_client.post("/credentials/verify", json={"code": code, "lockId": ENTRY_LOCK})
        assert resp.status_code == 200

    async def test_verify_requires_device_token(self, member_client, monkeypatch):
        monkeypatch.setattr(settings, "FACILITY_DEVICE_TOKEN", "keypad-secret")
        code = (await _issue(member_client)).json()["code"]

        resp = await member_client.post("/credentials/verify", json={"code": code, "lockId": ENTRY_LOCK})
        assert resp.status_code == 401

        resp = await member_client.post(
            "/credentials/verify",
            json={"code": code, "lockId": ENTRY_LOCK},
            headers={"X-Facility-Token": "wrong"},
        )
        assert resp.status_code == 401

        resp = await member_client.post(
            "/credentials/verify",
            json={"code": code, "lockId": ENTRY_LOCK},
            headers={"X-Facility-Token": "keypad-secret"},
        )
        assert resp.status_code == 200

    async def test_verify_store_down(self, client, mock_db):
        mock_db.credentials = FailingCollection([])
        resp = await client.post("/credentials/verify", json={"code": "123456", "lockId": ENTRY_LOCK})
        assert resp.status_code == 503
        data = resp.json()
        assert data["status"] == "persistence_failed"
        assert data["retryable"] is True
