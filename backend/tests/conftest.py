# shared fixtures for park access tests
# provides mock db, seeded facility/locks/entitlements, fake lock controllers and httpx test clients

import asyncio
import pytest
import pytest_asyncio
from unittest.mock import MagicMock
from datetime import datetime, timezone, timedelta
from zoneinfo import ZoneInfo
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from httpx import AsyncClient, ASGITransport

from park_access.main import app
from park_access.config import settings
from park_access.services.db import get_db
from park_access.services.lock_controller import LockController, LockHardwareError, get_lock_controller
from park_access.services.auth_service import create_access_token


# test identities

MEMBER_ID = "member-1"          # active subscription, vaccinated dog
UNVACCINATED_ID = "member-2"    # active subscription, no approved vaccine
DAY_PASS_ID = "daypass-1"       # day pass for the main facility
OTHER_PASS_ID = "daypass-2"     # day pass for another facility
VISITOR_ID = "visitor-1"        # no entitlement at all
OWNER_ID = "owner-1"
STAFF_ID = "staff-1"
HOST_ID = "host-1"              # holds whole-facility rentals
GUEST_ID = "guest-1"
GUEST_2_ID = "guest-2"

FACILITY_ID = "park-001"
OTHER_FACILITY_ID = "park-002"
ENTRY_LOCK = "park-001-entry"
EXIT_LOCK = "park-001-exit"
NO_PIN_LOCK = "park-001-gate"
OTHER_ENTRY_LOCK = "park-002-entry"

FACILITY_TZ = ZoneInfo(settings.FACILITY_TIMEZONE)


FACILITY_DOCS = [
    {"facility_id": FACILITY_ID, "name": "Shibuya Dog Run", "owner_id": OWNER_ID, "staff_ids": [STAFF_ID]},
    {"facility_id": OTHER_FACILITY_ID, "name": "Meguro Dog Run", "owner_id": "owner-2", "staff_ids": []},
]

LOCK_DOCS = [
    {"lock_id": ENTRY_LOCK, "facility_id": FACILITY_ID, "purpose": "entry", "pin_enabled": True, "status": "active", "vendor_lock_id": "1001"},
    {"lock_id": EXIT_LOCK, "facility_id": FACILITY_ID, "purpose": "exit", "pin_enabled": True, "status": "active", "vendor_lock_id": "1002"},
    {"lock_id": NO_PIN_LOCK, "facility_id": FACILITY_ID, "purpose": "entry", "pin_enabled": False, "status": "active", "vendor_lock_id": "1003"},
    {"lock_id": OTHER_ENTRY_LOCK, "facility_id": OTHER_FACILITY_ID, "purpose": "entry", "pin_enabled": True, "status": "active", "vendor_lock_id": "2001"},
]


def _entitlement_docs():
    far = datetime.now(timezone.utc) + timedelta(days=3650)
    return [
        {"identity": MEMBER_ID, "kind": "subscription", "status": "active", "valid_until": None},
        {"identity": UNVACCINATED_ID, "kind": "subscription", "status": "active", "valid_until": None},
        {"identity": HOST_ID, "kind": "subscription", "status": "trialing", "valid_until": far},
        {"identity": DAY_PASS_ID, "kind": "day_pass", "valid_until": far, "facility_ids": [FACILITY_ID]},
        {"identity": OTHER_PASS_ID, "kind": "day_pass", "valid_until": far, "facility_ids": [OTHER_FACILITY_ID]},
    ]


def _vaccination_docs():
    far = datetime.now(timezone.utc) + timedelta(days=3650)
    return [
        {"owner_id": identity, "dog_id": f"dog-{identity}", "status": "approved",
         "rabies_expires_at": far, "combo_expires_at": far}
        for identity in (MEMBER_ID, HOST_ID, DAY_PASS_ID, OTHER_PASS_ID, VISITOR_ID)
    ]


def make_reservation(
    reservation_id: str,
    user_id: str,
    local_start: datetime,
    hours: float,
    reservation_type: str = "whole_facility",
    facility_id: str = FACILITY_ID,
) -> dict:
    """reservation document as the booking system stores it (facility-local date + time)"""
    local_start = local_start.astimezone(FACILITY_TZ)
    return {
        "reservation_id": reservation_id,
        "user_id": user_id,
        "facility_id": facility_id,
        "reservation_type": reservation_type,
        "date": local_start.date().isoformat(),
        "start_time": local_start.strftime("%H:%M:%S"),
        "duration": hours,
        "status": "confirmed",
    }


# async cursor mock

class AsyncCursorMock:
    """mock for motor's async cursor: supports async for and chained methods"""

    def __init__(self, data=None):
        self._data = data or []
        self._index = 0

    def sort(self, *args, **kwargs):
        return self

    def skip(self, n):
        self._data = self._data[n:]
        return self

    def limit(self, n):
        self._data = self._data[:n]
        return self

    def __aiter__(self):
        self._index = 0
        return self

    async def __anext__(self):
        if self._index >= len(self._data):
            raise StopAsyncIteration
        item = self._data[self._index]
        self._index += 1
        return item

    async def to_list(self, length=None):
        if length is not None:
            return self._data[:length]
        return self._data


class MockCollection:
    """mock for a motor collection with async methods.
    no method awaits internally, so every call is atomic on the event loop like a single mongo op."""

    def __init__(self, data=None):
        self._data = data or []
        self.inserted = []

    def find(self, query=None, projection=None):
        results = self._data
        if query:
            results = [d for d in results if self._matches(d, query)]
        return AsyncCursorMock([dict(d) for d in results])

    async def find_one(self, query=None, projection=None):
        if not query:
            return dict(self._data[0]) if self._data else None
        for doc in self._data:
            if self._matches(doc, query):
                return dict(doc)
        return None

    async def insert_one(self, doc):
        oid = doc.get("_id", ObjectId())
        doc["_id"] = oid
        self._data.append(dict(doc))
        self.inserted.append(doc)
        result = MagicMock()
        result.inserted_id = oid
        return result

    async def count_documents(self, query=None):
        if not query:
            return len(self._data)
        return len([d for d in self._data if self._matches(d, query)])

    def _apply_update(self, doc, update):
        if "$set" in update:
            doc.update(update["$set"])
        if "$inc" in update:
            for key, val in update["$inc"].items():
                doc[key] = doc.get(key, 0) + val

    async def update_one(self, query, update, upsert=False):
        result = MagicMock()
        result.modified_count = 0
        for doc in self._data:
            if self._matches(doc, query):
                self._apply_update(doc, update)
                result.modified_count = 1
                return result
        if upsert:
            doc = {k: v for k, v in query.items() if not k.startswith("$")}
            self._apply_update(doc, update)
            await self.insert_one(doc)
        return result

    async def find_one_and_update(self, query, update, return_document=False, upsert=False):
        for doc in self._data:
            if self._matches(doc, query):
                before = dict(doc)
                self._apply_update(doc, update)
                return dict(doc) if return_document else before
        return None

    async def find_one_and_replace(self, query, replacement, upsert=False, return_document=False):
        for i, doc in enumerate(self._data):
            if self._matches(doc, query):
                new_doc = dict(replacement)
                new_doc["_id"] = doc["_id"]
                self._data[i] = new_doc
                return dict(new_doc) if return_document else dict(doc)
        if upsert:
            await self.insert_one(dict(replacement))
        return None

    async def delete_many(self, query):
        keep = [d for d in self._data if not self._matches(d, query)]
        result = MagicMock()
        result.deleted_count = len(self._data) - len(keep)
        self._data = keep
        return result

    async def create_index(self, *args, **kwargs):
        return "mock_index"

    async def create_indexes(self, *args, **kwargs):
        return ["mock_index"]

    def _matches(self, doc, query):
        """basic mongodb query matching for tests"""
        for key, value in query.items():
            if key == "$or":
                if not any(self._matches(doc, cond) for cond in value):
                    return False
                continue
            doc_val = doc.get(key)
            if isinstance(value, dict):
                for op, operand in value.items():
                    if op == "$in" and doc_val not in operand:
                        return False
                    if op == "$ne" and doc_val == operand:
                        return False
                    if op == "$lt" and (doc_val is None or not doc_val < operand):
                        return False
                    if op == "$lte" and (doc_val is None or not doc_val <= operand):
                        return False
                    if op == "$gt" and (doc_val is None or not doc_val > operand):
                        return False
                    if op == "$gte" and (doc_val is None or not doc_val >= operand):
                        return False
            elif doc_val != value:
                return False
        return True


class FailingCollection(MockCollection):
    """collection whose reads fail like an unreachable mongo"""

    def find(self, query=None, projection=None):
        raise ServerSelectionTimeoutError("entitlement source unreachable")

    async def find_one(self, query=None, projection=None):
        raise ServerSelectionTimeoutError("entitlement source unreachable")


class MockDatabase:
    """mock database that mimics the Database class"""

    def __init__(self):
        self.credentials = MockCollection([])
        self.invite_tokens = MockCollection([])
        self.invite_uses = MockCollection([])
        self.access_events = MockCollection([])
        self.entitlements = MockCollection(_entitlement_docs())
        self.reservations = MockCollection([])
        self.facilities = MockCollection([d.copy() for d in FACILITY_DOCS])
        self.smart_locks = MockCollection([d.copy() for d in LOCK_DOCS])
        self.dog_vaccinations = MockCollection(_vaccination_docs())

    async def connect(self):
        pass

    async def close(self):
        pass

    async def ensure_indexes(self):
        pass


class FakeLockController(LockController):
    """records actuations; fails the first `failures` calls"""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = []
        self.provisioned = {}
        self.revoked = []

    async def actuate(self, lock_id, purpose):
        self.calls.append((lock_id, purpose))
        # yield so concurrent requests interleave at the hardware call
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise LockHardwareError("motor jammed")

    async def provision_pin(self, lock_id, code, start, end):
        pin_id = f"kp-{len(self.provisioned) + 1}"
        self.provisioned[pin_id] = (lock_id, code, start, end)
        return pin_id

    async def revoke_pin(self, lock_id, pin_id):
        self.revoked.append((lock_id, pin_id))


@pytest.fixture(autouse=True)
def fast_backoff(monkeypatch):
    """no sleeping between actuation retries in tests"""
    monkeypatch.setattr(settings, "LOCK_ACTUATION_BACKOFF_SECONDS", 0.0)


@pytest.fixture
def mock_db():
    """create a fresh mock database for each test"""
    return MockDatabase()


@pytest.fixture
def lock_controller():
    return FakeLockController()


async def _client_for(mock_db, lock_controller, identity=None):
    async def override_get_db():
        return mock_db

    async def override_get_lock_controller():
        return lock_controller

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_lock_controller] = override_get_lock_controller

    # identities travel as real bearer tokens so one test can act as host and guest at once
    headers = {}
    if identity is not None:
        token = create_access_token({"sub": identity, "role": "member"})
        headers["Authorization"] = f"Bearer {token}"

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test", headers=headers)


@pytest_asyncio.fixture
async def client(mock_db, lock_controller):
    """httpx async test client with mocked db and lock controller, anonymous"""
    async with await _client_for(mock_db, lock_controller) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def member_client(mock_db, lock_controller):
    """client authenticated as a subscribed, vaccinated member"""
    async with await _client_for(mock_db, lock_controller, MEMBER_ID) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def host_client(mock_db, lock_controller):
    """client authenticated as a whole-facility rental host"""
    async with await _client_for(mock_db, lock_controller, HOST_ID) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def guest_client(mock_db, lock_controller):
    """client authenticated as an invited guest with no entitlement"""
    async with await _client_for(mock_db, lock_controller, GUEST_ID) as ac:
        yield ac
    app.dependency_overrides.clear()
