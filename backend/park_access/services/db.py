# async mongodb client for the access api
# uses motor for non-blocking operations

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, IndexModel
from park_access.config import settings

logger = logging.getLogger(__name__)


class Database:
    """async mongodb connection manager"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        """establish connection to mongodb"""
        if self.client is not None:
            return

        logger.info(f"Connecting to MongoDB database: {settings.MONGODB_DATABASE}")
        # tz_aware so expiry comparisons happen between aware datetimes
        self.client = AsyncIOMotorClient(settings.MONGODB_URI, tz_aware=True)
        self.db = self.client[settings.MONGODB_DATABASE]

        # verify connection
        await self.client.admin.command("ping")
        logger.info("MongoDB connection established")

    async def close(self):
        """close mongodb connection"""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB connection closed")

    async def ensure_indexes(self):
        """create the indexes the atomic credential and invite operations rely on"""
        await self.credentials.create_indexes([
            IndexModel(
                [("lock_id", ASCENDING), ("purpose", ASCENDING), ("issued_to", ASCENDING)],
                unique=True,
                name="credential_owner_key",
            ),
            IndexModel(
                [("lock_id", ASCENDING), ("purpose", ASCENDING), ("code_hash", ASCENDING)],
                name="credential_code_lookup",
            ),
        ])
        await self.invite_tokens.create_indexes([
            IndexModel([("token", ASCENDING)], unique=True, name="invite_token"),
            IndexModel([("host_identity", ASCENDING)], name="invite_host"),
        ])
        await self.invite_uses.create_index([("token", ASCENDING)])
        logger.info("MongoDB indexes ensured")

    # collection accessors: owned by this service

    @property
    def credentials(self):
        return self.db["credentials"]

    @property
    def invite_tokens(self):
        return self.db["invite_tokens"]

    @property
    def invite_uses(self):
        return self.db["invite_uses"]

    @property
    def access_events(self):
        return self.db["access_events"]

    # collection accessors: read-only facts owned by other systems

    @property
    def entitlements(self):
        return self.db["entitlements"]

    @property
    def reservations(self):
        return self.db["reservations"]

    @property
    def facilities(self):
        return self.db["facilities"]

    @property
    def smart_locks(self):
        return self.db["smart_locks"]

    @property
    def dog_vaccinations(self):
        return self.db["dog_vaccinations"]


# singleton instance
db = Database()


async def get_db() -> Database:
    """dependency injection for database access"""
    return db
