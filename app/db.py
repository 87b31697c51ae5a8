import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel, ASCENDING

logger = logging.getLogger(__name__)


class MongoDB:
    """Owns the Motor client (and its connection pool) for the process."""

    def __init__(self, uri: str, database: str, timeout_ms: int = 5000):
        self.uri = uri
        self.database = database
        self.timeout_ms = timeout_ms
        self.client = None
        self.db = None

    async def connect(self):
        self.client = AsyncIOMotorClient(
            self.uri, serverSelectionTimeoutMS=self.timeout_ms
        )
        self.db = self.client[self.database]

        # Fail fast when the server is unreachable
        await self.client.admin.command("ping")

        await self._init_users()
        await self._init_jobs()
        logger.info("MongoDB connected to %s, indexes created", self.database)

    async def _init_users(self):
        await self.db.users.create_indexes(
            [
                IndexModel([("clerk_id", ASCENDING)], unique=True),
                IndexModel([("email", ASCENDING)], unique=True),
                IndexModel([("role", ASCENDING)]),
                IndexModel([("skills", ASCENDING)]),
            ]
        )

    async def _init_jobs(self):
        await self.db.jobs.create_indexes(
            [
                IndexModel([("employer_id", ASCENDING)]),
                IndexModel([("skills_required", ASCENDING)]),
                IndexModel([("is_active", ASCENDING), ("expires_at", ASCENDING)]),
                IndexModel([("title", "text"), ("description", "text")]),
            ]
        )

    async def close(self):
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB connection closed")

    @property
    def users(self):
        return self.db.users

    @property
    def jobs(self):
        return self.db.jobs
