import logging

import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING

from votechain.config import (
    ADMIN_REQUESTS_COLLECTION_NAME,
    CANDIDATES_COLLECTION_NAME,
    ELECTIONS_COLLECTION_NAME,
    MONGO_DB,
    MONGO_URI,
    PROFILES_COLLECTION_NAME,
    VOTES_COLLECTION_NAME,
)

logger = logging.getLogger(__name__)


def get_client(uri: str = MONGO_URI) -> motor.motor_asyncio.AsyncIOMotorClient:
    # tz_aware so end_time comparisons happen between aware datetimes
    return motor.motor_asyncio.AsyncIOMotorClient(uri, tz_aware=True)


def get_database(client: motor.motor_asyncio.AsyncIOMotorClient, name: str = MONGO_DB):
    return client[name]


async def ensure_indexes(db) -> None:
    """Create the indexes the vote flow relies on. Safe to run on every startup."""
    # The ballot key: the only real guard against double voting
    await db[VOTES_COLLECTION_NAME].create_index(
        [("election_id", ASCENDING), ("voter", ASCENDING)], unique=True, name="uniq_ballot"
    )
    await db[VOTES_COLLECTION_NAME].create_index("voter")
    await db[PROFILES_COLLECTION_NAME].create_index("wallet_address", unique=True)
    await db[CANDIDATES_COLLECTION_NAME].create_index([("election_id", ASCENDING), ("name", ASCENDING)])
    await db[ELECTIONS_COLLECTION_NAME].create_index([("created_at", DESCENDING)])
    await db[ADMIN_REQUESTS_COLLECTION_NAME].create_index([("user_id", ASCENDING), ("status", ASCENDING)])
    logger.info(f"Indexes ensured on database {db.name}")
