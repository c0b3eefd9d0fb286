"""
MongoDB connection via Motor (async driver).

Collections:
- wallets: one custodial keypair per user identity
- settlements: per (bet_id, address) settlement attempts
- counters: durable sequence counters
- resolutions: per bet_id resolve submissions and fan-out progress
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

WALLETS = "wallets"
SETTLEMENTS = "settlements"
COUNTERS = "counters"
RESOLUTIONS = "resolutions"


def create_client(uri: str, timeout_ms: int = 5000) -> AsyncIOMotorClient:
    """Create a Motor client. Connection is lazy until the first command."""
    return AsyncIOMotorClient(uri, serverSelectionTimeoutMS=timeout_ms, tz_aware=True)


async def check_connection(database: AsyncIOMotorDatabase) -> bool:
    """Ping the server. Returns False instead of raising."""
    try:
        await database.command("ping")
        return True
    except PyMongoError as e:
        logger.error(f"MongoDB ping failed: {e}")
        return False
