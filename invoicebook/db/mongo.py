import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from invoicebook.core.config import settings

logger = logging.getLogger(__name__)


class MongoDatabase:
    """MongoDB connection manager."""

    client: AsyncIOMotorClient = None
    db: AsyncIOMotorDatabase = None

mongodb = MongoDatabase()

async def connect_to_mongo():
    """Connect to MongoDB."""
    mongodb.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
    mongodb.db = mongodb.client[settings.DATABASE_NAME]

    # Create indexes
    await create_indexes(mongodb.db)
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)

async def close_mongo_connection():
    """Disconnect from MongoDB."""
    if mongodb.client is not None:
        mongodb.client.close()
    logger.info("Disconnected from MongoDB")

async def create_indexes(db: AsyncIOMotorDatabase):
    """Create database indexes."""
    # Invoice numbers are unique per account, not globally
    await db["invoices"].create_index(
        [("owner_id", 1), ("invoice_number", 1)], unique=True
    )
    await db["invoices"].create_index([("owner_id", 1), ("issue_date", -1)])
    await db["invoices"].create_index("customer_id")
    await db["invoices"].create_index("party_id")

    # Payment indexes
    await db["payments"].create_index("invoice_id")
    await db["payments"].create_index("customer_id")
    await db["payments"].create_index("party_id")
    await db["payments"].create_index([("owner_id", 1), ("payment_date", -1)])
