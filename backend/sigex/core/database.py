import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from ..core.config import settings
from ..store.mongo_models import DOCUMENT_MODELS

logger = logging.getLogger(__name__)


class Database:
    client: Optional[AsyncIOMotorClient] = None
    database = None


database = Database()


async def connect_to_mongo(mongodb_url: str = None, db_name: str = None) -> AsyncIOMotorClient:
    """Create database connection and register the Beanie documents"""
    mongodb_url = mongodb_url or settings.MONGODB_URL
    db_name = db_name or settings.MONGODB_DB_NAME

    database.client = AsyncIOMotorClient(mongodb_url)
    database.database = database.client[db_name]

    await init_beanie(
        database=database.database,
        document_models=DOCUMENT_MODELS
    )

    logger.info(f"Connected to MongoDB: {db_name}")
    return database.client


async def close_mongo_connection():
    """Close database connection"""
    if database.client:
        database.client.close()
        database.client = None
        database.database = None
        logger.info("Disconnected from MongoDB")


async def get_database():
    """Get database instance"""
    return database.database
