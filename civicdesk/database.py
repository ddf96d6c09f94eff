# MongoDB client lifecycle and shared helpers

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from pymongo import ASCENDING, DESCENDING, MongoClient

from . import config

logger = logging.getLogger(__name__)

db_client = None
db = None
executor = ThreadPoolExecutor(max_workers=10)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Stored naive, which is how pymongo hands datetimes back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_indexes(database) -> None:
    database.issues.create_index([("createdAt", DESCENDING)])
    database.issues.create_index("status")
    database.issues.create_index("category")
    database.issues.create_index("priority")
    database.issues.create_index("assignedTo")
    database.admins.create_index([("email", ASCENDING)], unique=True)


async def startup_db():
    global db_client, db
    db_client = MongoClient(config.MONGODB_URL)
    db = db_client[config.MONGODB_DB]
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, ensure_indexes, db)
    logger.info("Database initialized: %s", config.MONGODB_DB)


async def shutdown_db():
    global db_client, db
    if db_client:
        db_client.close()
    db_client = None
    db = None


async def get_db():
    return db
