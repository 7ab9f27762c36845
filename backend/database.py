"""
Database connection and configuration

Environment Validation
Fails fast with clear error messages if required variables are missing.
The client is built by the caller (server startup, db_init) and passed
down explicitly; nothing here is created at import time.
"""
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from typing import Optional, Tuple
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def validate_required_env_vars():
    """
    Validate all critical environment variables exist before the app starts.
    Raises ValueError with clear error message if required variables are missing.
    """
    required_vars = {
        "MONGO_URL": "MongoDB connection string (e.g., mongodb://localhost:27017/?replicaSet=rs0)",
        "DB_NAME": "Database name (e.g., tool_store)"
    }

    missing = []
    for var, description in required_vars.items():
        if not os.environ.get(var):
            missing.append(f"  - {var}: {description}")

    if missing:
        error_msg = (
            "\n" + "=" * 60 + "\n"
            "CRITICAL: Missing required environment variables!\n"
            "=" * 60 + "\n"
            "The following environment variables must be set:\n\n"
            + "\n".join(missing) + "\n\n"
            "Please check your .env file or environment configuration.\n"
            + "=" * 60
        )
        raise ValueError(error_msg)


def create_mongo_client(mongo_url: Optional[str] = None) -> AsyncIOMotorClient:
    """MongoDB client with connection pool configuration."""
    if mongo_url is None:
        validate_required_env_vars()
        mongo_url = os.environ['MONGO_URL']

    try:
        return AsyncIOMotorClient(
            mongo_url,
            maxPoolSize=50,
            minPoolSize=10,
            connectTimeoutMS=5000,
            serverSelectionTimeoutMS=5000,
            retryWrites=True,
            tz_aware=True
        )
    except Exception as e:
        raise ValueError(f"Failed to create MongoDB client: {e}")


def get_db_name() -> str:
    validate_required_env_vars()
    return os.environ['DB_NAME']


async def check_db_connection(client, db_name: str) -> Tuple[bool, Optional[str]]:
    """
    Test database connection health.

    Returns:
        Tuple[bool, Optional[str]]: (success, error_message)
    """
    try:
        await client.admin.command('ping')
        await client[db_name].list_collection_names()

        logger.info(f"Database connected successfully: {db_name}")
        return True, None

    except Exception as e:
        error_msg = f"Database connection failed: {e}"
        logger.error(error_msg)
        return False, error_msg
