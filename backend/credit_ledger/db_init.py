"""
Credit Ledger Database Initialization Script

RULES:
1. Environment Guard - production requires LEDGER_INIT_CONFIRM=YES
2. Idempotent - running multiple times must not duplicate anything
3. No destructive operations - no dropping, deleting, truncation
4. Accounts are provisioned by the first purchase, not here
5. Existing collections and indexes are reported and left alone
6. Dry-run mode - --dry-run prints what it would do

The unique indexes are load-bearing: accounts.user_id decides the race when
two first purchases land at once, purchase_events.idempotency_key rejects a
redelivered webhook.

Usage:
    python -m credit_ledger.db_init
    python -m credit_ledger.db_init --dry-run
    ENVIRONMENT=production LEDGER_INIT_CONFIRM=YES python -m credit_ledger.db_init
"""

import os
import sys
import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from pymongo.errors import CollectionInvalid

from .config import (
    ACCOUNTS_COLLECTION,
    LEDGER_COLLECTION,
    PURCHASE_EVENTS_COLLECTION,
    USER_ACTIVITY_COLLECTION
)

logger = logging.getLogger(__name__)

INIT_VERSION = "v1.0.0"
META_COLLECTION = "ledger_meta"

REQUIRED_COLLECTIONS = [
    ACCOUNTS_COLLECTION,
    LEDGER_COLLECTION,
    PURCHASE_EVENTS_COLLECTION,
    USER_ACTIVITY_COLLECTION,
    META_COLLECTION
]

# Index definitions: (collection, index_spec, options)
REQUIRED_INDEXES = [
    (ACCOUNTS_COLLECTION, [("user_id", 1)], {"unique": True, "name": "idx_user_id_unique"}),

    (LEDGER_COLLECTION, [("user_id", 1), ("ts", -1)], {"name": "idx_user_ts"}),
    (LEDGER_COLLECTION, [("entry_id", 1)], {"unique": True, "name": "idx_entry_id_unique"}),

    (PURCHASE_EVENTS_COLLECTION, [("idempotency_key", 1)], {"unique": True, "name": "idx_idempotency_key_unique"}),
    (PURCHASE_EVENTS_COLLECTION, [("user_id", 1)], {"name": "idx_user_id"}),

    (USER_ACTIVITY_COLLECTION, [("user_id", 1), ("ts", -1)], {"name": "idx_user_ts"}),
]


def check_environment() -> Tuple[bool, str]:
    """
    Check environment and confirm if production execution is allowed.

    Returns:
        Tuple of (allowed, message)
    """
    app_env = os.environ.get("ENVIRONMENT", "development")

    if app_env.lower() == "production":
        confirm = os.environ.get("LEDGER_INIT_CONFIRM", "")
        if confirm != "YES":
            return False, (
                "PRODUCTION ENVIRONMENT DETECTED!\n"
                "To run init in production, set: LEDGER_INIT_CONFIRM=YES\n"
                f"Current value: LEDGER_INIT_CONFIRM='{confirm}'"
            )

    return True, f"Environment: {app_env}"


async def missing_collections(db) -> List[str]:
    existing = set(await db.list_collection_names())
    return [name for name in REQUIRED_COLLECTIONS if name not in existing]


async def missing_indexes(db) -> List[Tuple[str, List[Tuple], dict]]:
    """Required indexes whose name is not present on their collection yet."""
    present = {}
    missing = []
    for collection_name, index_spec, options in REQUIRED_INDEXES:
        if collection_name not in present:
            present[collection_name] = await db[collection_name].index_information()
        if options["name"] not in present[collection_name]:
            missing.append((collection_name, index_spec, options))
    return missing


async def init_database(db, dry_run: bool = False) -> List[str]:
    """Create collections, indexes and the version stamp. Returns the log lines."""
    tag, verb = ("DRY-RUN", "Would create") if dry_run else ("CREATE", "Created")
    results = []

    new_collections = await missing_collections(db)
    for collection_name in REQUIRED_COLLECTIONS:
        if collection_name not in new_collections:
            results.append(f"  [SKIP] Collection '{collection_name}' already exists")
            continue
        if not dry_run:
            try:
                await db.create_collection(collection_name)
            except CollectionInvalid:
                # another init run created it first
                pass
        results.append(f"  [{tag}] {verb} collection '{collection_name}'")

    new_indexes = await missing_indexes(db)
    for collection_name, index_spec, options in REQUIRED_INDEXES:
        index_name = options["name"]
        if (collection_name, index_spec, options) not in new_indexes:
            results.append(f"  [SKIP] Index '{index_name}' on '{collection_name}' already exists")
            continue
        if not dry_run:
            # identical spec and name is a no-op on the server
            await db[collection_name].create_index(index_spec, **options)
        results.append(f"  [{tag}] {verb} index '{index_name}' on '{collection_name}'")

    if dry_run:
        results.append(f"  [DRY-RUN] Would update version stamp to {INIT_VERSION}")
    else:
        await db[META_COLLECTION].update_one(
            {"_id": "ledger_init"},
            {"$set": {"version": INIT_VERSION, "applied_at": datetime.now(timezone.utc).isoformat()}},
            upsert=True
        )
        results.append(f"  [UPDATE] Version stamp updated to {INIT_VERSION}")

    return results


async def run_init(dry_run: bool = False):
    """Run the database initialization."""
    from database import create_mongo_client, get_db_name

    allowed, env_message = check_environment()
    logger.info(env_message)

    if not allowed:
        logger.error("Init blocked due to environment guard")
        sys.exit(1)

    try:
        client = create_mongo_client()
        db_name = get_db_name()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Database: {db_name}")
    logger.info(f"Dry Run: {dry_run}")
    logger.info("-" * 50)

    try:
        await client.admin.command('ping')
        logger.info("MongoDB connection: OK")
    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        sys.exit(1)

    for line in await init_database(client[db_name], dry_run):
        logger.info(line)

    client.close()

    logger.info("=" * 50)
    logger.info("SUCCESS: Credit ledger DB init completed")
    logger.info("=" * 50)


def main():
    """Main entry point."""
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Credit Ledger Database Initialization")
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print what would be done without making changes'
    )

    args = parser.parse_args()

    asyncio.run(run_init(dry_run=args.dry_run))


if __name__ == "__main__":
    main()
