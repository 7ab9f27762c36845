"""
MongoDB Ledger Store

Collections used:
- accounts: one document per user, carries a `version` counter used as the
  compare-and-set token for every write
- ledger: immutable entries, one per balance change
- purchase_events: one document per applied purchase (unique idempotency_key)
- user_activity: premium-only tool usage history

CRITICAL: account writes, ledger appends and idempotency keys are committed in
a single multi-document transaction. The account write only matches the
version the caller read, so a lost race surfaces as VersionConflict and the
whole transaction is rolled back.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError
)

from .config import (
    ACCOUNTS_COLLECTION,
    LEDGER_COLLECTION,
    PURCHASE_EVENTS_COLLECTION,
    USER_ACTIVITY_COLLECTION
)
from .errors import DuplicateIdempotencyKey, StorageUnavailable, VersionConflict
from .models import Account, AccountSnapshot, ActivityRecord, LedgerEntry
from .store import LedgerStore, utcnow

logger = logging.getLogger(__name__)


class MongoLedgerStore(LedgerStore):
    """Ledger store backed by MongoDB (motor). Requires a replica set for transactions."""

    name = "mongo"

    def __init__(self, client, db_name: str, clock: Callable[[], datetime] = utcnow):
        self.client = client
        self.clock = clock
        self.db = client[db_name]
        self.accounts = self.db[ACCOUNTS_COLLECTION]
        self.ledger = self.db[LEDGER_COLLECTION]
        self.purchase_events = self.db[PURCHASE_EVENTS_COLLECTION]
        self.user_activity = self.db[USER_ACTIVITY_COLLECTION]

    async def read_account(self, user_id: str) -> AccountSnapshot:
        try:
            doc = await self.accounts.find_one({"user_id": user_id}, {"_id": 0})
        except PyMongoError as e:
            raise self._storage_error("read_account", user_id, e)

        if not doc:
            return AccountSnapshot(account=None, version=0)

        account = Account(**doc)
        return AccountSnapshot(account=account, version=account.version)

    async def commit(
        self,
        user_id: str,
        expected_version: int,
        account: Account,
        entries: List[LedgerEntry],
        idempotency_key: Optional[str] = None
    ) -> Account:
        now = self.clock()
        stored = account.model_copy(update={
            "user_id": user_id,
            "version": expected_version + 1,
            "updated_at": now
        })
        entry_docs = [
            entry.model_copy(update={"user_id": user_id, "ts": now}).model_dump()
            for entry in entries
        ]

        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    if idempotency_key:
                        await self._record_idempotency_key(
                            session, user_id, idempotency_key, now
                        )

                    await self._write_account(session, user_id, expected_version, stored)

                    if entry_docs:
                        await self.ledger.insert_many(entry_docs, session=session)
        except (VersionConflict, DuplicateIdempotencyKey):
            raise
        except OperationFailure as e:
            if e.has_error_label("TransientTransactionError"):
                # Write conflict with a concurrent transaction: same as losing the CAS
                raise VersionConflict(user_id, expected_version)
            raise self._storage_error("commit", user_id, e)
        except PyMongoError as e:
            raise self._storage_error("commit", user_id, e)

        return stored

    async def _record_idempotency_key(self, session, user_id: str, idempotency_key: str, now: datetime):
        try:
            await self.purchase_events.insert_one(
                {
                    "idempotency_key": idempotency_key,
                    "user_id": user_id,
                    "applied_at": now
                },
                session=session
            )
        except DuplicateKeyError:
            raise DuplicateIdempotencyKey(idempotency_key, user_id=user_id)

    async def _write_account(self, session, user_id: str, expected_version: int, stored: Account):
        doc = stored.model_dump()

        if expected_version == 0:
            # First write for this user; unique index on user_id decides the race
            try:
                await self.accounts.insert_one(doc, session=session)
            except DuplicateKeyError:
                raise VersionConflict(user_id, expected_version)
            return

        result = await self.accounts.replace_one(
            {"user_id": user_id, "version": expected_version},
            doc,
            session=session
        )
        if result.matched_count == 0:
            raise VersionConflict(user_id, expected_version)

    async def list_entries(self, user_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        try:
            cursor = self.ledger.find({"user_id": user_id}, {"_id": 0}).sort("ts", -1)
            if limit is not None:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise self._storage_error("list_entries", user_id, e)
        return [LedgerEntry(**doc) for doc in docs]

    async def sum_entries(self, user_id: str) -> int:
        pipeline = [
            {"$match": {"user_id": user_id}},
            {"$group": {"_id": None, "total": {"$sum": "$amount"}}}
        ]
        try:
            result = await self.ledger.aggregate(pipeline).to_list(1)
        except PyMongoError as e:
            raise self._storage_error("sum_entries", user_id, e)
        return result[0]["total"] if result else 0

    async def has_idempotency_key(self, idempotency_key: str) -> bool:
        try:
            doc = await self.purchase_events.find_one(
                {"idempotency_key": idempotency_key},
                {"_id": 0, "idempotency_key": 1}
            )
        except PyMongoError as e:
            raise self._storage_error("has_idempotency_key", None, e)
        return doc is not None

    async def record_activity(self, record: ActivityRecord) -> None:
        doc = record.model_copy(update={"ts": self.clock()}).model_dump()
        try:
            await self.user_activity.insert_one(doc)
        except PyMongoError as e:
            raise self._storage_error("record_activity", record.user_id, e)

    async def ping(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"MongoDB ping failed: {e}")
            return False

    async def close(self) -> None:
        self.client.close()

    def _storage_error(self, operation: str, user_id: Optional[str], error: Exception) -> StorageUnavailable:
        if isinstance(error, ConnectionFailure):
            logger.error(f"Ledger store unreachable during {operation} (user={user_id}): {error}")
        else:
            logger.error(f"Ledger store error during {operation} (user={user_id}): {error}")
        return StorageUnavailable(f"Ledger store error during {operation}", user_id=user_id)
