"""
Ledger Store

Durable home of per-user Account documents and their append-only ledger.
The store offers exactly two write-relevant primitives:

- read_account: read the account together with its version token
- commit: conditionally write the account (only if the version is unchanged)
  together with its new ledger entries and the purchase idempotency key,
  all or nothing

Nothing outside the TransactionEngine should call commit().
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from .errors import DuplicateIdempotencyKey, VersionConflict
from .models import Account, AccountSnapshot, ActivityRecord, LedgerEntry

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerStore:
    """Interface implemented by every ledger backend."""

    name = "abstract"

    async def read_account(self, user_id: str) -> AccountSnapshot:
        raise NotImplementedError

    async def commit(
        self,
        user_id: str,
        expected_version: int,
        account: Account,
        entries: List[LedgerEntry],
        idempotency_key: Optional[str] = None
    ) -> Account:
        """
        Write account + entries atomically if the stored version still equals
        expected_version (0 = account must not exist yet).

        Raises:
            VersionConflict: another writer committed first
            DuplicateIdempotencyKey: idempotency_key was already recorded
            StorageUnavailable: backend unreachable
        """
        raise NotImplementedError

    async def list_entries(self, user_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        """Ledger entries for a user, newest first."""
        raise NotImplementedError

    async def sum_entries(self, user_id: str) -> int:
        raise NotImplementedError

    async def has_idempotency_key(self, idempotency_key: str) -> bool:
        raise NotImplementedError

    async def record_activity(self, record: ActivityRecord) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryLedgerStore(LedgerStore):
    """
    Dict-backed store for development and tests.

    Reads suspend once before returning, like a network round trip would,
    so concurrent transactions genuinely interleave between read and write.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._accounts: Dict[str, Account] = {}
        self._ledger: Dict[str, List[LedgerEntry]] = {}
        self._idempotency_keys: Set[str] = set()
        self._activity: List[ActivityRecord] = []
        self._lock = asyncio.Lock()

    async def read_account(self, user_id: str) -> AccountSnapshot:
        await asyncio.sleep(0)
        account = self._accounts.get(user_id)
        if account is None:
            return AccountSnapshot(account=None, version=0)
        return AccountSnapshot(account=account.model_copy(deep=True), version=account.version)

    async def commit(
        self,
        user_id: str,
        expected_version: int,
        account: Account,
        entries: List[LedgerEntry],
        idempotency_key: Optional[str] = None
    ) -> Account:
        async with self._lock:
            current = self._accounts.get(user_id)
            current_version = current.version if current else 0
            if current_version != expected_version:
                raise VersionConflict(user_id, expected_version)

            if idempotency_key and idempotency_key in self._idempotency_keys:
                raise DuplicateIdempotencyKey(idempotency_key, user_id=user_id)

            now = self.clock()
            stored = account.model_copy(update={
                "user_id": user_id,
                "version": expected_version + 1,
                "updated_at": now
            })
            stamped = [
                entry.model_copy(update={"user_id": user_id, "ts": now})
                for entry in entries
            ]

            self._accounts[user_id] = stored
            self._ledger.setdefault(user_id, []).extend(stamped)
            if idempotency_key:
                self._idempotency_keys.add(idempotency_key)

            return stored.model_copy(deep=True)

    async def list_entries(self, user_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        entries = list(reversed(self._ledger.get(user_id, [])))
        if limit is not None:
            entries = entries[:limit]
        return [entry.model_copy() for entry in entries]

    async def sum_entries(self, user_id: str) -> int:
        return sum(entry.amount for entry in self._ledger.get(user_id, []))

    async def has_idempotency_key(self, idempotency_key: str) -> bool:
        return idempotency_key in self._idempotency_keys

    async def record_activity(self, record: ActivityRecord) -> None:
        self._activity.append(record.model_copy(update={"ts": self.clock()}))

    def activity_for(self, user_id: str) -> List[ActivityRecord]:
        return [r for r in self._activity if r.user_id == user_id]
