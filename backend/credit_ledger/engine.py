"""
Balance Transaction Engine

Runs optimistic read-compute-write cycles against a LedgerStore:

1. read the account and its version token
2. hand the snapshot to a pure mutation function
3. commit the result conditionally on the version read in step 1
4. on a lost race, start over from step 1 (bounded by max_attempts)

Mutation functions never raise for business outcomes. They return either
Commit(account, entries) or Abort(error); an Abort is surfaced immediately
and is never retried.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from .config import MAX_TRANSACTION_ATTEMPTS, TRANSACTION_RETRY_BACKOFF_SECONDS
from .errors import (
    Contention,
    DuplicateIdempotencyKey,
    LedgerError,
    LedgerInvariantError,
    VersionConflict
)
from .models import Account, LedgerEntry
from .store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Commit:
    """Write this account state and append these entries."""
    account: Account
    entries: List[LedgerEntry] = field(default_factory=list)


@dataclass(frozen=True)
class Abort:
    """Leave storage untouched and surface this error to the caller."""
    error: LedgerError


MutationOutcome = Union[Commit, Abort]
Mutation = Callable[[Optional[Account]], MutationOutcome]


class TransactionEngine:
    """The only component allowed to write accounts and ledger entries."""

    def __init__(
        self,
        store: LedgerStore,
        max_attempts: int = MAX_TRANSACTION_ATTEMPTS,
        retry_backoff: float = TRANSACTION_RETRY_BACKOFF_SECONDS
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

    async def apply_transaction(
        self,
        user_id: str,
        mutation: Mutation,
        idempotency_key: Optional[str] = None
    ) -> Account:
        """
        Apply `mutation` to the user's account atomically.

        Returns:
            The committed Account

        Raises:
            The Abort error returned by the mutation (no retry)
            DuplicateIdempotencyKey: key already applied
            Contention: every attempt lost the race
            StorageUnavailable: store unreachable
        """
        for attempt in range(1, self.max_attempts + 1):
            if idempotency_key and await self.store.has_idempotency_key(idempotency_key):
                logger.warning(f"Idempotency key {idempotency_key} already applied for user {user_id}")
                raise DuplicateIdempotencyKey(idempotency_key, user_id=user_id)

            snapshot = await self.store.read_account(user_id)
            outcome = mutation(snapshot.account)

            if isinstance(outcome, Abort):
                logger.info(f"Transaction aborted for user {user_id}: {outcome.error.error_code}")
                raise outcome.error
            if not isinstance(outcome, Commit):
                raise TypeError(f"Mutation must return Commit or Abort, got {type(outcome).__name__}")

            self._check_invariants(user_id, snapshot.account, outcome)

            try:
                committed = await self.store.commit(
                    user_id,
                    snapshot.version,
                    outcome.account,
                    outcome.entries,
                    idempotency_key=idempotency_key
                )
            except VersionConflict:
                logger.warning(
                    f"Lost optimistic race for user {user_id} "
                    f"(attempt {attempt}/{self.max_attempts}, version {snapshot.version})"
                )
                if attempt < self.max_attempts and self.retry_backoff:
                    await asyncio.sleep(self.retry_backoff * attempt)
                continue

            return committed

        logger.error(f"Contention on account {user_id}: gave up after {self.max_attempts} attempts")
        raise Contention(user_id, self.max_attempts)

    def _check_invariants(self, user_id: str, before: Optional[Account], outcome: Commit):
        """Non-negativity, and every balance change accounted for by ledger entries."""
        after = outcome.account
        if after.credits_remaining < 0:
            raise LedgerInvariantError(
                f"Mutation left {user_id} with negative balance {after.credits_remaining}",
                user_id=user_id
            )

        previous = before.credits_remaining if before else 0
        delta = after.credits_remaining - previous
        ledger_delta = sum(entry.amount for entry in outcome.entries)
        if delta != ledger_delta:
            raise LedgerInvariantError(
                f"Balance change {delta} for {user_id} does not match ledger entries {ledger_delta}",
                user_id=user_id
            )
