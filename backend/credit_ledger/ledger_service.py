"""
Ledger Service

Public operations on the credit ledger:
- debit: consume credits for a billable action (fails closed)
- credit: add purchased credits, optionally opening a premium window
- get_entitlement / get_account / get_ledger: reads
- verify_ledger: check the balance against the sum of its ledger entries

Every write goes through the TransactionEngine; this module only supplies
the state transitions.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .config import MAX_CREDIT_AMOUNT, MODEL_CREDIT_COSTS
from .engine import Abort, Commit, TransactionEngine
from .entitlement import is_currently_premium
from .errors import AccountNotFound, InsufficientCredits, InvalidAmount, MissingIdempotencyKey
from .models import (
    Account,
    CreditResult,
    DebitResult,
    EntitlementStatus,
    LedgerEntry,
    LedgerReconciliation
)
from .store import utcnow

logger = logging.getLogger(__name__)


def _validate_amount(amount) -> int:
    # bool is an int subclass; True must not count as one credit
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive whole number, got {amount!r}")
    if amount > MAX_CREDIT_AMOUNT:
        raise InvalidAmount(f"Amount {amount} exceeds the largest storable balance")
    return amount


class LedgerService:
    """Debit, credit and entitlement operations for user accounts."""

    def __init__(self, engine: TransactionEngine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.store = engine.store
        self.clock = clock

    # ==================== WRITES ====================

    async def debit(
        self,
        user_id: str,
        amount: int,
        context: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> DebitResult:
        """
        Consume `amount` credits from an existing account.

        Debits never create accounts; only purchases do.

        Raises:
            InvalidAmount, AccountNotFound, InsufficientCredits,
            Contention, StorageUnavailable
        """
        amount = _validate_amount(amount)
        request_id = request_id or str(uuid.uuid4())

        def mutation(account: Optional[Account]):
            if account is None:
                return Abort(AccountNotFound(user_id=user_id))

            if account.credits_remaining < amount:
                return Abort(InsufficientCredits(user_id, amount, account.credits_remaining))

            updated = account.model_copy(update={
                "credits_remaining": account.credits_remaining - amount
            })
            entry = LedgerEntry(
                user_id=user_id,
                type="debit",
                amount=-amount,
                model=context,
                request_id=request_id
            )
            return Commit(updated, [entry])

        committed = await self.engine.apply_transaction(user_id, mutation)

        logger.info(f"Debited {amount} credits from user {user_id} ({context}), remaining {committed.credits_remaining}")
        return DebitResult(
            remaining_credits=committed.credits_remaining,
            charged=amount,
            request_id=request_id
        )

    async def credit(
        self,
        user_id: str,
        amount: int,
        pack_details: str,
        idempotency_key: str,
        premium_extension_days: Optional[int] = None
    ) -> CreditResult:
        """
        Add purchased credits, provisioning the account on first purchase.

        When premium_extension_days is truthy the premium window is reset to
        now + that many days. Remaining time from an earlier purchase is not
        carried over.

        Raises:
            InvalidAmount, MissingIdempotencyKey, DuplicateIdempotencyKey,
            Contention, StorageUnavailable
        """
        amount = _validate_amount(amount)
        if not idempotency_key:
            raise MissingIdempotencyKey(user_id=user_id)

        def mutation(account: Optional[Account]):
            now = self.clock()

            if account is None:
                updated = Account(user_id=user_id, credits_remaining=amount, created_at=now)
            else:
                if account.credits_remaining > MAX_CREDIT_AMOUNT - amount:
                    return Abort(InvalidAmount(
                        f"Crediting {amount} would exceed the largest storable balance", user_id=user_id
                    ))
                updated = account.model_copy(update={
                    "credits_remaining": account.credits_remaining + amount
                })

            if premium_extension_days:
                updated = updated.model_copy(update={
                    "is_premium": True,
                    "premium_expires": now + timedelta(days=premium_extension_days)
                })

            entry = LedgerEntry(
                user_id=user_id,
                type="purchase",
                amount=amount,
                details=pack_details,
                idempotency_key=idempotency_key
            )
            return Commit(updated, [entry])

        committed = await self.engine.apply_transaction(
            user_id, mutation, idempotency_key=idempotency_key
        )

        logger.info(f"Successfully credited {amount} to user {user_id} (key={idempotency_key})")
        return CreditResult(
            new_balance=committed.credits_remaining,
            is_premium=self.is_premium(committed),
            premium_expires=committed.premium_expires
        )

    # ==================== READS ====================

    async def get_account(self, user_id: str) -> Account:
        snapshot = await self.store.read_account(user_id)
        if snapshot.account is None:
            raise AccountNotFound(user_id=user_id)
        return snapshot.account

    async def get_entitlement(self, user_id: str) -> EntitlementStatus:
        """Premium status evaluated against the current clock; never writes."""
        account = await self.get_account(user_id)
        return EntitlementStatus(
            is_premium=is_currently_premium(account, self.clock()),
            premium_expires=account.premium_expires
        )

    async def get_ledger(self, user_id: str, limit: int = 50) -> List[LedgerEntry]:
        """Get recent ledger entries for user, newest first."""
        return await self.store.list_entries(user_id, limit=limit)

    async def verify_ledger(self, user_id: str) -> LedgerReconciliation:
        """
        Compare the cached balance with the sum of the ledger.

        The account and the ledger sum are two separate reads, so a commit
        landing between them can look like a mismatch. A mismatch is re-read
        once before it is reported.
        """
        for attempt in range(2):
            snapshot = await self.store.read_account(user_id)
            credits_remaining = snapshot.account.credits_remaining if snapshot.account else 0
            ledger_total = await self.store.sum_entries(user_id)
            if credits_remaining == ledger_total:
                break
            if attempt == 0:
                logger.debug(f"Ledger reads for user {user_id} disagree, re-reading")

        consistent = credits_remaining == ledger_total
        if not consistent:
            logger.error(
                f"Ledger mismatch for user {user_id}: balance {credits_remaining}, ledger {ledger_total}"
            )

        return LedgerReconciliation(
            user_id=user_id,
            credits_remaining=credits_remaining,
            ledger_total=ledger_total,
            consistent=consistent
        )

    def cost_for_model(self, model: str) -> int:
        """Billing policy: credits a single tool run costs on `model`."""
        return MODEL_CREDIT_COSTS.get(model, MODEL_CREDIT_COSTS["default"])

    def is_premium(self, account: Optional[Account]) -> bool:
        return is_currently_premium(account, self.clock())
