"""
Unit Tests for the MongoDB Ledger Store
=======================================

The motor collections and session are mocked; these tests pin down how
driver outcomes map onto the store contract:
- missing document → version 0 snapshot
- conditional replace matching nothing → VersionConflict
- duplicate purchase event → DuplicateIdempotencyKey
- transient transaction error → VersionConflict
- connection failures → StorageUnavailable
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from pymongo.errors import DuplicateKeyError, OperationFailure, ServerSelectionTimeoutError

from credit_ledger.errors import DuplicateIdempotencyKey, StorageUnavailable, VersionConflict
from credit_ledger.models import Account, ActivityRecord, LedgerEntry
from credit_ledger.mongo_store import MongoLedgerStore

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def async_context(target):
    target.__aenter__ = AsyncMock(return_value=target)
    target.__aexit__ = AsyncMock(return_value=False)
    return target


class TestMongoLedgerStore:

    @pytest.fixture
    def session(self):
        session = async_context(MagicMock())
        session.start_transaction = MagicMock(return_value=async_context(MagicMock()))
        return session

    @pytest.fixture
    def store(self, session):
        client = MagicMock()
        client.start_session = AsyncMock(return_value=session)
        store = MongoLedgerStore(client, "tool_store_test", clock=lambda: NOW)
        store.accounts = AsyncMock()
        store.ledger = MagicMock()
        store.ledger.insert_many = AsyncMock()
        store.purchase_events = AsyncMock()
        store.user_activity = AsyncMock()
        return store

    # ==================== READS ====================

    @pytest.mark.asyncio
    async def test_read_missing_account(self, store):
        store.accounts.find_one.return_value = None

        snapshot = await store.read_account("u1")

        assert snapshot.account is None
        assert snapshot.version == 0

    @pytest.mark.asyncio
    async def test_read_existing_account(self, store):
        store.accounts.find_one.return_value = {
            "user_id": "u1",
            "credits_remaining": 8,
            "is_premium": False,
            "premium_expires": None,
            "created_at": NOW,
            "updated_at": NOW,
            "version": 3
        }

        snapshot = await store.read_account("u1")

        assert snapshot.version == 3
        assert snapshot.account.credits_remaining == 8
        store.accounts.find_one.assert_awaited_once_with({"user_id": "u1"}, {"_id": 0})

    @pytest.mark.asyncio
    async def test_read_when_unreachable(self, store):
        store.accounts.find_one.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(StorageUnavailable):
            await store.read_account("u1")

    @pytest.mark.asyncio
    async def test_sum_entries(self, store):
        store.ledger.aggregate.return_value.to_list = AsyncMock(return_value=[{"_id": None, "total": 7}])

        assert await store.sum_entries("u1") == 7

    @pytest.mark.asyncio
    async def test_sum_entries_empty_ledger(self, store):
        store.ledger.aggregate.return_value.to_list = AsyncMock(return_value=[])

        assert await store.sum_entries("u1") == 0

    @pytest.mark.asyncio
    async def test_list_entries_newest_first(self, store):
        cursor = store.ledger.find.return_value.sort.return_value
        cursor.limit.return_value.to_list = AsyncMock(return_value=[
            {"entry_id": "e2", "user_id": "u1", "type": "debit", "amount": -2, "model": "gpt-4", "ts": NOW},
            {"entry_id": "e1", "user_id": "u1", "type": "purchase", "amount": 10, "details": "Purchase of starter pack", "ts": NOW},
        ])

        entries = await store.list_entries("u1", limit=2)

        assert [e.entry_id for e in entries] == ["e2", "e1"]
        store.ledger.find.return_value.sort.assert_called_once_with("ts", -1)
        cursor.limit.assert_called_once_with(2)

    @pytest.mark.asyncio
    async def test_has_idempotency_key(self, store):
        store.purchase_events.find_one.return_value = {"idempotency_key": "stripe:evt_1"}

        assert await store.has_idempotency_key("stripe:evt_1") is True

    # ==================== COMMIT ====================

    @pytest.mark.asyncio
    async def test_first_commit_inserts_account_and_entries(self, store, session):
        account = Account(user_id="u1", credits_remaining=10, created_at=NOW)
        entry = LedgerEntry(user_id="u1", type="purchase", amount=10, details="Purchase of starter pack")

        committed = await store.commit("u1", 0, account, [entry], idempotency_key="stripe:evt_1")

        assert committed.version == 1
        assert committed.updated_at == NOW
        store.purchase_events.insert_one.assert_awaited_once()
        inserted = store.accounts.insert_one.await_args.args[0]
        assert inserted["version"] == 1
        assert inserted["credits_remaining"] == 10
        entry_docs = store.ledger.insert_many.await_args.args[0]
        assert entry_docs[0]["ts"] == NOW
        assert store.ledger.insert_many.await_args.kwargs["session"] is session

    @pytest.mark.asyncio
    async def test_update_is_conditional_on_version(self, store):
        store.accounts.replace_one.return_value = MagicMock(matched_count=1)
        account = Account(user_id="u1", credits_remaining=6, version=4)

        committed = await store.commit("u1", 4, account, [LedgerEntry(user_id="u1", type="debit", amount=-2)])

        assert committed.version == 5
        query = store.accounts.replace_one.await_args.args[0]
        assert query == {"user_id": "u1", "version": 4}

    @pytest.mark.asyncio
    async def test_stale_version_raises_conflict(self, store):
        store.accounts.replace_one.return_value = MagicMock(matched_count=0)
        account = Account(user_id="u1", credits_remaining=6, version=4)

        with pytest.raises(VersionConflict):
            await store.commit("u1", 4, account, [LedgerEntry(user_id="u1", type="debit", amount=-2)])

        store.ledger.insert_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_first_insert_raises_conflict(self, store):
        store.accounts.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key error")

        with pytest.raises(VersionConflict):
            await store.commit("u1", 0, Account(user_id="u1", credits_remaining=1), [
                LedgerEntry(user_id="u1", type="purchase", amount=1)
            ])

    @pytest.mark.asyncio
    async def test_duplicate_purchase_event(self, store):
        store.purchase_events.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key error")

        with pytest.raises(DuplicateIdempotencyKey):
            await store.commit("u1", 0, Account(user_id="u1", credits_remaining=1), [
                LedgerEntry(user_id="u1", type="purchase", amount=1)
            ], idempotency_key="stripe:evt_1")

        store.accounts.insert_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_transaction_error_is_a_conflict(self, store):
        store.accounts.replace_one.side_effect = OperationFailure(
            "WriteConflict", code=112, details={"errorLabels": ["TransientTransactionError"]}
        )

        with pytest.raises(VersionConflict):
            await store.commit("u1", 2, Account(user_id="u1", credits_remaining=1, version=2), [])

    @pytest.mark.asyncio
    async def test_connection_loss_during_commit(self, store):
        store.accounts.replace_one.side_effect = ServerSelectionTimeoutError("no servers")

        with pytest.raises(StorageUnavailable):
            await store.commit("u1", 2, Account(user_id="u1", credits_remaining=1, version=2), [])

    @pytest.mark.asyncio
    async def test_record_activity_stamps_time(self, store):
        await store.record_activity(ActivityRecord(user_id="u1", tool_id="summarize", inputs={"a": 1}, outputs={"b": 2}))

        doc = store.user_activity.insert_one.await_args.args[0]
        assert doc["ts"] == NOW
        assert doc["tool_id"] == "summarize"
