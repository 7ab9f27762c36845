"""Shared fixtures for the credit ledger tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from credit_ledger.engine import TransactionEngine
from credit_ledger.ledger_service import LedgerService
from credit_ledger.store import InMemoryLedgerStore


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryLedgerStore(clock=clock)


@pytest.fixture
def engine(store):
    return TransactionEngine(store, retry_backoff=0)


@pytest.fixture
def service(engine, clock):
    return LedgerService(engine, clock=clock)
