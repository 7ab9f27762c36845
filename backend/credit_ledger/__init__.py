"""
Credit Ledger Module
Credit accounting for the AI Tool Store

This module provides:
- Atomic debits when a paid tool runs (never below zero)
- Purchase credits with optional premium entitlement window
- Idempotent webhook crediting (one credit per provider event)
- Append-only ledger for every balance change
- Optimistic concurrency with bounded retry

Collections used:
- accounts: Per-user balance and premium expiry
- ledger: Immutable transaction log
- purchase_events: Webhook idempotency store
- user_activity: Premium-only tool usage history
"""

__version__ = "1.0.0"
