"""
Credit Ledger Data Models

Pydantic models for ledger operations.
These define the structure of documents stored in the ledger collections
and the request/response bodies of the API.
"""

import uuid
from datetime import datetime
from typing import Optional, List, Literal, Any

from pydantic import BaseModel, Field


def new_entry_id() -> str:
    return str(uuid.uuid4())


# ==================== ACCOUNT MODELS ====================

class Account(BaseModel):
    """Per-user balance and entitlement record"""
    user_id: str
    credits_remaining: int = Field(0, ge=0)
    is_premium: bool = False
    premium_expires: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0  # Bumped by every committed write; 0 means never stored


class AccountSnapshot(BaseModel):
    """What a conditional read returns: the account (or None) and its version token"""
    account: Optional[Account] = None
    version: int = 0

    @property
    def exists(self) -> bool:
        return self.account is not None


class AccountResponse(BaseModel):
    """Response model for the account endpoint"""
    user_id: str
    credits_remaining: int
    is_premium: bool
    premium_expires: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ==================== LEDGER MODELS ====================

class LedgerEntry(BaseModel):
    """Immutable ledger entry for one balance-affecting event"""
    entry_id: str = Field(default_factory=new_entry_id)
    user_id: str
    type: Literal["debit", "purchase"]
    amount: int  # Negative for debit, positive for purchase
    model: Optional[str] = None
    details: Optional[str] = None
    request_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    ts: Optional[datetime] = None  # Assigned by the store at commit


class LedgerReconciliation(BaseModel):
    user_id: str
    credits_remaining: int
    ledger_total: int
    consistent: bool


# ==================== OPERATION RESULTS ====================

class DebitResult(BaseModel):
    remaining_credits: int
    charged: int
    request_id: str


class CreditResult(BaseModel):
    new_balance: int
    is_premium: bool
    premium_expires: Optional[datetime] = None


class EntitlementStatus(BaseModel):
    is_premium: bool
    premium_expires: Optional[datetime] = None


# ==================== REQUEST MODELS ====================

class RunToolRequest(BaseModel):
    """Request to run an AI tool; all fields are required"""
    toolId: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None


class RunToolResponse(BaseModel):
    result: str
    credits_charged: int
    remaining_credits: int


class PurchaseWebhookRequest(BaseModel):
    """Payment provider notification"""
    provider: Optional[str] = None
    payload: dict = Field(default_factory=dict)


class LogActivityRequest(BaseModel):
    toolId: Optional[str] = None
    inputs: Optional[Any] = None
    outputs: Optional[Any] = None


# ==================== ACTIVITY MODELS ====================

class ActivityRecord(BaseModel):
    """Tool usage event, kept only for accounts with an active premium window"""
    user_id: str
    tool_id: str
    inputs: Any
    outputs: Any
    ts: Optional[datetime] = None


class LedgerPage(BaseModel):
    entries: List[LedgerEntry]
    count: int
    reconciliation: LedgerReconciliation
