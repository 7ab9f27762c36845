"""
Credit Ledger API Routes

Endpoints:
- POST /api/runTool - Debit credits and run an AI tool
- POST /api/purchaseWebhook - Payment provider webhook (credits purchases)
- POST /api/logActivity - Record tool usage for premium users
- GET /api/credits - Account balance and premium status
- GET /api/credits/ledger - Transaction history
- GET /api/credits/entitlement - Current premium entitlement
- GET /api/credits/packs - Purchasable credit packs
- GET /api/credits/costs - Credit cost per model
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from utils.auth import get_current_user
from .activity_service import ActivityService
from .config import CREDIT_PACKS, MODEL_CREDIT_COSTS
from .ledger_service import LedgerService
from .models import (
    AccountResponse,
    EntitlementStatus,
    LedgerPage,
    LogActivityRequest,
    PurchaseWebhookRequest,
    RunToolRequest,
    RunToolResponse
)
from .tool_service import ToolExecutionService
from .webhook_service import PurchaseWebhookService

logger = logging.getLogger(__name__)

credit_router = APIRouter(tags=["Credit Ledger"])


def get_ledger_service(request: Request) -> LedgerService:
    return request.app.state.ledger_service


def get_tool_service(request: Request) -> ToolExecutionService:
    return request.app.state.tool_service


# ==================== TOOL EXECUTION ====================

@credit_router.post("/runTool", response_model=RunToolResponse)
async def run_tool(
    body: RunToolRequest,
    user: dict = Depends(get_current_user),
    tool_service: ToolExecutionService = Depends(get_tool_service)
):
    """
    Run an AI tool.

    1. Checks the user has enough credits
    2. Debits the model's cost in a transaction
    3. Calls the model (stubbed)

    Insufficient credits → 402 via the LedgerError handler.
    """
    if not body.toolId or not body.model or not body.prompt:
        raise HTTPException(status_code=400, detail="Missing required fields: toolId, model, or prompt.")

    return await tool_service.run_tool(
        user_id=user["uid"],
        tool_id=body.toolId,
        model=body.model,
        prompt=body.prompt
    )


# ==================== PURCHASE WEBHOOK ====================

@credit_router.post("/purchaseWebhook")
async def purchase_webhook(
    body: PurchaseWebhookRequest,
    ledger_service: LedgerService = Depends(get_ledger_service)
):
    """
    Handle purchase notifications from Stripe, Google Play or the App Store.

    Credits are applied at most once per provider event; a redelivered event
    is acknowledged with duplicate=true.
    """
    logger.info(f"Received purchase webhook from provider={body.provider}")

    webhook_service = PurchaseWebhookService(ledger_service)
    return await webhook_service.process_webhook(body.provider, body.payload)


# ==================== ACTIVITY ====================

@credit_router.post("/logActivity")
async def log_activity(
    body: LogActivityRequest,
    user: dict = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service)
):
    """Logs a tool usage event for a premium user."""
    if not body.toolId or not body.inputs or not body.outputs:
        raise HTTPException(status_code=400, detail="Missing required fields: toolId, inputs, or outputs.")

    activity_service = ActivityService(ledger_service)
    logged = await activity_service.log_activity(
        user_id=user["uid"],
        tool_id=body.toolId,
        inputs=body.inputs,
        outputs=body.outputs
    )

    return {"success": True, "logged": logged}


# ==================== ACCOUNT READS ====================

@credit_router.get("/credits", response_model=AccountResponse)
async def get_account(
    user: dict = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service)
):
    """Current balance; is_premium reflects the expiry, not the stored flag."""
    account = await ledger_service.get_account(user["uid"])

    return AccountResponse(
        user_id=account.user_id,
        credits_remaining=account.credits_remaining,
        is_premium=ledger_service.is_premium(account),
        premium_expires=account.premium_expires,
        created_at=account.created_at
    )


@credit_router.get("/credits/ledger", response_model=LedgerPage)
async def get_ledger(
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service)
):
    """
    Get credit history (ledger entries), newest first.

    Includes a reconciliation of the balance against the full ledger.
    """
    entries = await ledger_service.get_ledger(user["uid"], limit)
    reconciliation = await ledger_service.verify_ledger(user["uid"])

    return LedgerPage(entries=entries, count=len(entries), reconciliation=reconciliation)


@credit_router.get("/credits/entitlement", response_model=EntitlementStatus)
async def get_entitlement(
    user: dict = Depends(get_current_user),
    ledger_service: LedgerService = Depends(get_ledger_service)
):
    return await ledger_service.get_entitlement(user["uid"])


# ==================== PRICING INFO ====================

@credit_router.get("/credits/packs")
async def get_credit_packs():
    """Get available credit packs for purchase."""
    return {
        "packs": [
            {
                "id": pack_id,
                **pack_info
            }
            for pack_id, pack_info in CREDIT_PACKS.items()
        ],
        "currency": "USD"
    }


@credit_router.get("/credits/costs")
async def get_model_costs():
    """Credits charged per tool run, by model."""
    return {
        "costs": MODEL_CREDIT_COSTS
    }
