"""
Purchase Webhook Service

Turns a payment provider notification into exactly one credit:
- resolves user, credits, pack and premium flag per provider
- derives the idempotency key from the provider's event/order id
- re-deliveries of an applied event are acknowledged without crediting again

Signature/receipt verification happens before this service is called and is
provider-specific; it is not done here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import PREMIUM_DURATION_DAYS, PROVIDER_EVENT_ID_KEYS, SUPPORTED_PROVIDERS
from .errors import DuplicateIdempotencyKey, LedgerError
from .ledger_service import LedgerService

logger = logging.getLogger(__name__)


class UnsupportedProvider(LedgerError):
    error_code = "UNSUPPORTED_PROVIDER"
    http_status = 400


class InvalidWebhookPayload(LedgerError):
    error_code = "INVALID_WEBHOOK_PAYLOAD"
    http_status = 400


@dataclass(frozen=True)
class PurchaseEvent:
    provider: str
    event_id: str
    user_id: str
    credits: int
    pack_name: Optional[str]
    is_premium: bool

    @property
    def idempotency_key(self) -> str:
        return f"{self.provider}:{self.event_id}"

    @property
    def details(self) -> str:
        return f"Purchase of {self.pack_name} pack"


def parse_purchase_event(provider: Optional[str], payload: Dict[str, Any]) -> PurchaseEvent:
    """Extract the purchase from a provider payload."""
    if provider not in SUPPORTED_PROVIDERS:
        raise UnsupportedProvider()

    payload = payload or {}
    if provider == "stripe":
        # uid is passed to Checkout as client_reference_id
        user_id = payload.get("client_reference_id")
    else:
        # google_play / app_store: uid comes from the verified receipt
        user_id = payload.get("uid")

    credits = payload.get("credits_purchased")
    if not user_id or not credits:
        raise InvalidWebhookPayload()

    event_id = next(
        (str(payload[key]) for key in PROVIDER_EVENT_ID_KEYS if payload.get(key)),
        None
    )
    if not event_id:
        raise InvalidWebhookPayload(
            f"Missing event id ({', '.join(PROVIDER_EVENT_ID_KEYS)}) in webhook payload."
        )

    return PurchaseEvent(
        provider=provider,
        event_id=event_id,
        user_id=str(user_id),
        credits=credits,
        pack_name=payload.get("pack_name"),
        is_premium=bool(payload.get("isPremium", False))
    )


class PurchaseWebhookService:
    """Applies verified purchase notifications to the ledger."""

    def __init__(self, ledger_service: LedgerService):
        self.ledger_service = ledger_service

    async def process_webhook(self, provider: Optional[str], payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Credit the purchase described by the webhook.

        Returns:
            Dict with success, duplicate flag and the resulting balance
        """
        event = parse_purchase_event(provider, payload)
        logger.info(f"Processing {event.provider} purchase {event.event_id} for user {event.user_id}")

        try:
            result = await self.ledger_service.credit(
                user_id=event.user_id,
                amount=event.credits,
                pack_details=event.details,
                idempotency_key=event.idempotency_key,
                premium_extension_days=PREMIUM_DURATION_DAYS if event.is_premium else None
            )
        except DuplicateIdempotencyKey:
            logger.info(f"Event {event.idempotency_key} already processed, skipping")
            return {"success": True, "duplicate": True}

        return {
            "success": True,
            "duplicate": False,
            "new_balance": result.new_balance,
            "is_premium": result.is_premium,
            "premium_expires": result.premium_expires
        }
