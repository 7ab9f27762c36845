"""Tool usage history, recorded only while the user's premium window is open."""

import logging
from typing import Any

from .ledger_service import LedgerService
from .models import ActivityRecord

logger = logging.getLogger(__name__)


class ActivityService:

    def __init__(self, ledger_service: LedgerService):
        self.ledger_service = ledger_service
        self.store = ledger_service.store

    async def log_activity(self, user_id: str, tool_id: str, inputs: Any, outputs: Any) -> bool:
        """
        Record a tool usage event for a premium user.

        Returns True if the event was stored. Raises AccountNotFound for
        unknown users.
        """
        account = await self.ledger_service.get_account(user_id)

        if not self.ledger_service.is_premium(account):
            return False

        await self.store.record_activity(ActivityRecord(
            user_id=user_id,
            tool_id=tool_id,
            inputs=inputs,
            outputs=outputs
        ))
        logger.info(f"Logged {tool_id} activity for premium user {user_id}")
        return True
