"""
Tool Execution Service - charges credits, then runs the tool

This service provides a single entry point for running AI tools.
All tool runs MUST go through this service so the debit happens first.

Usage:
    tool_service = ToolExecutionService(ledger_service)

    result = await tool_service.run_tool(
        user_id=user["uid"],
        tool_id="summarize",
        model="gpt-4",
        prompt="Summarize this..."
    )

IMPORTANT: prompts and model outputs are held in memory only and never persisted.
"""

import logging
import uuid
from typing import Callable, Awaitable, Optional

from .ledger_service import LedgerService
from .models import RunToolResponse

logger = logging.getLogger(__name__)

ModelRunner = Callable[[str, str, str], Awaitable[str]]


async def mock_model_runner(tool_id: str, model: str, prompt: str) -> str:
    """Stand-in for the third-party model call."""
    return f'This is a mocked response from {model} for your prompt: "{prompt[:50]}..."'


class ToolExecutionService:
    """Debit-then-run wrapper around the model runner."""

    def __init__(self, ledger_service: LedgerService, runner: Optional[ModelRunner] = None):
        self.ledger_service = ledger_service
        self.runner = runner or mock_model_runner

    async def run_tool(self, user_id: str, tool_id: str, model: str, prompt: str) -> RunToolResponse:
        """
        Charge the model's cost, then call the model.

        Raises whatever the debit raises (InsufficientCredits, AccountNotFound, ...)
        before the model is ever called.
        """
        cost = self.ledger_service.cost_for_model(model)
        request_id = str(uuid.uuid4())

        debit = await self.ledger_service.debit(
            user_id, cost, context=model, request_id=request_id
        )

        logger.info(f"Calling model {model} for user {user_id} (tool={tool_id}, request={request_id})")
        response = await self.runner(tool_id, model, prompt)

        return RunToolResponse(
            result=response,
            credits_charged=debit.charged,
            remaining_credits=debit.remaining_credits
        )
