"""
Simulated on-device approval prompt.

A request resolves, in order: explicitly auto-approved; auto-approved as a
small transfer when enabled and not risky; otherwise displayed and decided by
``approve_request``/``reject_request`` or, once ``confirmation_delay`` has
passed, by a weighted random "user".
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from phone_sim.events import EventEmitter
from phone_sim.scheduling import TimerRegistry
from phone_sim.seed_vault.types import utcnow
from phone_sim.transaction import Transaction

from .exceptions import InvalidRequestError, RequestNotFoundError, TransactionValidationFailedError
from .models import generate_transaction_id
from .validator import (
    HIGH_VALUE_THRESHOLD,
    TransactionMetadata,
    TransactionType,
    format_transaction_for_display,
    requires_user_approval,
    validate_transaction,
)

logger = logging.getLogger(__name__)

RISKY_APPROVAL_RATE = 0.80
DEFAULT_APPROVAL_RATE = 0.95


class ApprovalConfig(BaseModel):
    auto_approve_transfers: bool = Field(default=False)
    auto_approve_limit: int = Field(default=100_000_000, ge=0, description="Lamports")
    show_detailed_info: bool = Field(default=True)
    confirmation_delay: float = Field(default=1.0, ge=0, description="Seconds before a simulated decision")
    high_value_threshold: int = Field(default=HIGH_VALUE_THRESHOLD, ge=0, description="Lamports")


@dataclass
class ApprovalRequest:
    id: str
    wallet_id: str
    dapp_identifier: str
    transaction: Transaction
    metadata: TransactionMetadata
    timestamp: datetime = field(default_factory=utcnow)
    auto_approve: bool = False


class ApprovalResult(BaseModel):
    approved: bool
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


@dataclass
class _Pending:
    request: ApprovalRequest
    future: asyncio.Future


class TransactionApprovalSimulator(EventEmitter):
    """
    Turns validated transactions into approve/reject decisions.

    Events: ``approvalRequested``, ``transactionAutoApproved``,
    ``transactionDisplayed``, ``transactionApproved``, ``transactionRejected``,
    ``approvalResult``, ``configUpdated``.

    Args:
        config: Approval policy.
        rng: Source for the simulated decision; pass a seeded
            ``random.Random`` for repeatable runs.
    """

    def __init__(self, config: Optional[ApprovalConfig] = None, rng: Optional[random.Random] = None):
        super().__init__()
        self.config = config or ApprovalConfig()
        self._rng = rng or random.Random()
        self._pending: Dict[str, _Pending] = {}
        self._timers = TimerRegistry("approval")

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #
    @staticmethod
    def generate_request_id(index: int = 0) -> str:
        return generate_transaction_id(index)

    @staticmethod
    def create_approval_request(
        wallet_id: str,
        dapp_identifier: str,
        transaction: Transaction,
        auto_approve: bool = False,
        request_id: Optional[str] = None,
    ) -> ApprovalRequest:
        """
        Build a request for a transaction that passes validation.

        Raises:
            TransactionValidationFailedError: If the transaction is invalid.
        """
        validation = validate_transaction(transaction)
        if not validation.is_valid:
            raise TransactionValidationFailedError(
                f"Invalid transaction: {', '.join(validation.errors)}", {"errors": validation.errors}
            )
        return ApprovalRequest(
            id=request_id or generate_transaction_id(),
            wallet_id=wallet_id,
            dapp_identifier=dapp_identifier,
            transaction=transaction,
            metadata=validation.metadata,
            auto_approve=auto_approve,
        )

    async def request_approval(self, request: ApprovalRequest) -> ApprovalResult:
        if request.id in self._pending:
            raise InvalidRequestError(f"Approval request {request.id} is already pending", {"request_id": request.id})

        future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = _Pending(request=request, future=future)
        self.emit("approvalRequested", request)

        try:
            if self._should_auto_approve(request):
                result = ApprovalResult(approved=True, reason="Auto-approved")
                self.emit("transactionAutoApproved", {"request": request, "result": result})
            else:
                self._timers.schedule(request.id, self.config.confirmation_delay, self._decide, request.id)
                self.emit("transactionDisplayed", {"request": request, "display_info": self.format_request(request)})
                result = await future
        finally:
            self._pending.pop(request.id, None)
            self._timers.cancel(request.id)

        logger.debug("Approval %s resolved: approved=%s (%s)", request.id, result.approved, result.reason)
        self.emit("approvalResult", {"request": request, "result": result})
        return result

    def get_pending_requests(self) -> List[ApprovalRequest]:
        return [pending.request for pending in self._pending.values()]

    def approve_request(self, request_id: str) -> ApprovalResult:
        return self._resolve(request_id, ApprovalResult(approved=True, reason="Manually approved"))

    def reject_request(self, request_id: str, reason: Optional[str] = None) -> ApprovalResult:
        return self._resolve(request_id, ApprovalResult(approved=False, reason=reason or "Manually rejected"))

    def _resolve(self, request_id: str, result: ApprovalResult) -> ApprovalResult:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            raise RequestNotFoundError(f"Request {request_id} not found", {"request_id": request_id})
        self._timers.cancel(request_id)
        pending.future.set_result(result)
        return result

    # ------------------------------------------------------------------ #
    # Policy
    # ------------------------------------------------------------------ #
    def _should_auto_approve(self, request: ApprovalRequest) -> bool:
        if request.auto_approve:
            return True
        # The transfer limit is checked before the risk gate, so a limit above
        # the high-value threshold auto-approves transfers in between.
        metadata = request.metadata
        return bool(
            self.config.auto_approve_transfers
            and metadata.type is TransactionType.TRANSFER
            and metadata.transfer_amount
            and metadata.transfer_amount <= self.config.auto_approve_limit
        )

    def _decide(self, request_id: str) -> None:
        pending = self._pending.get(request_id)
        if pending is None or pending.future.done():
            return

        approved = self._simulate_user_decision(pending.request)
        result = ApprovalResult(approved=approved, reason="User approved" if approved else "User rejected")
        self.emit(
            "transactionApproved" if approved else "transactionRejected",
            {"request": pending.request, "result": result},
        )
        pending.future.set_result(result)

    def _simulate_user_decision(self, request: ApprovalRequest) -> bool:
        risky = requires_user_approval(request.metadata, self.config.high_value_threshold)
        return self._rng.random() < (RISKY_APPROVAL_RATE if risky else DEFAULT_APPROVAL_RATE)

    # ------------------------------------------------------------------ #
    # Display and config
    # ------------------------------------------------------------------ #
    def format_request(self, request: ApprovalRequest) -> str:
        lines = [
            "=== TRANSACTION APPROVAL REQUEST ===",
            f"dApp: {request.dapp_identifier}",
            f"Wallet: {request.wallet_id}",
            "",
            format_transaction_for_display(request.metadata),
        ]
        if self.config.show_detailed_info:
            lines += [
                "",
                "=== DETAILED INFORMATION ===",
                f"Transaction ID: {request.id}",
                f"Timestamp: {request.timestamp.isoformat()}",
                f"Instructions: {request.metadata.instruction_count}",
                f"Accounts: {request.metadata.account_count}",
            ]
            if request.metadata.program_ids:
                lines.append("Programs:")
                lines.extend(f"  - {program_id}" for program_id in request.metadata.program_ids)
        lines += ["", "Do you approve this transaction? (y/N)"]
        return "\n".join(lines)

    def update_config(self, **changes: Any) -> ApprovalConfig:
        self.config = ApprovalConfig.model_validate({**self.config.model_dump(), **changes})
        self.emit("configUpdated", self.config)
        return self.config

    def close(self) -> None:
        """Reject whatever is still pending and release timers."""
        self._timers.cancel_all()
        for request_id, pending in list(self._pending.items()):
            if not pending.future.done():
                pending.future.set_result(ApprovalResult(approved=False, reason="Approval simulator closed"))
            self._pending.pop(request_id, None)
        self.remove_all_listeners()
