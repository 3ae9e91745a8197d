"""
Append-only lifecycle log for signing requests.

Entries only move forward through the lifecycle:

    pending -> approved | rejected
    approved -> signing
    signing -> signed | signing_failed
    signed -> submitted -> confirmed | failed
    any non-expired status -> expired

Every mutation appends an event; events of one entry carry strictly increasing
timestamps. Entries disappear only through the retention sweep, ``clear`` or
``import_logs``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, Field

from phone_sim.events import EventEmitter
from phone_sim.scheduling import TimerRegistry
from phone_sim.seed_vault.types import utcnow
from phone_sim.transaction import Transaction

from .exceptions import InvalidRequestError, InvalidStatusTransitionError, TrackerEntryNotFoundError
from .validator import TransactionMetadata

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_RETENTION_SECONDS = 7 * 24 * 60 * 60
DEFAULT_CLEANUP_INTERVAL = 60 * 60

_SWEEP_JOB = "retention-sweep"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SIGNING = "signing"
    SIGNED = "signed"
    SIGNING_FAILED = "signing_failed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


_TRANSITIONS: Dict[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.APPROVED, TransactionStatus.REJECTED}),
    TransactionStatus.APPROVED: frozenset({TransactionStatus.SIGNING}),
    TransactionStatus.SIGNING: frozenset({TransactionStatus.SIGNED, TransactionStatus.SIGNING_FAILED}),
    TransactionStatus.SIGNED: frozenset({TransactionStatus.SUBMITTED}),
    TransactionStatus.SUBMITTED: frozenset({TransactionStatus.CONFIRMED, TransactionStatus.FAILED}),
}

_PHASE_STAMPS = {
    TransactionStatus.APPROVED: "approved_at",
    TransactionStatus.SIGNED: "signed_at",
    TransactionStatus.SUBMITTED: "submitted_at",
    TransactionStatus.CONFIRMED: "confirmed_at",
}

EventType = Literal[
    "status_change", "approval_requested", "approval_result", "signing_started", "signing_completed", "error"
]


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    if target is TransactionStatus.EXPIRED:
        return current is not TransactionStatus.EXPIRED
    return target in _TRANSITIONS.get(current, frozenset())


@dataclass
class TransactionEvent:
    type: EventType
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None


@dataclass
class TransactionLogEntry:
    id: str
    wallet_id: str
    dapp_identifier: str
    transaction: Transaction
    metadata: TransactionMetadata
    status: TransactionStatus = TransactionStatus.PENDING
    signature: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    approved_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    events: List[TransactionEvent] = field(default_factory=list)


class TransactionStats(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_dapp: Dict[str, int] = Field(default_factory=dict)
    average_approval_time: float = Field(default=0.0, description="Seconds from creation to approval")
    average_signing_time: float = Field(default=0.0, description="Seconds from approval to signature")
    success_rate: float = 0.0


class TransactionTracker(EventEmitter):
    """
    In-memory transaction log with queries, statistics and retention.

    Events: ``transactionCreated``, ``statusUpdated``, ``signatureAdded``,
    ``errorAdded``, ``eventAdded``, ``cleanup``, ``cleared``, ``imported``.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
    ):
        super().__init__()
        self.max_entries = max_entries
        self.retention_seconds = retention_seconds
        self.cleanup_interval = cleanup_interval
        self._entries: Dict[str, TransactionLogEntry] = {}
        self._timers = TimerRegistry("tracker")

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def create_transaction(
        self,
        transaction_id: str,
        wallet_id: str,
        dapp_identifier: str,
        transaction: Transaction,
        metadata: TransactionMetadata,
    ) -> TransactionLogEntry:
        if transaction_id in self._entries:
            raise InvalidRequestError(
                f"Transaction {transaction_id} already exists", {"transaction_id": transaction_id}
            )
        now = utcnow()
        entry = TransactionLogEntry(
            id=transaction_id,
            wallet_id=wallet_id,
            dapp_identifier=dapp_identifier,
            transaction=transaction,
            metadata=metadata,
            created_at=now,
            updated_at=now,
            events=[
                TransactionEvent(
                    type="status_change",
                    timestamp=now,
                    data={"status": TransactionStatus.PENDING.value},
                    message="Transaction created",
                )
            ],
        )
        self._entries[transaction_id] = entry
        logger.debug("Tracking transaction %s for %s", transaction_id, dapp_identifier)
        self.emit("transactionCreated", entry)
        return entry

    def update_status(
        self, transaction_id: str, status: TransactionStatus | str, data: Optional[Dict[str, Any]] = None
    ) -> TransactionLogEntry:
        """
        Move an entry to ``status``.

        Raises:
            TrackerEntryNotFoundError: If ``transaction_id`` is unknown.
            InvalidStatusTransitionError: If the move is not a legal forward
                transition.
        """
        entry = self._require(transaction_id)
        status = TransactionStatus(status)
        previous = entry.status
        if not can_transition(previous, status):
            raise InvalidStatusTransitionError(
                f"Cannot move transaction {transaction_id} from {previous.value} to {status.value}",
                {"transaction_id": transaction_id, "from": previous.value, "to": status.value},
            )

        now = self._next_timestamp(entry)
        entry.status = status
        entry.updated_at = now
        if status in _PHASE_STAMPS:
            setattr(entry, _PHASE_STAMPS[status], now)

        entry.events.append(
            TransactionEvent(
                type="status_change",
                timestamp=now,
                data={"previous_status": previous.value, "new_status": status.value, **(data or {})},
                message=f"Status changed from {previous.value} to {status.value}",
            )
        )
        self.emit("statusUpdated", {"entry": entry, "previous_status": previous, "new_status": status})
        return entry

    def add_signature(self, transaction_id: str, signature: str) -> TransactionLogEntry:
        entry = self._require(transaction_id)
        now = self._next_timestamp(entry)
        entry.signature = signature
        entry.updated_at = now
        entry.events.append(
            TransactionEvent(
                type="signing_completed",
                timestamp=now,
                data={"signature": signature},
                message="Transaction signed successfully",
            )
        )
        self.emit("signatureAdded", {"entry": entry, "signature": signature})
        return entry

    def add_error(self, transaction_id: str, error: str) -> TransactionLogEntry:
        entry = self._require(transaction_id)
        now = self._next_timestamp(entry)
        entry.error = error
        entry.updated_at = now
        entry.events.append(TransactionEvent(type="error", timestamp=now, data={"error": error}, message=error))
        self.emit("errorAdded", {"entry": entry, "error": error})
        return entry

    def add_event(
        self,
        transaction_id: str,
        event_type: EventType,
        data: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> TransactionEvent:
        entry = self._require(transaction_id)
        now = self._next_timestamp(entry)
        event = TransactionEvent(type=event_type, timestamp=now, data=dict(data or {}), message=message)
        entry.events.append(event)
        entry.updated_at = now
        self.emit("eventAdded", {"entry": entry, "event": event})
        return event

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #
    def get_transaction(self, transaction_id: str) -> Optional[TransactionLogEntry]:
        return self._entries.get(transaction_id)

    def query_transactions(
        self,
        wallet_id: Optional[str] = None,
        dapp_identifier: Optional[str] = None,
        status: Optional[TransactionStatus | str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TransactionLogEntry]:
        """Filter entries and return them newest first."""
        wanted_status = TransactionStatus(status) if status is not None else None
        results = [
            entry
            for entry in reversed(list(self._entries.values()))
            if (wallet_id is None or entry.wallet_id == wallet_id)
            and (dapp_identifier is None or entry.dapp_identifier == dapp_identifier)
            and (wanted_status is None or entry.status is wanted_status)
            and (from_date is None or entry.created_at >= from_date)
            and (to_date is None or entry.created_at <= to_date)
        ]
        # Stable sort: entries created in the same instant stay newest-inserted first.
        results.sort(key=lambda entry: entry.created_at, reverse=True)
        if offset:
            results = results[offset:]
        if limit is not None:
            results = results[:limit]
        return results

    def get_recent_transactions(self, limit: int = 50) -> List[TransactionLogEntry]:
        return self.query_transactions(limit=limit)

    def get_wallet_transactions(self, wallet_id: str, limit: Optional[int] = None) -> List[TransactionLogEntry]:
        return self.query_transactions(wallet_id=wallet_id, limit=limit)

    def get_dapp_transactions(self, dapp_identifier: str, limit: Optional[int] = None) -> List[TransactionLogEntry]:
        return self.query_transactions(dapp_identifier=dapp_identifier, limit=limit)

    def get_pending_transactions(self) -> List[TransactionLogEntry]:
        return self.query_transactions(status=TransactionStatus.PENDING)

    def get_statistics(self) -> TransactionStats:
        entries = list(self._entries.values())
        stats = TransactionStats(total=len(entries), by_status={s.value: 0 for s in TransactionStatus})

        approval_times: List[float] = []
        signing_times: List[float] = []
        successes = 0
        for entry in entries:
            stats.by_status[entry.status.value] += 1
            type_key = entry.metadata.type.value
            stats.by_type[type_key] = stats.by_type.get(type_key, 0) + 1
            stats.by_dapp[entry.dapp_identifier] = stats.by_dapp.get(entry.dapp_identifier, 0) + 1

            if entry.approved_at:
                approval_times.append((entry.approved_at - entry.created_at).total_seconds())
                if entry.signed_at:
                    signing_times.append((entry.signed_at - entry.approved_at).total_seconds())
            if entry.status in (TransactionStatus.SIGNED, TransactionStatus.CONFIRMED):
                successes += 1

        if approval_times:
            stats.average_approval_time = sum(approval_times) / len(approval_times)
        if signing_times:
            stats.average_signing_time = sum(signing_times) / len(signing_times)
        if entries:
            stats.success_rate = successes / len(entries)
        return stats

    # ------------------------------------------------------------------ #
    # Retention
    # ------------------------------------------------------------------ #
    def cleanup(self) -> int:
        """Drop entries past the retention age, then the oldest beyond ``max_entries``."""
        cutoff = utcnow() - timedelta(seconds=self.retention_seconds)
        expired = [tx_id for tx_id, entry in self._entries.items() if entry.created_at < cutoff]
        for tx_id in expired:
            del self._entries[tx_id]

        surplus = len(self._entries) - self.max_entries
        trimmed: List[str] = []
        if surplus > 0:
            oldest = sorted(self._entries.values(), key=lambda entry: entry.created_at)[:surplus]
            trimmed = [entry.id for entry in oldest]
            for tx_id in trimmed:
                del self._entries[tx_id]

        removed = len(expired) + len(trimmed)
        if removed:
            logger.info("Tracker cleanup removed %d entries (%d expired, %d over cap)", removed, len(expired), len(trimmed))
            self.emit("cleanup", {"deleted_count": removed, "expired": len(expired), "trimmed": len(trimmed)})
        return removed

    def start(self) -> None:
        """Start the periodic retention sweep on the running loop."""
        self._timers.schedule(_SWEEP_JOB, self.cleanup_interval, self._sweep)

    def _sweep(self) -> None:
        try:
            self.cleanup()
        finally:
            self._timers.schedule(_SWEEP_JOB, self.cleanup_interval, self._sweep)

    def close(self) -> None:
        self._timers.cancel_all()

    def clear(self) -> None:
        self._entries.clear()
        self.emit("cleared")

    def export_logs(self) -> List[TransactionLogEntry]:
        return [copy.deepcopy(entry) for entry in self._entries.values()]

    def import_logs(self, logs: List[TransactionLogEntry]) -> None:
        """Replace the log with ``logs``, oldest first."""
        self._entries = {entry.id: copy.deepcopy(entry) for entry in sorted(logs, key=lambda e: e.created_at)}
        self.emit("imported", {"count": len(self._entries)})

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _require(self, transaction_id: str) -> TransactionLogEntry:
        entry = self._entries.get(transaction_id)
        if entry is None:
            raise TrackerEntryNotFoundError(
                f"Transaction {transaction_id} not found", {"transaction_id": transaction_id}
            )
        return entry

    @staticmethod
    def _next_timestamp(entry: TransactionLogEntry) -> datetime:
        now = utcnow()
        if entry.events and now <= entry.events[-1].timestamp:
            now = entry.events[-1].timestamp + timedelta(microseconds=1)
        return now
