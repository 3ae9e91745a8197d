"""Mobile Wallet Adapter simulation: sessions, validation, approval, tracking and signing."""

from .approval import ApprovalConfig, ApprovalRequest, ApprovalResult, TransactionApprovalSimulator
from .exceptions import (
    InvalidRequestError,
    InvalidStatusTransitionError,
    MWAError,
    MWAErrorCode,
    NoWalletsAvailableError,
    RequestNotFoundError,
    SessionNotAuthorizedError,
    SessionNotFoundError,
    TrackerEntryNotFoundError,
    TransactionRejectedError,
    TransactionValidationFailedError,
)
from .models import AppIdentity, AuthorizeRequest, AuthorizeResult, ConnectionState, MWASession, SignResult
from .service import MWAService
from .tracker import TransactionEvent, TransactionLogEntry, TransactionStats, TransactionStatus, TransactionTracker
from .validator import (
    TransactionMetadata,
    TransactionType,
    ValidationResult,
    format_transaction_for_display,
    requires_user_approval,
    validate_transaction,
)

__all__ = [
    "MWAService",
    "MWASession",
    "ConnectionState",
    "AppIdentity",
    "AuthorizeRequest",
    "AuthorizeResult",
    "SignResult",
    "TransactionApprovalSimulator",
    "ApprovalConfig",
    "ApprovalRequest",
    "ApprovalResult",
    "TransactionTracker",
    "TransactionStatus",
    "TransactionEvent",
    "TransactionLogEntry",
    "TransactionStats",
    "TransactionMetadata",
    "TransactionType",
    "ValidationResult",
    "validate_transaction",
    "requires_user_approval",
    "format_transaction_for_display",
    "MWAError",
    "MWAErrorCode",
    "SessionNotFoundError",
    "SessionNotAuthorizedError",
    "NoWalletsAvailableError",
    "RequestNotFoundError",
    "TransactionValidationFailedError",
    "TransactionRejectedError",
    "InvalidRequestError",
    "TrackerEntryNotFoundError",
    "InvalidStatusTransitionError",
]
