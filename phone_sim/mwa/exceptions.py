from enum import Enum
from typing import Any, Dict, Optional


class MWAErrorCode(str, Enum):
    """Stable error kinds raised by the wallet-adapter protocol layer."""
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_NOT_AUTHORIZED = "SESSION_NOT_AUTHORIZED"
    NO_WALLETS_AVAILABLE = "NO_WALLETS_AVAILABLE"
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
    TRANSACTION_VALIDATION_FAILED = "TRANSACTION_VALIDATION_FAILED"
    TRANSACTION_REJECTED = "TRANSACTION_REJECTED"
    INVALID_REQUEST = "INVALID_REQUEST"
    TRACKER_ENTRY_NOT_FOUND = "TRACKER_ENTRY_NOT_FOUND"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"


class MWAError(Exception):
    """Base class for protocol errors; carries a stable code and free-form context."""

    code: MWAErrorCode = MWAErrorCode.INVALID_REQUEST

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class SessionNotFoundError(MWAError):
    code = MWAErrorCode.SESSION_NOT_FOUND


class SessionNotAuthorizedError(MWAError):
    code = MWAErrorCode.SESSION_NOT_AUTHORIZED


class NoWalletsAvailableError(MWAError):
    code = MWAErrorCode.NO_WALLETS_AVAILABLE


class RequestNotFoundError(MWAError):
    code = MWAErrorCode.REQUEST_NOT_FOUND


class TransactionValidationFailedError(MWAError):
    code = MWAErrorCode.TRANSACTION_VALIDATION_FAILED


class TransactionRejectedError(MWAError):
    code = MWAErrorCode.TRANSACTION_REJECTED


class InvalidRequestError(MWAError):
    code = MWAErrorCode.INVALID_REQUEST


class TrackerEntryNotFoundError(MWAError):
    code = MWAErrorCode.TRACKER_ENTRY_NOT_FOUND


class InvalidStatusTransitionError(MWAError):
    code = MWAErrorCode.INVALID_STATUS_TRANSITION
