"""Session, authorization and signing-result models for the wallet-adapter service."""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from phone_sim.seed_vault.types import utcnow
from phone_sim.transaction import Transaction

WALLET_URI_BASE = "solana-phone-simulator://"

_BASE36 = string.ascii_lowercase + string.digits


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_session_id() -> str:
    return f"mwa_{int(time.time() * 1000)}_{_random_suffix()}"


def generate_transaction_id(index: int = 0) -> str:
    """Id shared by a tracker entry and its approval request."""
    return f"tx_{int(time.time() * 1000)}_{index}_{_random_suffix()}"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class MWASession(BaseModel):
    """A dApp connection; authorized once bound to a vault wallet."""

    session_id: str
    dapp_identifier: str
    authorized_public_key: Optional[str] = None
    connection_state: ConnectionState = ConnectionState.CONNECTED
    permissions: List[str] = Field(default_factory=list)
    authorized_at: Optional[datetime] = None
    last_activity: datetime = Field(default_factory=utcnow)

    @property
    def is_authorized(self) -> bool:
        return self.authorized_public_key is not None


class AppIdentity(BaseModel):
    name: Optional[str] = None
    uri: Optional[str] = None
    icon: Optional[str] = None


class AuthorizeRequest(BaseModel):
    cluster: Optional[str] = Field(default=None, description="Requested cluster, e.g. devnet")
    identity: Optional[AppIdentity] = None
    features: List[str] = Field(default_factory=list, description="Permissions granted to the session")


class AuthorizeResult(BaseModel):
    public_key: str
    account_label: Optional[str] = None
    wallet_uri_base: Optional[str] = WALLET_URI_BASE


@dataclass
class SignResult:
    """Outcome of one batch item: a signature or an error message, never both."""

    signed_transaction: Optional[Transaction] = None
    signature: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
