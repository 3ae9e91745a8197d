"""
Seed Vault data models.

Public keys are carried as canonical base58 text everywhere outside of the
crypto engine; timestamps are timezone-aware UTC datetimes.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from solders.keypair import Keypair

from phone_sim.transaction import Transaction

Network = Literal["mainnet", "devnet", "testnet", "localhost"]

VAULT_VERSION = "1.0.0"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WalletProfile(BaseModel):
    """Immutable description of a wallet to generate or import."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    mnemonic: Optional[str] = Field(default=None, description="Fixed mnemonic for deterministic fixtures")
    derivation_path: str = Field(default="m/44'/501'/0'/0'")
    network: Network = Field(default="devnet")


class Wallet(BaseModel):
    """A vault-owned wallet record; only the vault mutates ``last_used``."""

    id: str
    profile: WalletProfile
    public_key: str
    encrypted_private_key: str
    created_at: datetime = Field(default_factory=utcnow)
    last_used: datetime = Field(default_factory=utcnow)


@dataclass
class DerivedKey:
    keypair: Keypair
    public_key: str
    derivation_path: str


@dataclass
class SigningResult:
    signature: bytes
    signed_transaction: Transaction
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class MessageSigningResult:
    signature: bytes
    message: bytes
    public_key: str
    timestamp: datetime = field(default_factory=utcnow)


class WalletExport(BaseModel):
    profile: WalletProfile
    mnemonic: str
    public_key: str
    created_at: datetime


class SeedVaultConfig(BaseModel):
    """Runtime configuration for a vault instance."""

    storage_location: Optional[str] = Field(default=None)
    auto_lock: bool = Field(default=True)
    lock_timeout: float = Field(default=15 * 60, gt=0, description="Inactivity seconds before auto-lock")
    confirmation_delay: float = Field(default=0.1, ge=0, description="Simulated confirmation wait in seconds")


class SeedVaultStatus(BaseModel):
    is_locked: bool
    wallet_count: int
    last_activity: datetime
    version: str = VAULT_VERSION


class DerivationPathComponents(BaseModel):
    """The five BIP-44 levels of a derivation path."""
    model_config = ConfigDict(frozen=True)

    purpose: int = Field(default=44, ge=0)
    coin_type: int = Field(default=501, ge=0)
    account: int = Field(default=0, ge=0)
    change: int = Field(default=0, ge=0)
    address_index: int = Field(default=0, ge=0)
