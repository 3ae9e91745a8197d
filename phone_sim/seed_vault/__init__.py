"""Seed Vault: multi-wallet key custody, derivation, encryption at rest and signing."""

from .exceptions import (
    DecryptionFailedError,
    DuplicateWalletError,
    EncryptionFailedError,
    InvalidDerivationPathError,
    InvalidMnemonicError,
    InvalidPasswordError,
    InvalidTransactionError,
    SeedVaultError,
    SeedVaultErrorCode,
    SigningFailedError,
    StorageError,
    VaultLockedError,
    WalletNotFoundError,
)
from .storage import FileSystemStorage, MemoryStorage, SeedVaultStorage
from .types import (
    DerivationPathComponents,
    DerivedKey,
    MessageSigningResult,
    SeedVaultConfig,
    SeedVaultStatus,
    SigningResult,
    Wallet,
    WalletExport,
    WalletProfile,
)
from .vault import SeedVault

__all__ = [
    "SeedVault",
    "SeedVaultStorage",
    "FileSystemStorage",
    "MemoryStorage",
    "SeedVaultConfig",
    "SeedVaultStatus",
    "WalletProfile",
    "Wallet",
    "WalletExport",
    "DerivedKey",
    "DerivationPathComponents",
    "SigningResult",
    "MessageSigningResult",
    "SeedVaultError",
    "SeedVaultErrorCode",
    "VaultLockedError",
    "InvalidMnemonicError",
    "WalletNotFoundError",
    "DuplicateWalletError",
    "InvalidDerivationPathError",
    "EncryptionFailedError",
    "DecryptionFailedError",
    "InvalidTransactionError",
    "SigningFailedError",
    "StorageError",
    "InvalidPasswordError",
]
