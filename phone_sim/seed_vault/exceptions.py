from enum import Enum
from typing import Any, Dict, Optional


class SeedVaultErrorCode(str, Enum):
    """Stable error kinds raised by the Seed Vault and its crypto engine."""
    VAULT_LOCKED = "VAULT_LOCKED"
    INVALID_MNEMONIC = "INVALID_MNEMONIC"
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    DUPLICATE_WALLET = "DUPLICATE_WALLET"
    INVALID_DERIVATION_PATH = "INVALID_DERIVATION_PATH"
    ENCRYPTION_FAILED = "ENCRYPTION_FAILED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    INVALID_TRANSACTION = "INVALID_TRANSACTION"
    SIGNING_FAILED = "SIGNING_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVALID_PASSWORD = "INVALID_PASSWORD"


class SeedVaultError(Exception):
    """Base class for vault errors; carries a stable code and free-form context."""

    code: SeedVaultErrorCode = SeedVaultErrorCode.SIGNING_FAILED

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class VaultLockedError(SeedVaultError):
    code = SeedVaultErrorCode.VAULT_LOCKED


class InvalidMnemonicError(SeedVaultError):
    code = SeedVaultErrorCode.INVALID_MNEMONIC


class WalletNotFoundError(SeedVaultError):
    code = SeedVaultErrorCode.WALLET_NOT_FOUND


class DuplicateWalletError(SeedVaultError):
    code = SeedVaultErrorCode.DUPLICATE_WALLET


class InvalidDerivationPathError(SeedVaultError):
    code = SeedVaultErrorCode.INVALID_DERIVATION_PATH


class EncryptionFailedError(SeedVaultError):
    code = SeedVaultErrorCode.ENCRYPTION_FAILED


class DecryptionFailedError(SeedVaultError):
    code = SeedVaultErrorCode.DECRYPTION_FAILED


class InvalidTransactionError(SeedVaultError):
    code = SeedVaultErrorCode.INVALID_TRANSACTION


class SigningFailedError(SeedVaultError):
    code = SeedVaultErrorCode.SIGNING_FAILED


class StorageError(SeedVaultError):
    code = SeedVaultErrorCode.STORAGE_ERROR


class InvalidPasswordError(SeedVaultError):
    code = SeedVaultErrorCode.INVALID_PASSWORD
