"""
Simulated hardware Seed Vault.

The vault owns every wallet record and the lock state. While unlocked it keeps
the session password in a :class:`SecretStore`; wallet secrets are decrypted
on demand and never cached. Every call made while unlocked pushes the auto-lock
deadline back by ``lock_timeout`` seconds.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import base58
from solders.keypair import Keypair

from phone_sim.events import EventEmitter
from phone_sim.scheduling import TimerRegistry
from phone_sim.transaction import PLACEHOLDER_BLOCKHASH, SignaturePair, Transaction

from . import crypto
from .exceptions import (
    DecryptionFailedError,
    DuplicateWalletError,
    InvalidDerivationPathError,
    InvalidMnemonicError,
    InvalidPasswordError,
    InvalidTransactionError,
    SeedVaultError,
    SigningFailedError,
    StorageError,
    VaultLockedError,
    WalletNotFoundError,
)
from .secret_store import SecretStore
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
    utcnow,
)

logger = logging.getLogger(__name__)

ConfirmationHandler = Callable[[str, Dict[str, Any]], Awaitable[bool]]

MIN_PASSWORD_LENGTH = 4
_PASSWORD_KEY = "session_password"
_AUTO_LOCK_JOB = "auto-lock"


class SeedVault(EventEmitter):
    """
    Multi-wallet key custody with BIP-44 derivation and encryption at rest.

    Lifecycle: uninitialized -> initialized and locked -> unlocked <-> locked.
    ``reset`` clears storage and returns the vault to initialized and locked.

    Events: ``initialized``, ``locked``, ``unlocked``, ``walletGenerated``,
    ``walletImported``, ``walletDeleted``, ``transactionSigned``,
    ``messageSigned``, ``confirmationRequired``, ``reset``.
    """

    def __init__(
        self,
        config: Optional[SeedVaultConfig] = None,
        storage: Optional[SeedVaultStorage] = None,
        use_memory_storage: bool = False,
        confirmation_handler: Optional[ConfirmationHandler] = None,
    ):
        super().__init__()
        self.config = config or SeedVaultConfig()
        if storage is not None:
            self._storage = storage
        elif use_memory_storage:
            self._storage = MemoryStorage()
        else:
            self._storage = FileSystemStorage(self.config.storage_location)

        self._confirmation_handler = confirmation_handler or self._default_confirmation
        self._secrets = SecretStore()
        self._timers = TimerRegistry("seed-vault")
        self._mutex = asyncio.Lock()
        self._initialized = False
        self._locked = True
        self._last_activity: datetime = utcnow()

    @property
    def storage(self) -> SeedVaultStorage:
        return self._storage

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def last_activity(self) -> datetime:
        return self._last_activity

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def initialize(self, config: Optional[SeedVaultConfig] = None) -> None:
        """
        Prepare storage and enter the locked state.

        Safe to call more than once; later calls only merge ``config``. The
        session password is never persisted, so an initialized vault always
        starts locked and the persisted lock marker is created if missing.
        """
        if config is not None:
            self.config = self.config.model_copy(update=config.model_dump(exclude_unset=True))
        if self._initialized:
            return

        try:
            await self._storage.initialize(self.config)
            if not await self._storage.is_locked():
                await self._storage.create_lock()
        except StorageError as exc:
            raise StorageError(f"Failed to initialize Seed Vault: {exc.message}", exc.context) from exc

        self._initialized = True
        self._locked = True
        self._last_activity = utcnow()
        logger.info("Seed Vault initialized (auto_lock=%s, lock_timeout=%ss)", self.config.auto_lock, self.config.lock_timeout)
        self.emit("initialized", {"config": self.config.model_dump()})

    async def unlock(self, password: str) -> None:
        self._ensure_initialized()
        if not self._locked:
            return
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordError("Invalid password provided", {"min_length": MIN_PASSWORD_LENGTH})

        self._secrets.store(_PASSWORD_KEY, password)
        self._locked = False
        await self._storage.remove_lock()
        self._touch()
        logger.info("Seed Vault unlocked")
        self.emit("unlocked")

    async def lock(self) -> None:
        self._ensure_initialized()
        if self._locked:
            return

        self._locked = True
        self._secrets.wipe_all()
        self._timers.cancel(_AUTO_LOCK_JOB)
        await self._storage.create_lock()
        logger.info("Seed Vault locked")
        self.emit("locked")

    async def get_status(self) -> SeedVaultStatus:
        self._ensure_initialized()
        wallets = await self._storage.load_all_wallets()
        return SeedVaultStatus(
            is_locked=self._locked,
            wallet_count=len(wallets),
            last_activity=self._last_activity,
        )

    async def reset(self) -> None:
        """Delete every wallet and the stored config, then force the locked state."""
        self._ensure_initialized()
        async with self._mutex:
            await self._storage.clear()
            self._locked = True
            self._secrets.wipe_all()
            self._timers.cancel_all()
            await self._storage.initialize(self.config)
            await self._storage.create_lock()
        logger.info("Seed Vault reset")
        self.emit("reset")

    async def close(self) -> None:
        """Lock the vault and release its timers."""
        if self._initialized and not self._locked:
            await self.lock()
        self._timers.cancel_all()
        self._secrets.wipe_all()

    async def __aenter__(self) -> "SeedVault":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Wallets
    # ------------------------------------------------------------------ #
    async def generate_wallet(self, profile: WalletProfile) -> Wallet:
        """
        Create a wallet from ``profile.mnemonic`` or a freshly generated one.

        Raises:
            VaultLockedError: If the vault is locked.
            InvalidMnemonicError: If the supplied mnemonic does not validate.
        """
        self._ensure_unlocked()
        self._touch()

        async with self._mutex:
            try:
                mnemonic = profile.mnemonic or crypto.generate_mnemonic()
                if not crypto.validate_mnemonic(mnemonic):
                    raise InvalidMnemonicError("Generated mnemonic is invalid")
                keypair = crypto.derive_keypair_from_mnemonic(mnemonic, profile.derivation_path)
                wallet = self._build_wallet(crypto.generate_wallet_id(), profile, mnemonic, keypair)
                await self._storage.save_wallet(wallet)
            except SeedVaultError:
                raise
            except Exception as exc:
                raise SigningFailedError(f"Failed to generate wallet: {exc}") from exc

        logger.info("Generated wallet %s (%s)", wallet.id, wallet.public_key)
        self.emit("walletGenerated", {"wallet_id": wallet.id, "public_key": wallet.public_key})
        return wallet

    async def import_wallet(self, profile: WalletProfile, mnemonic: str) -> Wallet:
        """
        Import a wallet from an existing mnemonic.

        The wallet id is derived from the public key, so importing the same
        mnemonic and path again returns the stored wallet unchanged. A public
        key already held under a different id (a generated wallet) is rejected.

        Raises:
            VaultLockedError: If the vault is locked.
            InvalidMnemonicError: If ``mnemonic`` does not validate.
            DuplicateWalletError: If another wallet already owns the public key.
        """
        self._ensure_unlocked()
        self._touch()

        async with self._mutex:
            if not crypto.validate_mnemonic(mnemonic):
                raise InvalidMnemonicError("Invalid mnemonic phrase provided")
            try:
                keypair = crypto.derive_keypair_from_mnemonic(mnemonic, profile.derivation_path)
                public_key = str(keypair.pubkey())
                wallet_id = crypto.generate_deterministic_wallet_id(public_key)

                existing = next(
                    (w for w in await self._storage.load_all_wallets() if w.public_key == public_key),
                    None,
                )
                if existing is not None:
                    if existing.id == wallet_id:
                        logger.debug("Wallet %s already imported", wallet_id)
                        return existing
                    raise DuplicateWalletError(
                        "Wallet with this public key already exists",
                        {"wallet_id": existing.id, "public_key": public_key},
                    )

                wallet = self._build_wallet(wallet_id, profile, mnemonic, keypair)
                await self._storage.save_wallet(wallet)
            except SeedVaultError:
                raise
            except Exception as exc:
                raise SigningFailedError(f"Failed to import wallet: {exc}") from exc

        logger.info("Imported wallet %s (%s)", wallet.id, wallet.public_key)
        self.emit("walletImported", {"wallet_id": wallet.id, "public_key": wallet.public_key})
        return wallet

    async def export_wallet(self, wallet_id: str) -> WalletExport:
        self._ensure_unlocked()
        self._touch()

        wallet = await self._require_wallet(wallet_id)
        secret = self._decrypt_secret(wallet)
        return WalletExport(
            profile=wallet.profile,
            mnemonic=secret["mnemonic"],
            public_key=wallet.public_key,
            created_at=wallet.created_at,
        )

    async def list_wallets(self) -> List[Wallet]:
        """All wallets, most recently used first."""
        self._ensure_unlocked()
        self._touch()
        return await self._storage.load_all_wallets()

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        self._ensure_unlocked()
        self._touch()
        return await self._storage.load_wallet(wallet_id)

    async def get_public_key(self, wallet_id: str) -> str:
        self._ensure_unlocked()
        self._touch()
        wallet = await self._require_wallet(wallet_id)
        return wallet.public_key

    async def delete_wallet(self, wallet_id: str) -> None:
        self._ensure_unlocked()
        self._touch()

        async with self._mutex:
            await self._require_wallet(wallet_id)
            await self._storage.delete_wallet(wallet_id)

        logger.info("Deleted wallet %s", wallet_id)
        self.emit("walletDeleted", {"wallet_id": wallet_id})

    # ------------------------------------------------------------------ #
    # Derivation
    # ------------------------------------------------------------------ #
    async def derive_keypair(self, wallet_id: str, derivation_path: str) -> DerivedKey:
        """
        Re-derive a keypair for ``derivation_path`` from the wallet's mnemonic.

        Raises:
            InvalidDerivationPathError: If the path is not a valid Solana
                BIP-44 path.
            WalletNotFoundError: If ``wallet_id`` is unknown.
        """
        self._ensure_unlocked()
        self._touch()

        wallet = await self._require_wallet(wallet_id)
        if not crypto.validate_solana_derivation_path(derivation_path):
            raise InvalidDerivationPathError(
                f"Invalid Solana derivation path: {derivation_path}",
                {"derivation_path": derivation_path},
            )

        secret = self._decrypt_secret(wallet)
        keypair = crypto.derive_keypair_from_mnemonic(secret["mnemonic"], derivation_path)
        return DerivedKey(keypair=keypair, public_key=str(keypair.pubkey()), derivation_path=derivation_path)

    async def derive_keypair_from_components(
        self, wallet_id: str, components: DerivationPathComponents
    ) -> DerivedKey:
        return await self.derive_keypair(wallet_id, crypto.format_derivation_path(components))

    # ------------------------------------------------------------------ #
    # Signing
    # ------------------------------------------------------------------ #
    async def sign_transaction(
        self, wallet_id: str, transaction: Transaction, auto_approve: bool = False
    ) -> SigningResult:
        """
        Sign ``transaction`` with the wallet's own key.

        The signed copy gets the wallet as fee payer and a placeholder blockhash
        when either is missing; the original transaction is left untouched.

        Raises:
            InvalidTransactionError: If the transaction has no instructions or
                cannot be serialised.
            SigningFailedError: If confirmation is declined or the stored key
                does not match the re-derived one.
        """
        self._ensure_unlocked()
        self._touch()

        wallet = await self._require_wallet(wallet_id)
        if transaction is None or not transaction.instructions:
            raise InvalidTransactionError("Transaction has no instructions", {"wallet_id": wallet_id})

        if not auto_approve:
            approved = await self._confirmation_handler(
                "transaction", {"wallet_id": wallet_id, "instructions": len(transaction.instructions)}
            )
            if not approved:
                raise SigningFailedError("Transaction signing rejected by user", {"wallet_id": wallet_id})
            self._ensure_unlocked()
            wallet = await self._require_wallet(wallet_id)

        keypair = self._signing_keypair(wallet)
        signed = transaction.copy()
        signed.fee_payer = signed.fee_payer or wallet.public_key
        signed.recent_blockhash = signed.recent_blockhash or PLACEHOLDER_BLOCKHASH
        try:
            message = signed.serialize_message()
        except ValueError as exc:
            raise InvalidTransactionError(f"Failed to serialize transaction: {exc}", {"wallet_id": wallet_id}) from exc

        signature = bytes(keypair.sign_message(message))
        signed.signatures = [SignaturePair(public_key=wallet.public_key, signature=signature)]

        await self._mark_used(wallet_id)
        logger.debug("Signed transaction with wallet %s", wallet_id)
        self.emit("transactionSigned", {"wallet_id": wallet_id, "signature": signature.hex()})
        return SigningResult(signature=signature, signed_transaction=signed)

    async def sign_transactions(
        self, wallet_id: str, transactions: List[Transaction], auto_approve: bool = False
    ) -> List[SigningResult]:
        """Sign in order; the first failure propagates."""
        return [await self.sign_transaction(wallet_id, tx, auto_approve) for tx in transactions]

    async def sign_message(self, wallet_id: str, message: bytes, auto_approve: bool = False) -> MessageSigningResult:
        self._ensure_unlocked()
        self._touch()

        wallet = await self._require_wallet(wallet_id)
        if not auto_approve:
            approved = await self._confirmation_handler(
                "message", {"wallet_id": wallet_id, "message": bytes(message).hex()}
            )
            if not approved:
                raise SigningFailedError("Message signing rejected by user", {"wallet_id": wallet_id})
            self._ensure_unlocked()
            wallet = await self._require_wallet(wallet_id)

        keypair = self._signing_keypair(wallet)
        signature = bytes(keypair.sign_message(bytes(message)))

        await self._mark_used(wallet_id)
        self.emit("messageSigned", {"wallet_id": wallet_id, "signature": signature.hex()})
        return MessageSigningResult(signature=signature, message=bytes(message), public_key=wallet.public_key)

    async def sign_messages(
        self, wallet_id: str, messages: List[bytes], auto_approve: bool = False
    ) -> List[MessageSigningResult]:
        return [await self.sign_message(wallet_id, message, auto_approve) for message in messages]

    # ------------------------------------------------------------------ #
    # Crypto passthroughs
    # ------------------------------------------------------------------ #
    def validate_mnemonic(self, mnemonic: str) -> bool:
        return crypto.validate_mnemonic(mnemonic)

    def generate_mnemonic(self, strength: crypto.MnemonicStrength = 128) -> str:
        return crypto.generate_mnemonic(strength)

    def parse_derivation_path(self, path: str) -> DerivationPathComponents:
        return crypto.parse_derivation_path(path)

    def format_derivation_path(self, components: DerivationPathComponents) -> str:
        return crypto.format_derivation_path(components)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise VaultLockedError("Seed Vault is not initialized")

    def _ensure_unlocked(self) -> None:
        self._ensure_initialized()
        if self._locked:
            raise VaultLockedError("Seed Vault is locked")

    def _touch(self) -> None:
        self._last_activity = utcnow()
        if self.config.auto_lock and not self._locked:
            self._timers.schedule(_AUTO_LOCK_JOB, self.config.lock_timeout, self._auto_lock)

    async def _auto_lock(self) -> None:
        if not self._locked:
            logger.info("Auto-locking Seed Vault after %ss of inactivity", self.config.lock_timeout)
            await self.lock()

    async def _require_wallet(self, wallet_id: str) -> Wallet:
        wallet = await self._storage.load_wallet(wallet_id)
        if wallet is None:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found", {"wallet_id": wallet_id})
        return wallet

    async def _mark_used(self, wallet_id: str) -> None:
        async with self._mutex:
            # Skip wallets deleted while the signature was being produced.
            current = await self._storage.load_wallet(wallet_id)
            if current is None:
                return
            current.last_used = utcnow()
            await self._storage.save_wallet(current)

    def _build_wallet(self, wallet_id: str, profile: WalletProfile, mnemonic: str, keypair: Keypair) -> Wallet:
        payload = json.dumps(
            {"mnemonic": mnemonic, "secret_key": base58.b58encode(bytes(keypair)).decode("ascii")}
        )
        with self._secrets.get_decoded(_PASSWORD_KEY) as password:
            encrypted = crypto.encrypt(payload, password or "")
        now = utcnow()
        return Wallet(
            id=wallet_id,
            # The mnemonic only ever lives inside the encrypted payload.
            profile=profile.model_copy(update={"mnemonic": None}),
            public_key=str(keypair.pubkey()),
            encrypted_private_key=encrypted,
            created_at=now,
            last_used=now,
        )

    def _decrypt_secret(self, wallet: Wallet) -> Dict[str, str]:
        with self._secrets.get_decoded(_PASSWORD_KEY) as password:
            plaintext = crypto.decrypt(wallet.encrypted_private_key, password or "")
        try:
            secret = json.loads(plaintext)
        except ValueError as exc:
            raise DecryptionFailedError(
                f"Wallet {wallet.id} holds a malformed secret payload", {"wallet_id": wallet.id}
            ) from exc
        if not isinstance(secret, dict) or "mnemonic" not in secret:
            raise DecryptionFailedError(
                f"Wallet {wallet.id} holds a malformed secret payload", {"wallet_id": wallet.id}
            )
        return secret

    def _signing_keypair(self, wallet: Wallet) -> Keypair:
        secret = self._decrypt_secret(wallet)
        keypair = crypto.derive_keypair_from_mnemonic(secret["mnemonic"], wallet.profile.derivation_path)
        if str(keypair.pubkey()) != wallet.public_key:
            raise SigningFailedError(
                "Derived keypair does not match wallet public key", {"wallet_id": wallet.id}
            )
        return keypair

    async def _default_confirmation(self, kind: str, context: Dict[str, Any]) -> bool:
        self.emit("confirmationRequired", {"type": kind, "context": context})
        await asyncio.sleep(self.config.confirmation_delay)
        return True
