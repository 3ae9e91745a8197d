"""
Persistence backends for the Seed Vault.

Any backend implementing :class:`SeedVaultStorage` is interchangeable. Wallets
are stored one JSON document per id with ISO-8601 dates and the public key as
base58 text.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .exceptions import StorageError
from .types import SeedVaultConfig, Wallet

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path.home() / ".solana-phone-simulator" / "seed-vault"


def _sort_most_recent_first(wallets: List[Wallet]) -> List[Wallet]:
    return sorted(wallets, key=lambda w: w.last_used, reverse=True)


class SeedVaultStorage(ABC):
    """Storage contract consumed by the vault."""

    @abstractmethod
    async def initialize(self, config: Optional[SeedVaultConfig] = None) -> None: ...

    @abstractmethod
    async def save_wallet(self, wallet: Wallet) -> None: ...

    @abstractmethod
    async def load_wallet(self, wallet_id: str) -> Optional[Wallet]: ...

    @abstractmethod
    async def load_all_wallets(self) -> List[Wallet]:
        """Return every wallet, most recently used first."""

    @abstractmethod
    async def delete_wallet(self, wallet_id: str) -> None: ...

    @abstractmethod
    async def save_config(self, config: SeedVaultConfig) -> None: ...

    @abstractmethod
    async def load_config(self) -> Optional[SeedVaultConfig]: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def exists(self) -> bool: ...

    @abstractmethod
    async def create_lock(self) -> None: ...

    @abstractmethod
    async def remove_lock(self) -> None: ...

    @abstractmethod
    async def is_locked(self) -> bool: ...

    async def get_stats(self) -> Dict[str, Any]:
        wallets = await self.load_all_wallets()
        size = sum(len(w.model_dump_json()) for w in wallets)
        last_modified = max((w.last_used for w in wallets), default=datetime.fromtimestamp(0, timezone.utc))
        return {"wallet_count": len(wallets), "storage_size": size, "last_modified": last_modified}

    async def backup(self, backup_path: str | Path) -> None:
        """Write every wallet and the config into one JSON snapshot."""
        path = Path(backup_path)
        try:
            wallets = await self.load_all_wallets()
            config = await self.load_config()
            snapshot = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "wallets": [w.model_dump(mode="json") for w in wallets],
                "config": config.model_dump(mode="json") if config else None,
            }
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(snapshot, indent=2), encoding="utf-8")
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to create backup: {exc}", {"path": str(path)}) from exc
        logger.info("Backed up %d wallet(s) to %s", len(wallets), path)

    async def restore(self, backup_path: str | Path) -> None:
        """Replace the current contents with a snapshot written by :meth:`backup`."""
        path = Path(backup_path)
        if not path.exists():
            raise StorageError("Failed to restore from backup: backup file not found", {"path": str(path)})
        try:
            snapshot = json.loads(path.read_text(encoding="utf-8"))
            wallets = [Wallet.model_validate(raw) for raw in snapshot.get("wallets") or []]
            config = snapshot.get("config")
        except (ValueError, ValidationError) as exc:
            raise StorageError(f"Failed to restore from backup: {exc}", {"path": str(path)}) from exc

        await self.clear()
        if config:
            await self.save_config(SeedVaultConfig.model_validate(config))
        for wallet in wallets:
            await self.save_wallet(wallet)
        logger.info("Restored %d wallet(s) from %s", len(wallets), path)


class FileSystemStorage(SeedVaultStorage):
    """Directory-backed storage: ``wallets/<id>.json``, ``config.json`` and a ``.lock`` marker."""

    def __init__(self, storage_location: Optional[str | Path] = None):
        self.storage_dir = Path(storage_location).expanduser() if storage_location else DEFAULT_STORAGE_DIR
        self.wallets_dir = self.storage_dir / "wallets"
        self.config_file = self.storage_dir / "config.json"
        self.lock_file = self.storage_dir / ".lock"

    def _wallet_file(self, wallet_id: str) -> Path:
        return self.wallets_dir / f"{wallet_id}.json"

    async def initialize(self, config: Optional[SeedVaultConfig] = None) -> None:
        try:
            self.wallets_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to initialize storage: {exc}", {"path": str(self.storage_dir)}) from exc
        if config is not None:
            await self.save_config(config)

    async def save_wallet(self, wallet: Wallet) -> None:
        try:
            self._wallet_file(wallet.id).write_text(wallet.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to save wallet {wallet.id}: {exc}", {"wallet_id": wallet.id}) from exc

    async def load_wallet(self, wallet_id: str) -> Optional[Wallet]:
        path = self._wallet_file(wallet_id)
        if not path.exists():
            return None
        try:
            return Wallet.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise StorageError(f"Failed to load wallet {wallet_id}: {exc}", {"wallet_id": wallet_id}) from exc

    async def load_all_wallets(self) -> List[Wallet]:
        if not self.wallets_dir.exists():
            return []
        wallets = []
        for path in self.wallets_dir.glob("*.json"):
            wallet = await self.load_wallet(path.stem)
            if wallet is not None:
                wallets.append(wallet)
        return _sort_most_recent_first(wallets)

    async def delete_wallet(self, wallet_id: str) -> None:
        try:
            self._wallet_file(wallet_id).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete wallet {wallet_id}: {exc}", {"wallet_id": wallet_id}) from exc

    async def save_config(self, config: SeedVaultConfig) -> None:
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self.config_file.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to save config: {exc}") from exc

    async def load_config(self) -> Optional[SeedVaultConfig]:
        if not self.config_file.exists():
            return None
        try:
            return SeedVaultConfig.model_validate_json(self.config_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise StorageError(f"Failed to load config: {exc}") from exc

    async def clear(self) -> None:
        try:
            if self.wallets_dir.exists():
                for path in self.wallets_dir.glob("*.json"):
                    path.unlink()
            self.config_file.unlink(missing_ok=True)
            self.lock_file.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to clear storage: {exc}") from exc

    async def exists(self) -> bool:
        return self.storage_dir.exists()

    async def create_lock(self) -> None:
        lock_data = {"lockedAt": datetime.now(timezone.utc).isoformat(), "pid": os.getpid()}
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            self.lock_file.write_text(json.dumps(lock_data, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to create lock: {exc}") from exc

    async def remove_lock(self) -> None:
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to remove lock: {exc}") from exc

    async def is_locked(self) -> bool:
        return self.lock_file.exists()

    async def get_stats(self) -> Dict[str, Any]:
        files = list(self.wallets_dir.glob("*.json")) if self.wallets_dir.exists() else []
        wallet_count = len(files)
        if self.config_file.exists():
            files.append(self.config_file)
        try:
            stats = [p.stat() for p in files]
        except OSError as exc:
            raise StorageError(f"Failed to get storage stats: {exc}") from exc
        last_modified = max((s.st_mtime for s in stats), default=0)
        return {
            "wallet_count": wallet_count,
            "storage_size": sum(s.st_size for s in stats),
            "last_modified": datetime.fromtimestamp(last_modified, timezone.utc),
        }


class MemoryStorage(SeedVaultStorage):
    """Process-local storage for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._wallets: Dict[str, Wallet] = {}
        self._config: Optional[SeedVaultConfig] = None
        self._locked = False

    async def initialize(self, config: Optional[SeedVaultConfig] = None) -> None:
        if config is not None:
            self._config = config.model_copy()

    async def save_wallet(self, wallet: Wallet) -> None:
        self._wallets[wallet.id] = wallet.model_copy(deep=True)

    async def load_wallet(self, wallet_id: str) -> Optional[Wallet]:
        wallet = self._wallets.get(wallet_id)
        return wallet.model_copy(deep=True) if wallet else None

    async def load_all_wallets(self) -> List[Wallet]:
        return _sort_most_recent_first([w.model_copy(deep=True) for w in self._wallets.values()])

    async def delete_wallet(self, wallet_id: str) -> None:
        self._wallets.pop(wallet_id, None)

    async def save_config(self, config: SeedVaultConfig) -> None:
        self._config = config.model_copy()

    async def load_config(self) -> Optional[SeedVaultConfig]:
        return self._config.model_copy() if self._config else None

    async def clear(self) -> None:
        self._wallets.clear()
        self._config = None
        self._locked = False

    async def exists(self) -> bool:
        return True

    async def create_lock(self) -> None:
        self._locked = True

    async def remove_lock(self) -> None:
        self._locked = False

    async def is_locked(self) -> bool:
        return self._locked
