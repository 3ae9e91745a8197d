from __future__ import annotations

import json
import logging
import os
import random
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from phone_sim.mwa.approval import ApprovalConfig, TransactionApprovalSimulator
from phone_sim.mwa.service import MWAService
from phone_sim.mwa.tracker import TransactionTracker
from phone_sim.seed_vault import SeedVault, SeedVaultConfig, WalletProfile
from phone_sim.utils.config_manager import DEFAULT_CONFIG_FILE, ConfigManager

logger = logging.getLogger(__name__)

LogLevel = Literal["debug", "info", "warning", "error"]

DEFAULT_STORAGE_LOCATION = "~/.solana-phone-simulator/seed-vault"

_SOLANA_PATH = re.compile(r"^m/44'/501'(/\d+')*$")
_TRUTHY = {"1", "true", "yes", "on"}


class SimulatorConfigurationError(Exception):
    """Raised when the simulator configuration is missing or invalid."""


class VaultSettings(BaseModel):
    storage_location: str = Field(default=DEFAULT_STORAGE_LOCATION)
    auto_lock: bool = Field(default=True)
    lock_timeout: float = Field(default=15 * 60, gt=0, description="Seconds")
    confirmation_delay: float = Field(default=0.1, ge=0, description="Seconds")

    def to_vault_config(self) -> SeedVaultConfig:
        return SeedVaultConfig(**self.model_dump())


class TrackerSettings(BaseModel):
    max_entries: int = Field(default=10_000, gt=0)
    retention_seconds: float = Field(default=7 * 24 * 60 * 60, gt=0)
    cleanup_interval: float = Field(default=60 * 60, gt=0)


class SessionSettings(BaseModel):
    session_timeout: float = Field(default=30 * 60, gt=0, description="Idle seconds before disconnect")


class DeveloperSettings(BaseModel):
    log_level: LogLevel = Field(default="info")
    debug_mode: bool = Field(default=False)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return "warning" if value == "warn" else value
        return value


class SimulatorSettings(BaseModel):
    """Resolved configuration for the vault, the approval simulator, the tracker and sessions."""

    vault: VaultSettings = Field(default_factory=VaultSettings)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    developer: DeveloperSettings = Field(default_factory=DeveloperSettings)
    wallets: List[WalletProfile] = Field(default_factory=list)

    @field_validator("wallets")
    @classmethod
    def _ensure_solana_paths(cls, value: List[WalletProfile]) -> List[WalletProfile]:
        for profile in value:
            if not _SOLANA_PATH.match(profile.derivation_path):
                raise SimulatorConfigurationError(
                    f"Wallet '{profile.name}' has an invalid derivation path: {profile.derivation_path}"
                )
        return value

    @classmethod
    def load(cls, config_manager: Optional[ConfigManager] = None) -> "SimulatorSettings":
        """Load settings from the JSON config file with environment (and .env) overrides."""
        load_dotenv()
        manager = config_manager or ConfigManager()

        vault = dict(manager.get("vault", {}) or {})
        approval = dict(manager.get("approval", {}) or {})
        developer = dict(manager.get("developer", {}) or {})

        vault["storage_location"] = os.getenv("PHONE_SIM_STORAGE_DIR", vault.get("storage_location", DEFAULT_STORAGE_LOCATION))
        lock_timeout = os.getenv("PHONE_SIM_LOCK_TIMEOUT")
        if lock_timeout:
            vault["lock_timeout"] = float(lock_timeout)

        auto_approve = os.getenv("PHONE_SIM_AUTO_APPROVE")
        if auto_approve is not None:
            approval["auto_approve_transfers"] = auto_approve.strip().lower() in _TRUTHY
        elif "auto_approve_transactions" in developer:
            approval.setdefault("auto_approve_transfers", bool(developer["auto_approve_transactions"]))
        developer.pop("auto_approve_transactions", None)

        developer["log_level"] = os.getenv("PHONE_SIM_LOG_LEVEL", developer.get("log_level", "info"))

        return cls(
            vault=VaultSettings(**vault),
            approval=ApprovalConfig(**approval),
            tracker=TrackerSettings(**(manager.get("tracker", {}) or {})),
            session=SessionSettings(**(manager.get("session", {}) or {})),
            developer=DeveloperSettings(**developer),
            wallets=[WalletProfile(**raw) for raw in manager.get("wallets", []) or []],
        )

    def build_vault(self, use_memory_storage: bool = False) -> SeedVault:
        return SeedVault(self.vault.to_vault_config(), use_memory_storage=use_memory_storage)

    def build_service(self, seed_vault: SeedVault, rng: Optional[random.Random] = None) -> MWAService:
        """Wire a service, approval simulator and tracker from these settings."""
        return MWAService(
            seed_vault,
            session_timeout=self.session.session_timeout,
            approval=TransactionApprovalSimulator(self.approval, rng=rng),
            tracker=TransactionTracker(
                max_entries=self.tracker.max_entries,
                retention_seconds=self.tracker.retention_seconds,
                cleanup_interval=self.tracker.cleanup_interval,
            ),
        )


CONFIG_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "default": {
        "vault": {"storage_location": DEFAULT_STORAGE_LOCATION, "auto_lock": True, "lock_timeout": 900},
        "approval": {"auto_approve_transfers": False, "auto_approve_limit": 100_000_000, "confirmation_delay": 1.0},
        "session": {"session_timeout": 1800},
        "developer": {"debug_mode": False, "log_level": "info"},
        "wallets": [{"name": "default", "derivation_path": "m/44'/501'/0'/0'", "network": "devnet"}],
    },
    "development": {
        "vault": {"storage_location": DEFAULT_STORAGE_LOCATION, "auto_lock": False, "lock_timeout": 3600},
        "approval": {"auto_approve_transfers": True, "auto_approve_limit": 1_000_000_000, "confirmation_delay": 0.2},
        "session": {"session_timeout": 3600},
        "developer": {"debug_mode": True, "log_level": "debug"},
        "wallets": [
            {"name": "dev-wallet-1", "derivation_path": "m/44'/501'/0'/0'", "network": "localhost"},
            {"name": "dev-wallet-2", "derivation_path": "m/44'/501'/1'/0'", "network": "localhost"},
        ],
    },
    "testing": {
        "vault": {"storage_location": "./.phone-sim-test/seed-vault", "auto_lock": True, "lock_timeout": 60},
        "approval": {"auto_approve_transfers": False, "confirmation_delay": 0.05},
        "tracker": {"max_entries": 1000, "retention_seconds": 3600},
        "session": {"session_timeout": 300},
        "developer": {"debug_mode": False, "log_level": "warning"},
        "wallets": [{"name": "test-wallet", "derivation_path": "m/44'/501'/0'/0'", "network": "testnet"}],
    },
}


def available_templates() -> List[str]:
    return list(CONFIG_TEMPLATES)


def write_config_template(
    name: str = "default", path: Optional[Union[str, Path]] = None, force: bool = False
) -> Path:
    """
    Write a named template as the JSON config file.

    Raises:
        SimulatorConfigurationError: If ``name`` is not a known template.
        FileExistsError: If the target exists and ``force`` is not set.
    """
    template = CONFIG_TEMPLATES.get(name)
    if template is None:
        raise SimulatorConfigurationError(
            f"Unknown configuration template: {name}. Available templates: {', '.join(CONFIG_TEMPLATES)}"
        )

    target = Path(path or DEFAULT_CONFIG_FILE)
    if target.exists() and not force:
        raise FileExistsError(f"Configuration file already exists: {target}")

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(template, indent=2), encoding="utf-8")
    logger.info("Wrote '%s' configuration template to %s", name, target)
    return target
