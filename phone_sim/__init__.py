"""Solana phone simulator: a local Seed Vault plus a Mobile Wallet Adapter service."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version as _dist_version
from pathlib import Path

_DIST_NAME = "solana-phone-simulator"


def _source_tree_version() -> str | None:
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    try:
        with pyproject.open("rb") as f:
            declared = tomllib.load(f).get("project", {}).get("version")
    except (OSError, tomllib.TOMLDecodeError):
        return None
    return declared.strip() if isinstance(declared, str) and declared.strip() else None


def _package_version() -> str:
    """Installed metadata first, then a source checkout's pyproject, then 0.0.0."""
    try:
        return _dist_version(_DIST_NAME)
    except PackageNotFoundError:
        return _source_tree_version() or "0.0.0"


__version__: str = _package_version()

from phone_sim.mwa import MWAService, TransactionApprovalSimulator, TransactionTracker  # noqa: E402
from phone_sim.seed_vault import SeedVault, SeedVaultConfig, WalletProfile  # noqa: E402
from phone_sim.transaction import Transaction, system_transfer  # noqa: E402

__all__ = [
    "__version__",
    "SeedVault",
    "SeedVaultConfig",
    "WalletProfile",
    "MWAService",
    "TransactionApprovalSimulator",
    "TransactionTracker",
    "Transaction",
    "system_transfer",
]
