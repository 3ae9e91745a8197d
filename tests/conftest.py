import random
from typing import Callable, Optional

import pytest
import pytest_asyncio
from solders.keypair import Keypair

from phone_sim.seed_vault import SeedVault, SeedVaultConfig, WalletProfile
from phone_sim.transaction import PLACEHOLDER_BLOCKHASH, Transaction, system_transfer

# BIP-39 reference vector; valid checksum.
TEST_MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
TEST_PASSWORD = "pw1234"


class FixedRandom(random.Random):
    """Random source whose ``random()`` always returns the same value."""

    def __init__(self, value: float):
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


@pytest.fixture
def fixed_rng() -> Callable[[float], random.Random]:
    return FixedRandom


@pytest.fixture
def mnemonic() -> str:
    return TEST_MNEMONIC


@pytest.fixture
def recipient() -> str:
    return str(Keypair().pubkey())


@pytest.fixture
def make_transfer(recipient) -> Callable[..., Transaction]:
    def _make(fee_payer: str, lamports: int = 1_000_000, to: Optional[str] = None, blockhash: Optional[str] = PLACEHOLDER_BLOCKHASH) -> Transaction:
        tx = Transaction(fee_payer=fee_payer, recent_blockhash=blockhash)
        return tx.add(system_transfer(fee_payer, to or recipient, lamports))

    return _make


@pytest.fixture
def vault_config() -> SeedVaultConfig:
    return SeedVaultConfig(auto_lock=True, lock_timeout=60, confirmation_delay=0)


@pytest_asyncio.fixture
async def vault(vault_config):
    """Initialized and unlocked vault on memory storage."""
    seed_vault = SeedVault(vault_config, use_memory_storage=True)
    await seed_vault.initialize()
    await seed_vault.unlock(TEST_PASSWORD)
    yield seed_vault
    await seed_vault.close()


@pytest_asyncio.fixture
async def wallet(vault, mnemonic):
    return await vault.generate_wallet(
        WalletProfile(name="primary", mnemonic=mnemonic, derivation_path="m/44'/501'/0'/0'")
    )
