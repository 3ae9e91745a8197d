"""
``phone-sim`` command line front end.

Drives the vault and the wallet-adapter service through their public API and
renders the results; all state lives in the configured storage directory.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import os
import sys
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from phone_sim import __version__
from phone_sim.config import SimulatorConfigurationError, SimulatorSettings, available_templates, write_config_template
from phone_sim.mwa import MWAError
from phone_sim.seed_vault import SeedVault, SeedVaultError, WalletProfile
from phone_sim.seed_vault.crypto import validate_password_strength
from phone_sim.transaction import PLACEHOLDER_BLOCKHASH, Transaction, system_transfer
from phone_sim.utils.config_manager import ConfigManager

logger = logging.getLogger(__name__)

_PASSWORD_ENV = "PHONE_SIM_PASSWORD"
_DEMO_RECIPIENT = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def _read_password(args: argparse.Namespace) -> str:
    return args.password or os.environ.get(_PASSWORD_ENV) or getpass.getpass("Vault password: ")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


# --------------------------------------------------------------------------- #
# config
# --------------------------------------------------------------------------- #
def _config_init(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    path = write_config_template(args.template, args.config, force=args.force)
    print(f"Wrote '{args.template}' configuration to {path}")
    return 0


def _config_show(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    _print_json(settings.model_dump(mode="json"))
    return 0


# --------------------------------------------------------------------------- #
# vault
# --------------------------------------------------------------------------- #
async def _open_vault(args: argparse.Namespace, settings: SimulatorSettings, unlock: bool = True) -> SeedVault:
    vault = settings.build_vault()
    await vault.initialize()
    if unlock:
        password = _read_password(args)
        strength = validate_password_strength(password)
        if not strength["is_valid"]:
            for problem in strength["errors"]:
                logger.warning("Weak password: %s", problem)
        await vault.unlock(password)
    return vault


async def _vault_status(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    vault = await _open_vault(args, settings, unlock=False)
    try:
        status = await vault.get_status()
        stats = await vault.storage.get_stats()
    finally:
        await vault.close()
    _print_json({**status.model_dump(mode="json"), "storage": stats})
    return 0


async def _vault_generate(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    vault = await _open_vault(args, settings)
    try:
        profile = WalletProfile(name=args.name, derivation_path=args.derivation_path, network=args.network)
        wallet = await vault.generate_wallet(profile)
    finally:
        await vault.close()
    print(f"Generated wallet {wallet.id}: {wallet.public_key}")
    return 0


async def _vault_import(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    mnemonic = args.mnemonic or getpass.getpass("Mnemonic phrase: ").strip()
    vault = await _open_vault(args, settings)
    try:
        profile = WalletProfile(name=args.name, derivation_path=args.derivation_path, network=args.network)
        wallet = await vault.import_wallet(profile, mnemonic)
    finally:
        await vault.close()
    print(f"Imported wallet {wallet.id}: {wallet.public_key}")
    return 0


async def _vault_list(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    vault = await _open_vault(args, settings)
    try:
        wallets = await vault.list_wallets()
    finally:
        await vault.close()
    if not wallets:
        print("No wallets.")
    for wallet in wallets:
        print(f"{wallet.id}  {wallet.public_key}  {wallet.profile.name} ({wallet.profile.network})")
    return 0


async def _vault_export(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    vault = await _open_vault(args, settings)
    try:
        exported = await vault.export_wallet(args.wallet_id)
    finally:
        await vault.close()
    _print_json(exported.model_dump(mode="json"))
    return 0


async def _vault_delete(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    vault = await _open_vault(args, settings)
    try:
        await vault.delete_wallet(args.wallet_id)
    finally:
        await vault.close()
    print(f"Deleted wallet {args.wallet_id}")
    return 0


async def _vault_reset(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    if not args.yes:
        print("Refusing to reset without --yes.", file=sys.stderr)
        return 1
    vault = await _open_vault(args, settings, unlock=False)
    try:
        await vault.reset()
    finally:
        await vault.close()
    print("Seed Vault reset.")
    return 0


# --------------------------------------------------------------------------- #
# demo
# --------------------------------------------------------------------------- #
async def _demo(args: argparse.Namespace, settings: SimulatorSettings) -> int:
    """Connect, authorize and sign one transfer against a throwaway in-memory vault."""
    vault = settings.build_vault(use_memory_storage=True)
    await vault.initialize()
    await vault.unlock(args.password or os.environ.get(_PASSWORD_ENV) or "demo-password")
    wallet = await vault.generate_wallet(WalletProfile(name="demo"))

    service = settings.build_service(vault)
    async with service:
        session = await service.connect(args.dapp)
        authorized = await service.authorize(session, {"features": ["sign_transactions"]})
        tx = Transaction(fee_payer=authorized.public_key, recent_blockhash=PLACEHOLDER_BLOCKHASH)
        tx.add(system_transfer(authorized.public_key, _DEMO_RECIPIENT, args.lamports))

        [result] = await service.sign_transactions(session, [tx], auto_approve=not args.prompt)
        stats = service.tracker.get_statistics()
        await service.disconnect(session)
    await vault.close()

    print(f"Wallet:    {wallet.public_key}")
    if result.ok:
        print(f"Signature: {result.signature.hex()}")
    else:
        print(f"Error:     {result.error}")
    _print_json(stats.model_dump(mode="json"))
    return 0 if result.ok else 1


# --------------------------------------------------------------------------- #
# Parser
# --------------------------------------------------------------------------- #
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="phone-sim", description="Solana phone simulator: Seed Vault and wallet adapter")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="Path to the JSON config file")
    parser.add_argument("--password", help=f"Vault password (or set {_PASSWORD_ENV})")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Override developer.log_level")
    sub = parser.add_subparsers(dest="command", required=True)

    config = sub.add_parser("config", help="Manage the config file").add_subparsers(dest="action", required=True)
    init = config.add_parser("init", help="Write a config template")
    init.add_argument("--template", default="default", choices=available_templates())
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init.set_defaults(handler=_config_init)
    config.add_parser("show", help="Print the resolved settings").set_defaults(handler=_config_show)

    vault = sub.add_parser("vault", help="Seed Vault operations").add_subparsers(dest="action", required=True)
    vault.add_parser("status").set_defaults(handler=_vault_status)
    for name, handler in (("generate", _vault_generate), ("import", _vault_import)):
        cmd = vault.add_parser(name)
        cmd.add_argument("--name", required=True)
        cmd.add_argument("--derivation-path", default="m/44'/501'/0'/0'")
        cmd.add_argument("--network", default="devnet", choices=["mainnet", "devnet", "testnet", "localhost"])
        if name == "import":
            cmd.add_argument("--mnemonic", help="Mnemonic phrase (prompted when omitted)")
        cmd.set_defaults(handler=handler)
    vault.add_parser("list").set_defaults(handler=_vault_list)
    for name, handler in (("export", _vault_export), ("delete", _vault_delete)):
        cmd = vault.add_parser(name)
        cmd.add_argument("wallet_id")
        cmd.set_defaults(handler=handler)
    reset = vault.add_parser("reset", help="Delete every wallet")
    reset.add_argument("--yes", action="store_true")
    reset.set_defaults(handler=_vault_reset)

    demo = sub.add_parser("demo", help="Sign one transfer end to end")
    demo.add_argument("--dapp", default="demo.dapp")
    demo.add_argument("--lamports", type=int, default=1_000_000)
    demo.add_argument("--prompt", action="store_true", help="Go through the simulated approval prompt")
    demo.set_defaults(handler=_demo)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    handler: Callable[..., Any] = args.handler

    try:
        settings = SimulatorSettings.load(ConfigManager(args.config))
        configure_logging(args.log_level or settings.developer.log_level)
        result = handler(args, settings)
        if asyncio.iscoroutine(result):
            result = asyncio.run(result)
        return int(result)
    except (SeedVaultError, MWAError, SimulatorConfigurationError, ValidationError, FileExistsError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
