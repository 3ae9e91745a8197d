import json

import pytest

from phone_sim.config import (
    CONFIG_TEMPLATES,
    SimulatorConfigurationError,
    SimulatorSettings,
    available_templates,
    write_config_template,
)
from phone_sim.mwa import MWAService
from phone_sim.seed_vault import FileSystemStorage, MemoryStorage, SeedVault
from phone_sim.utils.config_manager import ConfigManager

ENV_VARS = (
    "PHONE_SIM_CONFIG",
    "PHONE_SIM_STORAGE_DIR",
    "PHONE_SIM_LOCK_TIMEOUT",
    "PHONE_SIM_AUTO_APPROVE",
    "PHONE_SIM_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def write_config(path, data):
    path.write_text(json.dumps(data))
    return ConfigManager(path)


def test_defaults_without_config_file():
    settings = SimulatorSettings.load()

    assert settings.vault.lock_timeout == 900
    assert settings.vault.storage_location.endswith("seed-vault")
    assert settings.approval.auto_approve_transfers is False
    assert settings.approval.auto_approve_limit == 100_000_000
    assert settings.tracker.cleanup_interval == 3600
    assert settings.session.session_timeout == 1800
    assert settings.developer.log_level == "info"
    assert settings.wallets == []


def test_load_from_file(tmp_path):
    manager = write_config(
        tmp_path / "sim.json",
        {
            "vault": {"storage_location": str(tmp_path / "store"), "lock_timeout": 30},
            "approval": {"confirmation_delay": 0.5},
            "tracker": {"max_entries": 10},
            "session": {"session_timeout": 60},
            "developer": {"log_level": "debug", "auto_approve_transactions": True},
            "wallets": [{"name": "alice", "derivation_path": "m/44'/501'/2'/0'"}],
        },
    )

    settings = SimulatorSettings.load(manager)

    assert settings.vault.lock_timeout == 30
    assert settings.approval.confirmation_delay == 0.5
    assert settings.approval.auto_approve_transfers is True
    assert settings.tracker.max_entries == 10
    assert settings.session.session_timeout == 60
    assert settings.developer.log_level == "debug"
    assert [w.name for w in settings.wallets] == ["alice"]


def test_config_path_from_environment(monkeypatch, tmp_path):
    path = tmp_path / "elsewhere.json"
    path.write_text(json.dumps({"session": {"session_timeout": 5}}))
    monkeypatch.setenv("PHONE_SIM_CONFIG", str(path))

    assert SimulatorSettings.load().session.session_timeout == 5


def test_environment_overrides_file(monkeypatch, tmp_path):
    manager = write_config(
        tmp_path / "sim.json",
        {"vault": {"lock_timeout": 30}, "approval": {"auto_approve_transfers": True}},
    )
    monkeypatch.setenv("PHONE_SIM_STORAGE_DIR", str(tmp_path / "env-store"))
    monkeypatch.setenv("PHONE_SIM_LOCK_TIMEOUT", "12.5")
    monkeypatch.setenv("PHONE_SIM_AUTO_APPROVE", "no")
    monkeypatch.setenv("PHONE_SIM_LOG_LEVEL", "WARN")

    settings = SimulatorSettings.load(manager)

    assert settings.vault.storage_location == str(tmp_path / "env-store")
    assert settings.vault.lock_timeout == 12.5
    assert settings.approval.auto_approve_transfers is False
    assert settings.developer.log_level == "warning"


def test_invalid_values_are_rejected(tmp_path):
    with pytest.raises(ValueError):
        SimulatorSettings.load(write_config(tmp_path / "a.json", {"vault": {"lock_timeout": 0}}))
    with pytest.raises(ValueError):
        SimulatorSettings.load(write_config(tmp_path / "b.json", {"developer": {"log_level": "loud"}}))


def test_wallet_templates_need_solana_paths(tmp_path):
    manager = write_config(tmp_path / "sim.json", {"wallets": [{"name": "eth", "derivation_path": "m/44'/60'/0'/0'"}]})
    with pytest.raises(SimulatorConfigurationError, match="eth"):
        SimulatorSettings.load(manager)


def test_unreadable_config_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{oops")
    assert ConfigManager(path).list_config() == {}
    assert SimulatorSettings.load(ConfigManager(path)).vault.lock_timeout == 900


def test_config_manager_dotted_keys(tmp_path):
    path = tmp_path / "nested" / "sim.json"
    manager = ConfigManager(path)
    assert not path.exists()

    manager.set("approval.auto_approve_limit", 5)
    manager.set("vault.lock_timeout", 10)

    assert manager.get("approval.auto_approve_limit") == 5
    assert manager.get("approval.missing", "fallback") == "fallback"
    assert json.loads(path.read_text()) == {"approval": {"auto_approve_limit": 5}, "vault": {"lock_timeout": 10}}
    assert ConfigManager(path).get("vault.lock_timeout") == 10


@pytest.mark.parametrize("name", available_templates())
def test_templates_load(tmp_path, name):
    path = write_config_template(name, tmp_path / f"{name}.json")
    settings = SimulatorSettings.load(ConfigManager(path))
    assert len(settings.wallets) == len(CONFIG_TEMPLATES[name]["wallets"])


def test_development_template_enables_auto_approval(tmp_path):
    path = write_config_template("development", tmp_path / "dev.json")
    settings = SimulatorSettings.load(ConfigManager(path))
    assert settings.approval.auto_approve_transfers is True
    assert settings.vault.auto_lock is False
    assert settings.developer.log_level == "debug"


def test_write_template_refuses_to_overwrite(tmp_path):
    path = write_config_template("default", tmp_path / "sim.json")
    with pytest.raises(FileExistsError):
        write_config_template("testing", path)

    write_config_template("testing", path, force=True)
    assert json.loads(path.read_text())["session"]["session_timeout"] == 300


def test_write_template_defaults_to_working_directory(tmp_path):
    path = write_config_template()
    assert path.resolve() == (tmp_path / "phone_sim.config.json").resolve()


def test_unknown_template():
    with pytest.raises(SimulatorConfigurationError, match="Unknown configuration template"):
        write_config_template("production")


@pytest.mark.asyncio
async def test_build_vault_and_service(tmp_path):
    settings = SimulatorSettings.load(
        write_config(
            tmp_path / "sim.json",
            {
                "vault": {"storage_location": str(tmp_path / "store"), "lock_timeout": 42},
                "approval": {"auto_approve_limit": 7},
                "tracker": {"max_entries": 3},
                "session": {"session_timeout": 9},
            },
        )
    )

    vault = settings.build_vault()
    assert isinstance(vault, SeedVault)
    assert isinstance(vault.storage, FileSystemStorage)
    assert vault.config.lock_timeout == 42
    assert isinstance(settings.build_vault(use_memory_storage=True).storage, MemoryStorage)

    service = settings.build_service(vault)
    assert isinstance(service, MWAService)
    assert service.session_timeout == 9
    assert service.approval.config.auto_approve_limit == 7
    assert service.tracker.max_entries == 3
    await service.close()
