import json

import pytest

from phone_sim.cli import build_parser, main


@pytest.fixture(autouse=True)
def cli_env(monkeypatch, tmp_path):
    for name in ("PHONE_SIM_CONFIG", "PHONE_SIM_LOCK_TIMEOUT", "PHONE_SIM_AUTO_APPROVE", "PHONE_SIM_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PHONE_SIM_STORAGE_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("PHONE_SIM_PASSWORD", "Str0ng!Pass")
    monkeypatch.chdir(tmp_path)


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_config_init_and_show(tmp_path, capsys):
    config_path = tmp_path / "sim.json"
    assert main(["--config", str(config_path), "config", "init", "--template", "testing"]) == 0
    assert json.loads(config_path.read_text())["session"]["session_timeout"] == 300

    assert main(["--config", str(config_path), "config", "init"]) == 1
    assert "already exists" in capsys.readouterr().err

    assert main(["--config", str(config_path), "config", "show"]) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["session"]["session_timeout"] == 300
    assert shown["vault"]["storage_location"] == str(tmp_path / "store")


def test_vault_commands_round_trip(capsys):
    assert main(["vault", "generate", "--name", "cli-wallet"]) == 0
    generated = capsys.readouterr().out.strip()
    wallet_id, public_key = generated.removeprefix("Generated wallet ").split(": ")

    assert main(["vault", "list"]) == 0
    assert public_key in capsys.readouterr().out

    assert main(["vault", "export", wallet_id]) == 0
    exported = json.loads(capsys.readouterr().out)
    assert exported["public_key"] == public_key
    assert len(exported["mnemonic"].split()) == 12

    assert main(["vault", "status"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["is_locked"] is True
    assert status["wallet_count"] == 1

    assert main(["vault", "delete", wallet_id]) == 0
    assert main(["vault", "delete", wallet_id]) == 1
    assert "not found" in capsys.readouterr().err


def test_vault_import_is_idempotent(capsys):
    phrase = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
    assert main(["vault", "import", "--name", "fixture", "--mnemonic", phrase]) == 0
    first = capsys.readouterr().out
    assert main(["vault", "import", "--name", "fixture", "--mnemonic", phrase]) == 0
    assert capsys.readouterr().out == first

    assert main(["vault", "import", "--name", "bad", "--mnemonic", "not a mnemonic"]) == 1


def test_wrong_password_is_reported(capsys):
    assert main(["vault", "generate", "--name", "w"]) == 0
    wallet_id = capsys.readouterr().out.split()[2].rstrip(":")

    assert main(["--password", "other-password", "vault", "export", wallet_id]) == 1
    assert "Decryption failed" in capsys.readouterr().err


def test_reset_requires_confirmation(capsys):
    main(["vault", "generate", "--name", "w"])
    assert main(["vault", "reset"]) == 1
    assert main(["vault", "reset", "--yes"]) == 0
    capsys.readouterr()

    main(["vault", "list"])
    assert "No wallets." in capsys.readouterr().out


def test_demo_signs_one_transfer(capsys):
    assert main(["demo", "--lamports", "5000"]) == 0
    out = capsys.readouterr().out
    assert "Signature:" in out
    stats = json.loads(out[out.index("{"):])
    assert stats["total"] == 1
    assert stats["by_status"]["signed"] == 1


def test_version_matches_pyproject(capsys):
    with pytest.raises(SystemExit):
        main(["--version"])
    assert capsys.readouterr().out.strip().endswith(" 0.1.0")
