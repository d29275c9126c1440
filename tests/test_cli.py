"""
Tests for the upm command line
"""
import json

import pytest

from upgrade_manager.cli.main import main


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("UPM_KEYSTORE", str(tmp_path / "keys"))
    monkeypatch.delenv("UPM_DEPLOY_KEY", raising=False)
    monkeypatch.delenv("UPM_NETWORK", raising=False)
    monkeypatch.delenv("UPM_NODE", raising=False)


def test_keys_commands(capsys):
    main(["keys", "add", "deployer"])
    created = capsys.readouterr().out
    assert "Key 'deployer' created." in created

    main(["keys", "list"])
    assert "deployer" in capsys.readouterr().out

    main(["keys", "show", "deployer"])
    shown = json.loads(capsys.readouterr().out)
    assert shown["name"] == "deployer"
    assert "private_key" not in shown


def test_keys_import_rejects_bad_key(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["keys", "import", "bad", "--private-key", "1234"])
    assert exc.value.code == 1
    assert "Error: Invalid private key length" in capsys.readouterr().out


def test_compile_writes_artifacts(tmp_path, capsys):
    out = tmp_path / "artifacts"
    main(["compile", "ProxyAdmin", "Safe", "--out", str(out)])

    artifact = json.loads((out / "ProxyAdmin.json").read_text())
    assert artifact["contract_name"] == "ProxyAdmin"
    assert (out / "Safe.json").exists()
    assert capsys.readouterr().out.count("Wrote ") == 2


def test_status_without_ledger_fails(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["status", "--root", str(tmp_path)])
    assert exc.value.code == 1
    assert "Could not find upgrade manager address" in capsys.readouterr().out


def test_remote_network_without_key_fails(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["upgrade", "1.0.0", "--network", "testnet", "--root", str(tmp_path)])
    assert exc.value.code == 1
    assert "No deploy key for testnet" in capsys.readouterr().out


def test_malformed_prior_signatures_fail(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["upgrade", "1.0.0", "--root", str(tmp_path), "--prior-signatures", "nonsense"])
    assert exc.value.code == 1
    assert "Malformed signature entry" in capsys.readouterr().out
