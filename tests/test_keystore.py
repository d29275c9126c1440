"""
Tests for deploy key storage and signer selection
"""
import pytest

from upgrade_manager.chain.core.chain import dev_private_key
from upgrade_manager.cli.keystore import KeyStore
from upgrade_manager.deploy.signer import Signer, resolve_signer
from upgrade_manager.protocol.config.params import get_network


@pytest.fixture
def keystore(tmp_path):
    return KeyStore(str(tmp_path / "keys"))


@pytest.fixture(autouse=True)
def no_deploy_key_env(monkeypatch):
    monkeypatch.delenv("UPM_DEPLOY_KEY", raising=False)


# ═══════════════════════════════════════════════════════════════════
# KEYSTORE
# ═══════════════════════════════════════════════════════════════════

def test_create_and_list_keys(keystore):
    created = keystore.create_key("deployer")

    assert Signer(keystore.private_key("deployer")).address == created["address"]
    listed = keystore.list_keys()
    assert [k["name"] for k in listed] == ["deployer"]
    assert "private_key" not in listed[0]

    with pytest.raises(ValueError):
        keystore.create_key("deployer")


def test_import_key(keystore):
    priv = "11" * 32
    imported = keystore.import_key("imported", "0x" + priv)

    assert keystore.get_key("imported")["private_key"] == priv
    assert imported["address"] == Signer(bytes.fromhex(priv)).address

    with pytest.raises(ValueError):
        keystore.import_key("short", "1234")
    with pytest.raises(ValueError):
        keystore.import_key("nothex", "zz" * 32)


def test_delete_key(keystore):
    keystore.create_key("temp")
    assert keystore.delete_key("temp") is True
    assert keystore.delete_key("temp") is False
    assert keystore.get_key("temp") is None
    with pytest.raises(ValueError):
        keystore.private_key("temp")


# ═══════════════════════════════════════════════════════════════════
# SIGNER RESOLUTION
# ═══════════════════════════════════════════════════════════════════

def test_explicit_key_wins(keystore, monkeypatch):
    monkeypatch.setenv("UPM_DEPLOY_KEY", "22" * 32)
    keystore.create_key("named")

    signer = resolve_signer(get_network("devnet"), private_key="0x" + "33" * 32, key_name="named", keystore=keystore)
    assert signer.address == Signer(b"\x33" * 32).address


def test_environment_key_before_keystore(keystore, monkeypatch):
    monkeypatch.setenv("UPM_DEPLOY_KEY", "22" * 32)
    keystore.create_key("named")

    signer = resolve_signer(get_network("devnet"), key_name="named", keystore=keystore)
    assert signer.address == Signer(b"\x22" * 32).address


def test_keystore_key(keystore):
    created = keystore.create_key("named")
    signer = resolve_signer(get_network("devnet"), key_name="named", keystore=keystore)
    assert signer.address == created["address"]


def test_dev_account_fallback():
    network_config = get_network("devnet")
    signer = resolve_signer(network_config)

    expected = Signer(dev_private_key(network_config.dev_mnemonic_seed, 0))
    assert signer.address == expected.address


def test_remote_network_needs_a_key():
    with pytest.raises(ValueError):
        resolve_signer(get_network("testnet"))


def test_gas_settings_follow_network():
    signer = resolve_signer(get_network("testnet"), private_key="44" * 32)
    assert signer.gas_price == 1000


def test_signer_rejects_bad_key_length():
    with pytest.raises(ValueError):
        Signer(b"\x01" * 31)


def test_keystore_location_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("UPM_KEYSTORE", str(tmp_path / "env-keys"))
    KeyStore().create_key("deployer")
    assert (tmp_path / "env-keys" / "deployer.json").exists()
