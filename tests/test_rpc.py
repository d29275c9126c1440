"""
Tests for the node HTTP API and the RpcNetwork client

The API is served by fastapi's TestClient, which RpcNetwork accepts in place
of a requests session.
"""
import random

import pytest
import requests
from fastapi.testclient import TestClient

from upgrade_manager.chain.rpc import api
from upgrade_manager.deploy.ledger import get_upgrade_manager
from upgrade_manager.deploy.network import RpcNetwork
from upgrade_manager.deploy.proposers import withdraw_changes
from upgrade_manager.deploy.reconcile import reconcile
from upgrade_manager.deploy.propose import propose_changes
from upgrade_manager.deploy.upgrade import upgrade
from upgrade_manager.protocol.types.abi import encode_call
from upgrade_manager.protocol.types.common import (
    InvalidInput,
    NotFound,
    PermissionDenied,
    TransientError,
)


@pytest.fixture
def client(chain):
    api.set_chain(chain)
    yield TestClient(api.app)
    api.set_chain(None)


@pytest.fixture
def rpc(client):
    return RpcNetwork("http://testserver", session=client)


# ═══════════════════════════════════════════════════════════════════
# API
# ═══════════════════════════════════════════════════════════════════

def test_status_and_account(client, chain, dev_signers):
    status = client.get("/status").json()
    assert status["chain_id"] == chain.chain_id
    assert status["height"] == 0

    account = client.get(f"/account/{dev_signers[0].address}").json()
    assert int(account["balance"]) == chain.get_balance(dev_signers[0].address)
    assert account["nonce"] == 0


def test_protocol_errors_carry_kind(client, dev_signers):
    resp = client.post("/call", json={"to_address": dev_signers[0].address, "data": encode_call("foo")})
    assert resp.status_code == 400
    assert resp.json()["detail"]["kind"] == "INVALID_INPUT"


def test_metrics_endpoint(client, rpc, dev_signers):
    dev_signers[0].transact(rpc, dev_signers[1].address, value=1)

    text = client.get("/metrics").text
    assert "upgrade_manager_block_height 1.0" in text
    assert "upgrade_manager_transactions_total" in text


def test_dev_mine(client):
    assert client.post("/dev/mine").json() == {"mined": 0, "height": 0}


# ═══════════════════════════════════════════════════════════════════
# CLIENT
# ═══════════════════════════════════════════════════════════════════

def test_transfer_through_client(rpc, chain, dev_signers):
    tx_hash = dev_signers[0].transact(rpc, dev_signers[1].address, value=7)

    receipt = rpc.get_receipt(tx_hash)
    assert receipt.status == "confirmed"
    assert receipt.block_height == 1
    assert rpc.get_transaction_count(dev_signers[0].address) == 1
    assert rpc.get_balance(dev_signers[1].address) == chain.get_balance(dev_signers[1].address)


def test_unknown_receipt_is_none(rpc):
    assert rpc.get_receipt("0x" + "ab" * 32) is None


def test_node_errors_map_to_protocol_errors(rpc, dev_signers):
    tx = dev_signers[0].sign_transaction(rpc, dev_signers[1].address)
    tx.value = 5
    with pytest.raises(PermissionDenied):
        rpc.send_transaction(tx)

    with pytest.raises(InvalidInput):
        rpc.call(dev_signers[0].address, encode_call("foo"))


def test_uninitialized_node_is_transient(client):
    api.set_chain(None)
    rpc = RpcNetwork("http://testserver", session=client)
    with pytest.raises(TransientError):
        rpc.get_code("anything")


class _DownSession:

    def request(self, method, url, **kwargs):
        raise requests.ConnectionError("connection refused")


def test_connection_errors_are_transient():
    rpc = RpcNetwork("http://localhost:1", session=_DownSession())
    with pytest.raises(TransientError):
        rpc.get_transaction_count("anything")


def test_deploy_and_upgrade_over_http(make_config, rpc):
    config = make_config(0, network=rpc, contracts=[{"id": "Foo", "contract": "UpgradeableContractV1"}])
    reconcile(config, rng=random.Random(0))

    proxy = get_upgrade_manager(config).adopted_address("Foo")
    assert rpc.call_method(proxy, "version") == "1"

    config = make_config(0, network=rpc, contracts=[{"id": "Foo", "contract": "UpgradeableContractV2"}])
    result = reconcile(config, rng=random.Random(0))
    assert propose_changes(config, result.pending_changes, result.addresses) == 1
    ledger = get_upgrade_manager(config)
    upgrade(config, "2.0.0")

    assert rpc.call_method(proxy, "version") == "2"
    assert ledger.version() == "2.0.0"
    with pytest.raises(NotFound):
        withdraw_changes(config, "Foo")
