"""
Tests for the local chain and its built-in contracts

Tests:
- Transaction validation and revert atomicity
- Contract runtime: dispatch, static calls, code resolution
- Transparent proxy: admin/implementation split
- Safe: signature checks, owner management
"""
import pytest

from upgrade_manager.chain.contracts import SENTINEL_OWNERS, get_contract_registry
from upgrade_manager.chain.contracts.proxy import ADMIN_SLOT, IMPLEMENTATION_SLOT
from upgrade_manager.deploy.execution import deploy_contract, send_transaction
from upgrade_manager.deploy.ledger import deploy_implementation
from upgrade_manager.protocol.crypto.addresses import address_bytes, contract_address
from upgrade_manager.protocol.crypto.hash import hash_bytecode_without_metadata, to_hex
from upgrade_manager.protocol.types.abi import encode_call
from upgrade_manager.protocol.types.common import (
    Conflict,
    InvalidInput,
    NotFound,
    PermissionDenied,
)
from upgrade_manager.protocol.types.safe import (
    SafeTx,
    pack_signatures,
    safe_tx_hash,
    sign_safe_tx,
    sort_signatures,
)


# ═══════════════════════════════════════════════════════════════════
# CHAIN
# ═══════════════════════════════════════════════════════════════════

def test_dev_accounts_are_funded(chain, network_config):
    assert len(chain.dev_keys) == network_config.dev_account_count
    for address, _ in chain.dev_keys:
        assert chain.get_balance(address) == network_config.dev_account_balance


def test_transfer_and_receipt(network, dev_signers):
    a, b = dev_signers[0], dev_signers[1]
    before = network.get_balance(b.address)

    tx_hash = a.transact(network, b.address, value=10)

    receipt = network.get_receipt(tx_hash)
    assert receipt.status == "confirmed"
    assert receipt.block_height == 1
    assert network.get_balance(b.address) == before + 10
    assert network.get_transaction_count(a.address) == 1


def test_rejects_bad_nonce_chain_id_and_signature(chain, network, dev_signers):
    signer = dev_signers[0]

    tx = signer.sign_transaction(network, dev_signers[1].address, nonce=3)
    with pytest.raises(InvalidInput):
        network.send_transaction(tx)

    tx = signer.sign_transaction(network, dev_signers[1].address)
    tx.chain_id = "other-chain"
    with pytest.raises(InvalidInput):
        network.send_transaction(tx)

    tx = signer.sign_transaction(network, dev_signers[1].address)
    tx.value = 99
    with pytest.raises(PermissionDenied):
        network.send_transaction(tx)

    assert chain.get_transaction_count(signer.address) == 0
    assert chain.height == 0


def test_deploy_sets_code_at_predicted_address(config):
    address = deploy_contract(config, config.artifacts.init_code("MockAbstract", 8))

    assert address == contract_address(config.deploy_address, 0)
    assert config.network.call_method(address, "value") == 8
    assert hash_bytecode_without_metadata(config.network.get_code(address)) == config.artifacts.code_hash("MockAbstract")


def test_malformed_init_code_is_rejected(config):
    with pytest.raises(InvalidInput):
        deploy_contract(config, "0x00")
    with pytest.raises(InvalidInput):
        config.network.call(None, config.artifacts.init_code("MockAbstract", 1, 2))
    assert config.network.get_transaction_count(config.deploy_address) == 0


def test_reverted_call_keeps_state(config):
    impl = deploy_implementation(config, "UpgradeableContractV1")
    send_transaction(config, impl, encode_call("initialize", config.deploy_address))
    send_transaction(config, impl, encode_call("setFoo", 1))

    with pytest.raises(PermissionDenied):
        send_transaction(config, impl, encode_call("initialize", config.deploy_address))
    with pytest.raises(InvalidInput):
        send_transaction(config, impl, encode_call("setFoo", 1, 2))

    assert config.network.call_method(impl, "foo") == 1


def test_calls_leave_state_untouched(config):
    impl = deploy_implementation(config, "UpgradeableContractV1")
    with pytest.raises(InvalidInput):
        config.network.call_method(impl, "noSuchFunction")

    # plain reads run on a throwaway copy of the state
    config.network.call_method(impl, "initialize", config.deploy_address)
    assert config.network.call_method(impl, "owner") != config.deploy_address


def test_registry_resolves_code_without_metadata():
    registry = get_contract_registry()
    artifact = registry.artifact("ProxyAdmin")
    runtime = bytes.fromhex(artifact.deployed_bytecode[2:])
    foreign_metadata = b"meta" + b"\x01" * 16
    recompiled = runtime[:-(len(foreign_metadata) + 2)] + foreign_metadata + len(foreign_metadata).to_bytes(2, "big")

    assert registry.resolve_code(recompiled).__name__ == "ProxyAdmin"
    assert "UpgradeManager" in registry.list_contracts()


# ═══════════════════════════════════════════════════════════════════
# TRANSPARENT PROXY
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def proxy_setup(config):
    """V1 behind a proxy whose admin is a ProxyAdmin owned by the deployer."""
    impl = deploy_implementation(config, "UpgradeableContractV1")
    admin = deploy_contract(config, config.artifacts.init_code("ProxyAdmin"))
    proxy = deploy_contract(config, config.artifacts.init_code(
        "TransparentUpgradeableProxy", impl, admin, encode_call("initialize", config.deploy_address)
    ))
    return impl, admin, proxy


def test_proxy_delegates_for_other_callers(config, proxy_setup):
    impl, admin, proxy = proxy_setup

    assert config.network.call_method(proxy, "version") == "1"
    assert config.network.call_method(proxy, "owner") == config.deploy_address
    assert config.network.get_storage_at(proxy, IMPLEMENTATION_SLOT) == impl
    assert config.network.get_storage_at(proxy, ADMIN_SLOT) == admin
    assert config.network.call_method(admin, "getProxyImplementation", proxy) == impl
    assert config.network.call_method(admin, "getProxyAdmin", proxy) == admin


def test_proxy_admin_cannot_reach_implementation(config, proxy_setup):
    _, admin, proxy = proxy_setup
    with pytest.raises(PermissionDenied):
        config.network.call_method(proxy, "version", from_address=admin)


def test_proxy_upgrade_keeps_storage(config, proxy_setup):
    _, admin, proxy = proxy_setup
    send_transaction(config, proxy, encode_call("setFoo", 42))
    v2 = deploy_implementation(config, "UpgradeableContractV2")

    send_transaction(config, admin, encode_call("upgrade", proxy, v2))

    assert config.network.call_method(proxy, "version") == "2"
    assert config.network.call_method(proxy, "foo") == 42


def test_proxy_upgrade_is_admin_owner_only(make_config, proxy_setup):
    _, admin, proxy = proxy_setup
    other = make_config(1)
    v2 = deploy_implementation(other, "UpgradeableContractV2")

    with pytest.raises(PermissionDenied):
        send_transaction(other, admin, encode_call("upgrade", proxy, v2))
    with pytest.raises(InvalidInput):
        send_transaction(make_config(0), admin, encode_call("upgrade", proxy, other.deploy_address))


# ═══════════════════════════════════════════════════════════════════
# SAFE
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def safe_setup(config, dev_signers, chain):
    owners = [s.address for s in dev_signers[:3]]
    safe = deploy_contract(config, config.artifacts.init_code("Safe", owners, 2))
    keys = dict(chain.dev_keys[:3])
    return safe, owners, keys


def exec_data(chain_id, safe, nonce, call_data, keys, signers, order=sort_signatures):
    tx = SafeTx(to=safe, data=call_data, nonce=nonce)
    digest = safe_tx_hash(chain_id, safe, tx)
    signatures = order([sign_safe_tx(digest, keys[s]) for s in signers])
    return encode_call(
        "execTransaction", tx.to, tx.value, tx.data, tx.operation, tx.safe_tx_gas,
        tx.base_gas, tx.gas_price, tx.gas_token, tx.refund_receiver, pack_signatures(signatures),
    )


def test_safe_executes_with_threshold_signatures(config, safe_setup):
    safe, owners, keys = safe_setup
    data = exec_data(config.network.chain_id, safe, 0, encode_call("changeThreshold", 3), keys, owners[:2])

    send_transaction(config, safe, data)

    assert config.network.call_method(safe, "getThreshold") == 3
    assert config.network.call_method(safe, "nonce") == 1


def test_safe_rejects_short_unsorted_and_replayed_signatures(config, safe_setup):
    safe, owners, keys = safe_setup
    call = encode_call("changeThreshold", 1)
    chain_id = config.network.chain_id

    with pytest.raises(PermissionDenied):
        send_transaction(config, safe, exec_data(chain_id, safe, 0, call, keys, owners[:1]))

    descending = lambda sigs: list(reversed(sort_signatures(sigs)))
    with pytest.raises(InvalidInput):
        send_transaction(config, safe, exec_data(chain_id, safe, 0, call, keys, owners[:2], order=descending))

    with pytest.raises(InvalidInput):
        send_transaction(config, safe, exec_data(chain_id, safe, 0, call, keys, [owners[0], owners[0]], order=list))

    data = exec_data(chain_id, safe, 0, call, keys, owners[:2])
    send_transaction(config, safe, data)
    with pytest.raises(PermissionDenied):
        send_transaction(config, safe, data)


def test_safe_rejects_non_owner_signatures(config, safe_setup, chain):
    safe, owners, keys = safe_setup
    outsider_address, outsider_key = chain.dev_keys[5]
    keys = {**keys, outsider_address: outsider_key}

    data = exec_data(config.network.chain_id, safe, 0, encode_call("changeThreshold", 1), keys,
                     [owners[0], outsider_address])
    with pytest.raises(PermissionDenied):
        send_transaction(config, safe, data)


def test_safe_owner_management_only_through_safe(config, safe_setup, dev_signers):
    safe, owners, keys = safe_setup
    with pytest.raises(PermissionDenied):
        send_transaction(config, safe, encode_call("addOwnerWithThreshold", dev_signers[4].address, 2))

    chain_id = config.network.chain_id
    bad_prev = encode_call("removeOwner", owners[2], owners[1], 2)
    with pytest.raises(InvalidInput):
        send_transaction(config, safe, exec_data(chain_id, safe, 0, bad_prev, keys, owners[:2]))

    remove = encode_call("removeOwner", SENTINEL_OWNERS, owners[0], 2)
    send_transaction(config, safe, exec_data(chain_id, safe, 0, remove, keys, owners[1:3]))
    assert config.network.call_method(safe, "getOwners") == owners[1:]

    duplicate = encode_call("addOwnerWithThreshold", owners[1], 2)
    with pytest.raises(Conflict):
        send_transaction(config, safe, exec_data(chain_id, safe, 1, duplicate, keys, owners[1:3]))

    missing = encode_call("removeOwner", SENTINEL_OWNERS, owners[0], 1)
    with pytest.raises(NotFound):
        send_transaction(config, safe, exec_data(chain_id, safe, 1, missing, keys, owners[1:3]))


def test_safe_transaction_hash_matches_off_chain_digest(config, safe_setup):
    safe, _, _ = safe_setup
    tx = SafeTx(to=safe, data=encode_call("changeThreshold", 1), nonce=0)

    on_chain = config.network.call_method(
        safe, "getTransactionHash", tx.to, tx.value, tx.data, tx.operation, tx.safe_tx_gas,
        tx.base_gas, tx.gas_price, tx.gas_token, tx.refund_receiver, tx.nonce,
    )
    assert on_chain == to_hex(safe_tx_hash(config.network.chain_id, safe, tx))


def test_signatures_sort_by_address_bytes(dev_signers):
    digest = b"\x42" * 32
    signatures = sort_signatures([s.sign_digest(digest) for s in dev_signers[:5]])
    keys = [address_bytes(s.signer) for s in signatures]
    assert keys == sorted(keys)


# ═══════════════════════════════════════════════════════════════════
# EVENTS
# ═══════════════════════════════════════════════════════════════════

def test_contract_events_reach_subscribers(chain, config, proxy_setup):
    _, admin, proxy = proxy_setup
    upgraded, everything, confirmed = [], [], []
    chain.events.on_contract_event("Upgraded", lambda log, receipt: upgraded.append(log))
    chain.events.on_contract_event("*", lambda log, receipt: everything.append(log.event))
    chain.events.subscribe("tx_confirmed", lambda tx, receipt: confirmed.append(receipt.tx_hash))

    v2 = deploy_implementation(config, "UpgradeableContractV2")
    tx_hash = send_transaction(config, admin, encode_call("upgrade", proxy, v2))

    assert [(log.address, log.args["implementation"]) for log in upgraded] == [(proxy, v2)]
    assert everything == ["Upgraded"]
    assert confirmed[-1] == tx_hash
    assert config.network.get_receipt(tx_hash).events("Upgraded") == upgraded


def test_failing_listener_does_not_block_commit(chain, network, dev_signers):
    calls = []

    def broken(tx, receipt):
        raise RuntimeError("listener bug")

    chain.events.subscribe("tx_confirmed", broken)
    unsubscribe = chain.events.subscribe("tx_confirmed", lambda tx, receipt: calls.append(tx.nonce))

    dev_signers[0].transact(network, dev_signers[1].address, value=1)
    unsubscribe()
    dev_signers[0].transact(network, dev_signers[1].address, value=1)

    assert calls == [0]
    assert chain.height == 2
