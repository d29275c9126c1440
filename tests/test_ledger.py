"""
Tests for the UpgradeManager ledger contract

Tests:
- Nonce accounting per accepted call and per upgrade batch
- Stale nonce rejection without state change
- Adoption preconditions, disown and re-adoption
- Proposer management
- Adoption capacity
- Abstract contract proposals (latest proposal wins)
- Self upgrade of the ledger
"""
import json

import pytest

from upgrade_manager.chain.contracts import get_contract_registry
from upgrade_manager.deploy.artifacts import ArtifactStore
from upgrade_manager.deploy.execution import deploy_contract, send_transaction
from upgrade_manager.deploy.ledger import (
    deploy_implementation,
    deploy_new_proxy_and_implementation,
    get_admin_address,
    get_implementation_address,
    get_or_deploy_upgrade_manager,
)
from upgrade_manager.deploy.upgrade import self_upgrade
from upgrade_manager.protocol.config.params import MAX_ADOPTED_CONTRACTS
from upgrade_manager.protocol.crypto.addresses import ZERO_ADDRESS
from upgrade_manager.protocol.types.abi import encode_call
from upgrade_manager.protocol.types.common import (
    CapacityExceeded,
    ConcurrencyConflict,
    Conflict,
    InvalidInput,
    NotFound,
    PermissionDenied,
)


# ═══════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def ledger(config):
    return get_or_deploy_upgrade_manager(config)


def deploy_owned_proxy(config, ledger, contract_name="UpgradeableContractV1"):
    """Proxy owned by the ledger, behind the shared proxy admin (handed to the ledger)."""
    proxy = deploy_new_proxy_and_implementation(config, contract_name, [ledger.address])
    admin = get_admin_address(config.network, proxy)
    if config.network.call_method(admin, "owner") != ledger.address:
        send_transaction(config, admin, encode_call("transferOwnership", ledger.address))
    return proxy, admin


def adopt(config, ledger, contract_id, contract_name="UpgradeableContractV1"):
    proxy, admin = deploy_owned_proxy(config, ledger, contract_name)
    ledger.send(config, "adoptContract", contract_id, proxy, admin)
    return proxy


def deploy_abstract(config, value=0):
    return deploy_contract(config, config.artifacts.init_code("MockAbstract", value))


# ═══════════════════════════════════════════════════════════════════
# SETUP
# ═══════════════════════════════════════════════════════════════════

def test_new_ledger_is_owned_by_deployer(config, ledger):
    """Deploying the ledger registers the deployer as owner and proposer."""
    assert ledger.owner() == config.deploy_address
    assert ledger.proposers() == [config.deploy_address]
    assert ledger.nonce() == 1
    assert ledger.version() == ""
    assert ledger.proxies() == []


def test_existing_ledger_is_reused(config, ledger):
    """A second lookup returns the ledger recorded in the project metadata."""
    again = get_or_deploy_upgrade_manager(config)
    assert again.address == ledger.address
    assert again.nonce() == 1


def test_ledger_cannot_be_initialized_twice(config, ledger):
    with pytest.raises(PermissionDenied):
        ledger.send(config, "initialize", config.deploy_address)


# ═══════════════════════════════════════════════════════════════════
# NONCE ACCOUNTING
# ═══════════════════════════════════════════════════════════════════

def test_adopt_increments_nonce_by_one(config, ledger):
    before = ledger.nonce()
    proxy = adopt(config, ledger, "Foo")

    assert ledger.nonce() == before + 1
    assert ledger.adopted_address("Foo") == proxy
    assert ledger.proxies() == [proxy]
    assert ledger.adopted_record(proxy)["id"] == "Foo"


def test_propose_and_withdraw_increment_nonce_by_one(config, ledger):
    adopt(config, ledger, "Foo")
    v2 = deploy_implementation(config, "UpgradeableContractV2")

    n = ledger.nonce()
    ledger.send(config, "proposeUpgrade", "Foo", v2)
    assert ledger.nonce() == n + 1

    ledger.send(config, "withdrawChanges", "Foo")
    assert ledger.nonce() == n + 2

    ledger.send(config, "proposeCall", "Foo", encode_call("setFoo", 3))
    assert ledger.nonce() == n + 3

    ledger.send(config, "withdrawChanges", "Foo")
    ledger.send(config, "proposeUpgradeAndCall", "Foo", v2, encode_call("setup", "x"))
    assert ledger.nonce() == n + 5

    ledger.send(config, "proposeAbstract", "Lib", deploy_abstract(config))
    assert ledger.nonce() == n + 6


def test_rejected_calls_leave_nonce_unchanged(config, make_config, ledger):
    proxy = adopt(config, ledger, "Foo")
    n = ledger.nonce()

    current = get_implementation_address(config.network, proxy)
    with pytest.raises(InvalidInput):
        ledger.send(config, "proposeUpgrade", "Foo", current)
    with pytest.raises(NotFound):
        ledger.send(config, "proposeCall", "Unknown", encode_call("setFoo", 1))

    outsider = make_config(1)
    with pytest.raises(PermissionDenied):
        ledger.send(outsider, "proposeCall", "Foo", encode_call("setFoo", 1))

    assert ledger.nonce() == n


def test_second_proposal_requires_withdraw(config, ledger):
    adopt(config, ledger, "Foo")
    ledger.send(config, "proposeCall", "Foo", encode_call("setFoo", 1))

    with pytest.raises(Conflict):
        ledger.send(config, "proposeCall", "Foo", encode_call("setFoo", 2))


def test_upgrade_applies_batch_with_single_nonce_increment(config, ledger):
    """One upgrade() applies every pending change and bumps the nonce once."""
    upgraded = adopt(config, ledger, "Foo")
    configured = adopt(config, ledger, "Bar")
    v2 = deploy_implementation(config, "UpgradeableContractV2")
    lib = deploy_abstract(config, 9)

    ledger.send(config, "proposeUpgradeAndCall", "Foo", v2, encode_call("setup", "bar"))
    ledger.send(config, "proposeCall", "Bar", encode_call("setFoo", 7))
    ledger.send(config, "proposeAbstract", "Lib", lib)

    n = ledger.nonce()
    ledger.send(config, "upgrade", "1.0.0", n)

    assert ledger.nonce() == n + 1
    assert ledger.version() == "1.0.0"
    assert get_implementation_address(config.network, upgraded) == v2
    assert config.network.call_method(upgraded, "version") == "2"
    assert config.network.call_method(upgraded, "fooString") == "bar"
    assert config.network.call_method(configured, "foo") == 7
    assert ledger.abstract_address("Lib") == lib
    assert ledger.proxies_with_pending_changes() == []
    assert ledger.proposed_abstracts() == []


def test_upgrade_without_changes_still_increments_nonce(config, ledger):
    n = ledger.nonce()
    ledger.send(config, "upgrade", "0.0.1", n)
    assert ledger.nonce() == n + 1


def test_upgrade_with_stale_nonce_rejects_and_keeps_state(config, ledger):
    proxy = adopt(config, ledger, "Foo")
    v2 = deploy_implementation(config, "UpgradeableContractV2")
    ledger.send(config, "proposeUpgrade", "Foo", v2)
    current = get_implementation_address(config.network, proxy)

    n = ledger.nonce()
    for stale in (n - 1, n + 1):
        with pytest.raises(ConcurrencyConflict):
            ledger.send(config, "upgrade", "1.0.0", stale)

    assert ledger.nonce() == n
    assert ledger.version() == ""
    assert ledger.pending_upgrade_address(proxy) == v2
    assert get_implementation_address(config.network, proxy) == current


def test_upgrade_rejects_empty_version_and_non_owner(config, make_config, ledger):
    n = ledger.nonce()
    with pytest.raises(InvalidInput):
        ledger.send(config, "upgrade", "", n)
    with pytest.raises(PermissionDenied):
        ledger.send(make_config(1), "upgrade", "1.0.0", n)
    assert ledger.nonce() == n


def test_failing_sub_change_reverts_whole_batch(config, ledger):
    first = adopt(config, ledger, "Foo")
    adopt(config, ledger, "Bar")
    ledger.send(config, "proposeCall", "Foo", encode_call("setFoo", 1))
    ledger.send(config, "proposeCall", "Bar", encode_call("doesNotExist"))

    n = ledger.nonce()
    with pytest.raises(InvalidInput):
        ledger.send(config, "upgrade", "1.0.0", n)

    assert ledger.nonce() == n
    assert config.network.call_method(first, "foo") == 0
    assert len(ledger.proxies_with_pending_changes()) == 2


# ═══════════════════════════════════════════════════════════════════
# ADOPTION
# ═══════════════════════════════════════════════════════════════════

def test_adopt_requires_ledger_owned_proxy_admin(config, ledger):
    proxy = deploy_new_proxy_and_implementation(config, "UpgradeableContractV1", [ledger.address])
    admin = get_admin_address(config.network, proxy)

    with pytest.raises(PermissionDenied):
        ledger.send(config, "adoptContract", "Foo", proxy, admin)


def test_adopt_requires_ledger_owned_contract(config, dev_signers, ledger):
    proxy = deploy_new_proxy_and_implementation(config, "UpgradeableContractV1", [dev_signers[1].address])
    admin = get_admin_address(config.network, proxy)
    send_transaction(config, admin, encode_call("transferOwnership", ledger.address))

    with pytest.raises(PermissionDenied):
        ledger.send(config, "adoptContract", "Foo", proxy, admin)


def test_adopt_rejects_duplicate_id_and_duplicate_proxy(config, ledger):
    proxy = adopt(config, ledger, "Foo")
    other, admin = deploy_owned_proxy(config, ledger)

    with pytest.raises(Conflict):
        ledger.send(config, "adoptContract", "Foo", other, admin)
    with pytest.raises(Conflict):
        ledger.send(config, "adoptContract", "Foo2", proxy, admin)


def test_disown_then_readopt_same_id(config, dev_signers, ledger):
    proxy = adopt(config, ledger, "X")
    new_owner = dev_signers[1].address

    n = ledger.nonce()
    ledger.send(config, "disown", "X", new_owner)

    assert ledger.nonce() == n + 1
    assert config.network.call_method(ledger.address, "adoptedContractAddresses", "X") == ZERO_ADDRESS
    assert ledger.adopted_address("X") is None
    assert proxy not in ledger.proxies()
    assert config.network.call_method(proxy, "owner") == new_owner

    replacement = adopt(config, ledger, "X")
    assert ledger.adopted_address("X") == replacement
    assert ledger.nonce() == n + 2


def test_change_proxy_admin_refuses_adopted_proxy(config, ledger):
    proxy, admin = deploy_owned_proxy(config, ledger)
    ledger.send(config, "adoptContract", "Foo", proxy, admin)

    with pytest.raises(PermissionDenied):
        ledger.send(config, "changeProxyAdmin", admin, proxy, config.deploy_address)


def test_adoption_capacity(config, ledger):
    """The 100th adoption succeeds, the 101st is rejected."""
    for i in range(MAX_ADOPTED_CONTRACTS):
        adopt(config, ledger, f"C{i}")
    assert len(ledger.proxies()) == MAX_ADOPTED_CONTRACTS

    proxy, admin = deploy_owned_proxy(config, ledger)
    n = ledger.nonce()
    with pytest.raises(CapacityExceeded):
        ledger.send(config, "adoptContract", "Overflow", proxy, admin)
    assert ledger.nonce() == n


# ═══════════════════════════════════════════════════════════════════
# PROPOSERS
# ═══════════════════════════════════════════════════════════════════

def test_replace_proposer(config, dev_signers, ledger):
    """proposers {A}, add B, remove A -> {B}"""
    a = config.deploy_address
    b = dev_signers[1].address

    n = ledger.nonce()
    ledger.send(config, "addUpgradeProposer", b)
    ledger.send(config, "removeUpgradeProposer", a)

    assert ledger.proposers() == [b]
    assert ledger.nonce() == n + 2


def test_proposer_changes_are_owner_only(config, make_config, dev_signers, ledger):
    with pytest.raises(PermissionDenied):
        ledger.send(make_config(1), "addUpgradeProposer", dev_signers[2].address)
    with pytest.raises(Conflict):
        ledger.send(config, "addUpgradeProposer", config.deploy_address)
    with pytest.raises(NotFound):
        ledger.send(config, "removeUpgradeProposer", dev_signers[2].address)


def test_ownership_cannot_be_renounced(config, ledger):
    with pytest.raises(PermissionDenied):
        ledger.send(config, "renounceOwnership")
    with pytest.raises(InvalidInput):
        ledger.send(config, "transferOwnership", ZERO_ADDRESS)


# ═══════════════════════════════════════════════════════════════════
# ABSTRACT CONTRACTS
# ═══════════════════════════════════════════════════════════════════

def test_latest_abstract_proposal_wins(config, ledger):
    first = deploy_abstract(config, 1)
    second = deploy_abstract(config, 2)
    ledger.send(config, "proposeAbstract", "Lib", first)
    ledger.send(config, "proposeAbstract", "Lib", second)

    assert [p["contractAddress"] for p in ledger.proposed_abstracts()] == [first, second]
    assert ledger.latest_abstract_proposals() == {"Lib": second}

    ledger.send(config, "upgrade", "1", ledger.nonce())
    assert ledger.abstract_address("Lib") == second
    assert ledger.abstract_contract("Lib") == {"id": "Lib", "contractAddress": second}
    assert len(ledger.abstract_id_hashes()) == 1


def test_zero_address_proposal_removes_abstract(config, ledger):
    ledger.send(config, "proposeAbstract", "Lib", deploy_abstract(config))
    ledger.send(config, "upgrade", "1", ledger.nonce())

    ledger.send(config, "proposeAbstract", "Lib", ZERO_ADDRESS)
    ledger.send(config, "upgrade", "2", ledger.nonce())

    assert ledger.abstract_address("Lib") is None
    assert ledger.abstract_id_hashes() == []


def test_abstract_proposal_must_be_contract(config, dev_signers, ledger):
    with pytest.raises(InvalidInput):
        ledger.send(config, "proposeAbstract", "Lib", dev_signers[3].address)


def test_withdraw_all_abstract_proposals(config, ledger):
    ledger.send(config, "proposeAbstract", "Lib", deploy_abstract(config))
    n = ledger.nonce()

    ledger.send(config, "withdrawAllAbstractProposals")

    assert ledger.proposed_abstracts() == []
    assert ledger.nonce() == n + 1


# ═══════════════════════════════════════════════════════════════════
# SELF UPGRADE
# ═══════════════════════════════════════════════════════════════════

def test_self_upgrade_requires_ledger_owned_admin(config, ledger):
    with pytest.raises(PermissionDenied):
        self_upgrade(config)


def test_self_upgrade_replaces_ledger_implementation(make_config, tmp_path):
    """With an UpgradeManager build that changed, the ledger upgrades itself in place."""
    config = make_config(0)
    ledger = get_or_deploy_upgrade_manager(config)
    adopt(config, ledger, "Foo")

    artifacts_dir = tmp_path / "artifacts"
    artifacts_dir.mkdir()
    artifact = get_contract_registry().artifact("UpgradedUpgradeManager")
    (artifacts_dir / "UpgradeManager.json").write_text(json.dumps(artifact.model_dump()))

    upgraded_config = make_config(0, artifacts=ArtifactStore(artifacts_dir=str(artifacts_dir)))
    n = ledger.nonce()
    assert self_upgrade(upgraded_config) is None

    assert config.network.call_method(ledger.address, "newFunction") == "upgraded"
    assert ledger.nonce() == n + 1
    assert ledger.adopted_address("Foo") is not None

    with pytest.raises(InvalidInput):
        self_upgrade(upgraded_config)
