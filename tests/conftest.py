"""
Shared fixtures: an in-process devnet, deploy configs for its dev accounts,
and the mock contracts deployed by the tests.
"""
import pytest

from upgrade_manager.chain.contracts import (
    Contract,
    Initializable,
    Ownable,
    external,
    register_contract,
    view,
)
from upgrade_manager.chain.contracts.upgrade_manager import UpgradeManager
from upgrade_manager.chain.core.chain import LocalChain
from upgrade_manager.deploy.config import DeployConfig, parse_contracts
from upgrade_manager.deploy.network import InProcessNetwork
from upgrade_manager.deploy.signer import Signer
from upgrade_manager.protocol.config.params import get_network


# ═══════════════════════════════════════════════════════════════════
# MOCK CONTRACTS
# ═══════════════════════════════════════════════════════════════════

class _MockUpgradeable(Ownable, Initializable):

    @external
    def initialize(self, owner: str) -> None:
        self._initializer()
        self._set_owner(owner)

    @view
    def foo(self) -> int:
        return self.storage.get("foo", 0)

    @external
    def setFoo(self, value: int) -> None:
        self._only_owner()
        self.storage["foo"] = value

    @external
    def setup(self, value: str) -> None:
        self.storage["fooString"] = value

    @view
    def fooString(self) -> str:
        return self.storage.get("fooString", "")


@register_contract
class UpgradeableContractV1(_MockUpgradeable):

    @view
    def version(self) -> str:
        return "1"


@register_contract
class UpgradeableContractV2(_MockUpgradeable):

    @view
    def version(self) -> str:
        return "2"


@register_contract
class UpgradedUpgradeManager(UpgradeManager):

    @view
    def newFunction(self) -> str:
        return "upgraded"


@register_contract
class MockAbstract(Contract):

    def constructor(self, value: int = 0) -> None:
        self.storage["value"] = value

    @view
    def value(self) -> int:
        return self.storage.get("value", 0)


# ═══════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════

@pytest.fixture
def network_config():
    return get_network("devnet")


@pytest.fixture
def chain(network_config):
    """Fresh in-process devnet with funded dev accounts, mining every tx."""
    return LocalChain(network_config)


@pytest.fixture
def network(chain):
    return InProcessNetwork(chain)


@pytest.fixture
def dev_signers(chain):
    return [Signer(priv) for _, priv in chain.dev_keys]


@pytest.fixture
def make_config(network, network_config, dev_signers, tmp_path):
    """Builds deploy configs sharing one chain and project root, one per dev account."""
    def _make(signer_index: int = 0, contracts=None, **overrides) -> DeployConfig:
        return DeployConfig(
            network=overrides.pop("network", network),
            signer=dev_signers[signer_index],
            network_config=network_config,
            root_dir=str(tmp_path),
            contracts=parse_contracts(contracts or []),
            auto_confirm=overrides.pop("auto_confirm", True),
            sleep=overrides.pop("sleep", lambda seconds: None),
            **overrides,
        )
    return _make


@pytest.fixture
def config(make_config):
    return make_config(0)
