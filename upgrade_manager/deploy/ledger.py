# MIT License
# Copyright (c) 2025 Hashborn

"""
Client side of the UpgradeManager ledger, plus the proxy deployment helpers
the deploy flow needs around it.
"""

import logging
from typing import Any, Dict, List, Optional

from ..chain.contracts.proxy import ADMIN_SLOT, IMPLEMENTATION_SLOT
from ..protocol.crypto.addresses import is_zero_address
from ..protocol.crypto.hash import hash_bytecode_without_metadata, id_hash
from ..protocol.types.abi import encode_call, is_empty_call_data
from ..protocol.types.common import NotFound
from .execution import deploy_contract, retry, send_transaction
from .metadata import ImplementationManifest, read_metadata, write_metadata, metadata_path
from .network import Network

logger = logging.getLogger(__name__)

UPGRADE_MANAGER_CONTRACT = "UpgradeManager"
PROXY_CONTRACT = "TransparentUpgradeableProxy"
PROXY_ADMIN_CONTRACT = "ProxyAdmin"


class LedgerClient:
    """Read surface of a deployed UpgradeManager; writes go through `send`."""

    def __init__(self, network: Network, address: str):
        self.network = network
        self.address = address

    def __repr__(self) -> str:
        return f"LedgerClient({self.address})"

    def _view(self, method: str, *args: Any) -> Any:
        return self.network.call_method(self.address, method, *args)

    @staticmethod
    def encode(method: str, *args: Any) -> str:
        return encode_call(method, *args)

    def send(self, config, method: str, *args: Any) -> str:
        """Sends a ledger call from the deploy signer through the execution driver."""
        return send_transaction(config, self.address, encode_call(method, *args))

    # --- Reads ---

    def nonce(self) -> int:
        return self._view("nonce")

    def version(self) -> str:
        return self._view("version")

    def owner(self) -> str:
        return self._view("owner")

    def proposers(self) -> List[str]:
        return self._view("getUpgradeProposers")

    def proxies(self) -> List[str]:
        return self._view("getProxies")

    def adopted_address(self, contract_id: str) -> Optional[str]:
        address = self._view("adoptedContractAddresses", contract_id)
        return None if is_zero_address(address) else address

    def adopted_record(self, proxy: str) -> Dict[str, str]:
        return self._view("adoptedContractsByProxyAddress", proxy)

    def proxies_with_pending_changes(self) -> List[str]:
        return self._view("getProxiesWithPendingChanges")

    def pending_upgrade_address(self, proxy: str) -> Optional[str]:
        address = self._view("getPendingUpgradeAddress", proxy)
        return None if is_zero_address(address) else address

    def pending_call_data(self, proxy: str) -> Optional[str]:
        data = self._view("getPendingCallData", proxy)
        return None if is_empty_call_data(data) else data

    def proposed_abstracts(self) -> List[Dict[str, str]]:
        count = self._view("getProposedAbstractContractsLength")
        return [self._view("proposedAbstractContracts", i) for i in range(count)]

    def latest_abstract_proposals(self) -> Dict[str, str]:
        """Latest proposed address per abstract id, the one an upgrade would apply."""
        latest: Dict[str, str] = {}
        for proposal in self.proposed_abstracts():
            latest[proposal["id"]] = proposal["contractAddress"]
        return latest

    def abstract_address(self, contract_id: str) -> Optional[str]:
        address = self._view("getAbstractContractAddress", contract_id)
        return None if is_zero_address(address) else address

    def abstract_id_hashes(self) -> List[str]:
        return self._view("getAbstractContractIdHashes")

    def abstract_contract(self, contract_id: str) -> Dict[str, str]:
        return self._view("abstractContracts", id_hash(contract_id))


# --- ERC1967 storage reads ---

def get_implementation_address(network: Network, proxy: str) -> str:
    address = network.get_storage_at(proxy, IMPLEMENTATION_SLOT)
    if not address:
        raise NotFound(f"{proxy} is not a transparent proxy (no implementation slot)")
    return address


def get_admin_address(network: Network, proxy: str) -> str:
    address = network.get_storage_at(proxy, ADMIN_SLOT)
    if not address:
        raise NotFound(f"{proxy} is not a transparent proxy (no admin slot)")
    return address


# --- Bytecode comparison ---

def deployed_implementation_matches(config, contract_name: str, implementation: str) -> bool:
    deployed_code = config.network.get_code(implementation)
    if not deployed_code or deployed_code == "0x":
        return False

    deployed_hash = hash_bytecode_without_metadata(deployed_code)
    local_hash = config.artifacts.code_hash(contract_name)
    logger.info(f"On chain code hash at {implementation} (without metadata): {deployed_hash}")
    logger.info(f"Local bytecode hash (without metadata): {local_hash}")
    return deployed_hash == local_hash


def deployed_code_matches(config, contract_name: str, proxy: str) -> bool:
    implementation = get_implementation_address(config.network, proxy)
    logger.info(f"Checking implementation of {contract_name}@{proxy} (current implementation: {implementation})")
    return deployed_implementation_matches(config, contract_name, implementation)


# --- Deployment ---

def manifest(config) -> ImplementationManifest:
    return ImplementationManifest(config.root_dir, config.network.chain_id)


def deploy_implementation(config, contract_name: str) -> str:
    """
    Address of an implementation contract for `contract_name`.

    A manifest-recorded deployment is reused while the code there still
    matches the local artifact; otherwise a new one is deployed and recorded.
    """
    impls = manifest(config)
    code_hash = config.artifacts.code_hash(contract_name)
    known = impls.implementation(code_hash)
    if known and deployed_implementation_matches(config, contract_name, known):
        logger.info(f"Reusing implementation of {contract_name} at {known}")
        return known

    address = deploy_contract(config, config.artifacts.init_code(contract_name))
    impls.add_implementation(code_hash, contract_name, address)
    logger.info(f"Deployed implementation of {contract_name} to {address}")
    return address


def prepare_upgrade(config, proxy: str, contract_name: str) -> str:
    """Implementation address that `proxy` should be upgraded to for the local `contract_name`."""
    get_implementation_address(config.network, proxy)
    return deploy_implementation(config, contract_name)


def get_or_deploy_proxy_admin(config) -> str:
    """The deployer's shared ProxyAdmin, deployed on first use."""
    impls = manifest(config)
    if impls.proxy_admin and config.network.has_code(impls.proxy_admin):
        return impls.proxy_admin

    address = deploy_contract(config, config.artifacts.init_code(PROXY_ADMIN_CONTRACT))
    impls.set_proxy_admin(address)
    logger.info(f"Deployed shared ProxyAdmin to {address}")
    return address


def deploy_new_proxy_and_implementation(config, contract_name: str, initializer_args: List[Any]) -> str:
    """Deploys an implementation and a proxy initialized with `initialize(*initializer_args)`."""
    implementation = deploy_implementation(config, contract_name)
    proxy_admin = get_or_deploy_proxy_admin(config)
    logger.info(f"Deploying proxy for {contract_name} with initializer args {initializer_args}")
    init_code = config.artifacts.init_code(
        PROXY_CONTRACT, implementation, proxy_admin, encode_call("initialize", *initializer_args)
    )
    return deploy_contract(config, init_code)


def get_upgrade_manager(config) -> LedgerClient:
    address = read_metadata(config.root_dir, config.network_config.network_id)
    if not address:
        raise NotFound(
            f"Could not find upgrade manager address in "
            f"{metadata_path(config.root_dir, config.network_config.network_id)}"
        )
    return LedgerClient(config.network, address)


def get_or_deploy_upgrade_manager(config) -> LedgerClient:
    if read_metadata(config.root_dir, config.network_config.network_id):
        ledger = get_upgrade_manager(config)
        # Sanity check that it's a real contract
        nonce = retry(ledger.nonce, config.max_attempts, config.retry_base_delay, config.sleep)
        logger.info(f"Found existing upgrade manager at {ledger.address}, nonce {nonce}")
        return ledger

    logger.info("Deploying new upgrade manager")
    address = deploy_new_proxy_and_implementation(config, UPGRADE_MANAGER_CONTRACT, [config.deploy_address])
    write_metadata(config.root_dir, config.network_config.network_id, address)
    logger.info(f"Deployed new upgrade manager to {address}")

    ledger = LedgerClient(config.network, address)
    ledger.send(config, "setup", [config.deploy_address])
    logger.info(f"Added {config.deploy_address} as upgrade proposer")
    return ledger
