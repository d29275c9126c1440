# MIT License
# Copyright (c) 2025 Hashborn

"""Owner-level ledger operations: the batch upgrade and the escape hatches around it."""

import logging
from typing import List, Optional

from ..protocol.types.common import InvalidInput, NotFound, PermissionDenied
from ..protocol.types.safe import SafeSignature
from .config import Cancelled, confirm
from .ledger import UPGRADE_MANAGER_CONTRACT, deploy_implementation, get_admin_address, get_upgrade_manager
from .safe import submit_owner_call
from .status import report_protocol_status

logger = logging.getLogger(__name__)


def upgrade(config, new_version: str) -> Optional[List[SafeSignature]]:
    """
    Applies every pending change in one batch, guarded by the ledger nonce read here.

    Returns partial safe signatures when the owner is a safe without quorum yet.
    """
    logger.info(f"Sending transactions from {config.deploy_address}")
    try:
        report_protocol_status(config, quiet=True)
    except NotFound as e:
        logger.warning(f"Skipping status report: {e.message}")

    ledger = get_upgrade_manager(config)
    nonce = ledger.nonce()
    logger.info(f"Upgrade Manager nonce for these changes: {nonce}")
    current_version = ledger.version()

    if not confirm(
        f"Confirm upgrade of contracts with above changes ({current_version} -> {new_version})?",
        config.auto_confirm,
    ):
        logger.info("Cancelling upgrade")
        raise Cancelled("Upgrade cancelled")

    return submit_owner_call(config, ledger, "upgrade", new_version, nonce)


def self_upgrade(config) -> Optional[List[SafeSignature]]:
    """
    Upgrades the ledger's own implementation to the local UpgradeManager build.

    Only possible while the ledger owns the proxy admin of its own proxy,
    since the ledger cannot route an upgrade of itself through `upgrade()`.
    """
    ledger = get_upgrade_manager(config)
    proxy_admin = get_admin_address(config.network, ledger.address)
    if config.network.call_method(proxy_admin, "owner") != ledger.address:
        raise PermissionDenied(f"Upgrade manager does not own its proxy admin {proxy_admin}, cannot self upgrade")

    current = config.network.call_method(proxy_admin, "getProxyImplementation", ledger.address)
    implementation = deploy_implementation(config, UPGRADE_MANAGER_CONTRACT)
    if implementation == current:
        raise InvalidInput("Upgrade manager implementation is already up to date")

    logger.info(f"Upgrading upgrade manager from {current} to {implementation}")
    return submit_owner_call(config, ledger, "selfUpgrade", implementation, proxy_admin)


def disown_contract(config, contract_id: str, new_owner: str) -> Optional[List[SafeSignature]]:
    ledger = get_upgrade_manager(config)
    if not ledger.adopted_address(contract_id):
        raise NotFound(f"Contract {contract_id} is not adopted")
    logger.info(f"Disowning {contract_id}, new owner {new_owner}")
    return submit_owner_call(config, ledger, "disown", contract_id, new_owner)


def change_proxy_admin(config, proxy: str, new_admin: str) -> Optional[List[SafeSignature]]:
    ledger = get_upgrade_manager(config)
    proxy_admin = get_admin_address(config.network, proxy)
    logger.info(f"Changing admin of {proxy} from {proxy_admin} to {new_admin}")
    return submit_owner_call(config, ledger, "changeProxyAdmin", proxy_admin, proxy, new_admin)


def disown_proxy_admin(config, proxy_admin: str, new_owner: str) -> Optional[List[SafeSignature]]:
    ledger = get_upgrade_manager(config)
    logger.info(f"Transferring proxy admin {proxy_admin} to {new_owner}")
    return submit_owner_call(config, ledger, "disownProxyAdmin", proxy_admin, new_owner)
