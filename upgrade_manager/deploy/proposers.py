# MIT License
# Copyright (c) 2025 Hashborn

import logging
from typing import List, Optional

from ..protocol.types.common import Conflict, NotFound
from ..protocol.types.safe import SafeSignature
from .ledger import get_upgrade_manager
from .safe import submit_owner_call

logger = logging.getLogger(__name__)


def add_proposer(config, proposer: str) -> Optional[List[SafeSignature]]:
    ledger = get_upgrade_manager(config)
    if proposer in ledger.proposers():
        raise Conflict(f"{proposer} is already a proposer")
    logger.info(f"Adding proposer {proposer}")
    result = submit_owner_call(config, ledger, "addUpgradeProposer", proposer)
    logger.info("Success" if result is None else "Waiting for more safe signatures")
    return result


def remove_proposer(config, proposer: str) -> Optional[List[SafeSignature]]:
    ledger = get_upgrade_manager(config)
    if proposer not in ledger.proposers():
        raise NotFound(f"{proposer} is not a proposer")
    logger.info(f"Removing proposer {proposer}")
    result = submit_owner_call(config, ledger, "removeUpgradeProposer", proposer)
    logger.info("Success" if result is None else "Waiting for more safe signatures")
    return result


def withdraw_all_abstract_proposals(config) -> None:
    ledger = get_upgrade_manager(config)
    if not ledger.proposed_abstracts():
        raise NotFound("There are no abstract contract proposals")
    ledger.send(config, "withdrawAllAbstractProposals")


def withdraw_changes(config, contract_id: str) -> None:
    ledger = get_upgrade_manager(config)
    proxy = ledger.adopted_address(contract_id)
    if not proxy:
        raise NotFound(f"Contract {contract_id} is not adopted")
    if proxy not in ledger.proxies_with_pending_changes():
        raise NotFound(f"No pending changes for {contract_id}")
    ledger.send(config, "withdrawChanges", contract_id)
