# MIT License
# Copyright (c) 2025 Hashborn

import logging
import random
from typing import Optional

from .configure import configure_contracts
from .create2 import deploy_create2_proxy
from .propose import propose_changes
from .reconcile import ReconcileResult, reconcile
from .status import get_protocol_status, render_table

logger = logging.getLogger(__name__)


def deploy(config, rng: Optional[random.Random] = None) -> ReconcileResult:
    """
    Full deploy pass: reconcile, configure, propose.

    Leaves the ledger with every change staged; `upgrade` applies them.
    """
    logger.info(f"Deploying to {config.describe_network()} from {config.deploy_address}")

    if any(c.deterministic for c in config.contracts) and not config.dry_run:
        funder = config.signer if config.network_config.dev_account_count else None
        if deploy_create2_proxy(config.network, funder=funder):
            logger.info("Deployed CREATE2 proxy")

    result = reconcile(config, rng=rng)
    configure_contracts(config, result.pending_changes, result.addresses)

    if config.dry_run:
        logger.info("Dry run, not proposing changes")
        for contract_id, implementation in result.pending_changes.new_implementations.items():
            logger.info(f"[{contract_id}] would propose implementation {implementation}")
        for contract_id, encoded_call in result.pending_changes.encoded_calls.items():
            logger.info(f"[{contract_id}] would propose call {encoded_call}")
        return result

    propose_changes(config, result.pending_changes, result.addresses)

    rows, _ = get_protocol_status(config, include_unchanged=True)
    print(render_table(rows))

    for address in result.unverified_impls:
        logger.info(f"New implementation deployed at {address}")
    return result
