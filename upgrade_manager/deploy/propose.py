# MIT License
# Copyright (c) 2025 Hashborn

import logging
from typing import Dict, Optional

from ..observability import metrics
from .ledger import LedgerClient, get_upgrade_manager
from .reconcile import PendingChanges

logger = logging.getLogger(__name__)


def proposal_matches(ledger: LedgerClient, proxy: str, new_implementation: Optional[str],
                     encoded_call: Optional[str]) -> bool:
    """True when the change pending on the ledger for `proxy` is exactly the desired one."""
    if ledger.pending_upgrade_address(proxy) != (new_implementation or None):
        return False
    return ledger.pending_call_data(proxy) == (encoded_call or None)


def propose_changes(config, pending_changes: PendingChanges, addresses: Dict[str, str],
                    ledger: Optional[LedgerClient] = None) -> int:
    """
    Stages the reconciled changes on the ledger. Returns the number of proposals sent.

    A proxy whose pending change already matches is skipped; a different
    pending change is withdrawn first.
    """
    ledger = ledger or get_upgrade_manager(config)
    already_pending = ledger.proxies_with_pending_changes()
    sent = 0

    for contract_id, proxy in addresses.items():
        new_implementation = pending_changes.new_implementations.get(contract_id)
        encoded_call = pending_changes.encoded_calls.get(contract_id)

        def log(msg: str):
            logger.info(f"[{contract_id}] {msg}")

        def propose_with_withdraw_if_needed(proposal_type: str, method: str, *args) -> None:
            if proxy in already_pending:
                log(f"Withdraw needed first for {contract_id}")
                ledger.send(config, "withdrawChanges", contract_id)
            ledger.send(config, method, contract_id, *args)
            metrics.proposals_total.labels(proposal_type=proposal_type).inc()

        if not new_implementation and not encoded_call:
            continue
        elif proposal_matches(ledger, proxy, new_implementation, encoded_call):
            log(f"Already proposed upgrade for {contract_id} matches, no action needed")
            continue
        elif new_implementation and encoded_call:
            log(f"Proposing upgrade and call for {contract_id}")
            propose_with_withdraw_if_needed("upgrade_and_call", "proposeUpgradeAndCall", new_implementation, encoded_call)
        elif new_implementation:
            log(f"Proposing upgrade for {contract_id}")
            propose_with_withdraw_if_needed("upgrade", "proposeUpgrade", new_implementation)
            log("Successfully proposed upgrade")
        else:
            log(f"Proposing call for {contract_id}")
            propose_with_withdraw_if_needed("call", "proposeCall", encoded_call)
        sent += 1

    return sent
