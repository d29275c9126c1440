# MIT License
# Copyright (c) 2025 Hashborn

"""
Reconciler: diffs the declared contracts against the ledger and the local
build, deploys what is missing and works out the changes to propose.

Entries are visited one after the other in a shuffled order. The shuffle
only spreads contention on shared networks where transactions from earlier
runs may still be stuck; it carries no meaning for the result.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..observability import metrics
from .config import ContractConfig
from .create2 import CREATE2_PROXY_ADDRESS, compute_create2_address, create2_deployment_data, validate_create2_bytecode
from .execution import deploy_contract, send_transaction
from .ledger import (
    LedgerClient,
    deployed_code_matches,
    deployed_implementation_matches,
    deploy_new_proxy_and_implementation,
    get_admin_address,
    get_or_deploy_upgrade_manager,
    manifest,
    prepare_upgrade,
)
from ..protocol.types.abi import encode_call

logger = logging.getLogger(__name__)

DRY_RUN_PLACEHOLDER = "<Unknown - dry run>"


@dataclass
class PendingChanges:
    new_implementations: Dict[str, str] = field(default_factory=dict)
    encoded_calls: Dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.new_implementations and not self.encoded_calls


@dataclass
class ReconcileResult:
    addresses: Dict[str, str] = field(default_factory=dict)
    pending_changes: PendingChanges = field(default_factory=PendingChanges)
    unverified_impls: List[str] = field(default_factory=list)


class Reconciler:

    def __init__(self, config, ledger: Optional[LedgerClient] = None, rng: Optional[random.Random] = None):
        self.config = config
        self.ledger = ledger
        self.rng = rng or random.Random()
        self.result = ReconcileResult()
        self.proposed_abstracts: Dict[str, str] = {}

    def run(self) -> ReconcileResult:
        started = time.monotonic()
        previous_impls = set(manifest(self.config).implementation_addresses())

        if self.ledger is None:
            self.ledger = get_or_deploy_upgrade_manager(self.config)
        self.proposed_abstracts = self.ledger.latest_abstract_proposals()

        contracts = list(self.config.contracts)
        self.rng.shuffle(contracts)
        for contract in contracts:
            self.reconcile_contract(contract)

        self.result.unverified_impls = [
            a for a in manifest(self.config).implementation_addresses() if a not in previous_impls
        ]
        metrics.reconcile_duration_seconds.observe(time.monotonic() - started)
        return self.result

    def reconcile_contract(self, contract: ContractConfig) -> None:
        proxy = self.ledger.adopted_address(contract.id)
        if proxy and not contract.abstract:
            self._reconcile_adopted(contract, proxy)
        elif contract.abstract:
            self._reconcile_abstract(contract)
        else:
            self._deploy_and_adopt(contract)

    def _log(self, contract: ContractConfig, msg: str) -> None:
        logger.info(f"[{contract.id}] {msg}")

    def _reconcile_adopted(self, contract: ContractConfig, proxy: str) -> None:
        self.result.addresses[contract.id] = proxy
        self._log(contract, f"Checking {contract.id} ({contract.contract}@{proxy}) ...")

        if deployed_code_matches(self.config, contract.contract, proxy):
            self._log(contract, f"Deployed bytecode already matches for {contract.contract}@{proxy} - no need to deploy new version")
            return

        self._log(contract, f"Bytecode changed for {contract.contract}@{proxy}... Proposing upgrade")
        if self.config.dry_run:
            self.result.pending_changes.new_implementations[contract.id] = DRY_RUN_PLACEHOLDER
        else:
            self.result.pending_changes.new_implementations[contract.id] = prepare_upgrade(self.config, proxy, contract.contract)

    def _reconcile_abstract(self, contract: ContractConfig) -> None:
        current = self.ledger.abstract_address(contract.id)
        proposed = self.proposed_abstracts.get(contract.id)

        if current and not proposed and deployed_implementation_matches(self.config, contract.contract, current):
            self._log(contract, f"Deployed implementation of {contract.contract} is already up to date")
            self.result.addresses[contract.id] = current
            return
        if proposed and deployed_implementation_matches(self.config, contract.contract, proposed):
            self._log(contract, f"Proposed implementation of {contract.contract} is already up to date")
            self.result.addresses[contract.id] = proposed
            return

        self._log(contract, f"Deploying new abstract contract {contract.id} ({contract.contract})...")
        if self.config.dry_run:
            return

        if contract.deterministic:
            address = self._deploy_deterministic(contract)
        else:
            address = deploy_contract(
                self.config, self.config.artifacts.init_code(contract.contract, *contract.constructor_args)
            )

        self._log(contract, f"Deployed new abstract contract {contract.id} ({contract.contract}) to {address}")
        self.result.addresses[contract.id] = address
        self.ledger.send(self.config, "proposeAbstract", contract.id, address)
        metrics.proposals_total.labels(proposal_type="abstract").inc()

    def _deploy_deterministic(self, contract: ContractConfig) -> str:
        salt = contract.deterministic
        artifact = self.config.artifacts.get(contract.contract)
        self._log(contract, f"Deploying deterministically with salt {salt if isinstance(salt, str) else 'zero'}")

        address = compute_create2_address(artifact.bytecode, contract.constructor_args, salt)
        if self.config.network.has_code(address):
            return address
        validate_create2_bytecode(self.config.network)
        send_transaction(
            self.config, CREATE2_PROXY_ADDRESS,
            create2_deployment_data(artifact.bytecode, contract.constructor_args, salt),
        )
        return address

    def _deploy_and_adopt(self, contract: ContractConfig) -> None:
        self._log(contract, f"Deploying new contract {contract.id} ({contract.contract})...")
        if self.config.dry_run:
            return

        proxy = deploy_new_proxy_and_implementation(self.config, contract.contract, [self.ledger.address])
        self._log(contract, f"Deployed new proxy for {contract.id} (contract name: {contract.contract}) to address {proxy}, adopting")
        self.result.addresses[contract.id] = proxy

        proxy_admin = get_admin_address(self.config.network, proxy)
        admin_owner = self.config.network.call_method(proxy_admin, "owner")
        if admin_owner != self.ledger.address:
            self._log(contract, f"Proxy admin {proxy_admin} is not owned by upgrade manager, it is owned by {admin_owner}, transferring")
            send_transaction(self.config, proxy_admin, encode_call("transferOwnership", self.ledger.address))

        self.ledger.send(self.config, "adoptContract", contract.id, proxy, proxy_admin)
        self._log(contract, f"New contract {contract.id} adopted successfully")


def reconcile(config, ledger: Optional[LedgerClient] = None, rng: Optional[random.Random] = None) -> ReconcileResult:
    return Reconciler(config, ledger, rng).run()
