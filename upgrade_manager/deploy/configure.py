# MIT License
# Copyright (c) 2025 Hashborn

"""
Per-contract setter configuration.

`config/<contract_id>.py` in the project root defines

    def config(addresses, address, deploy_config):
        return {"setup": [{"getter": "fooString", "value": "foo"},
                          {"getter": "barAddress", "value": address("Other")}]}

For every setter whose getters disagree with the desired values, the setter
call is staged as a proposed call (or, with immediate config apply, sent
right away through the ledger's `call`, which needs a directly owned ledger).
"""

import importlib.util
import logging
import os
from typing import Any, Dict, List, Optional

from ..protocol.types.abi import encode_call, format_encoded_call
from ..protocol.types.common import InvalidInput, NotFound
from .execution import retry
from .ledger import LedgerClient, get_upgrade_manager
from .reconcile import PendingChanges
from .safe import QuorumSubmit, resolve_owner_submission, submit_owner_call

logger = logging.getLogger(__name__)

CONFIG_DIR = "config"


def values_equal(current: Any, desired: Any) -> bool:
    if isinstance(current, (list, tuple)) and isinstance(desired, (list, tuple)):
        return len(current) == len(desired) and all(values_equal(c, d) for c, d in zip(current, desired))
    if isinstance(current, str) and isinstance(desired, str) and current.startswith("0x") and desired.startswith("0x"):
        return current.lower() == desired.lower()
    return current == desired


def load_contract_config(config, contract_id: str, addresses: Dict[str, str]) -> Optional[Dict[str, List[Dict[str, Any]]]]:
    path = os.path.join(config.root_dir, CONFIG_DIR, f"{contract_id}.py")
    if not os.path.exists(path):
        return None

    spec = importlib.util.spec_from_file_location(f"upgrade_manager_config_{contract_id}", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    if not hasattr(module, "config"):
        raise InvalidInput(f"{path} must define a config(addresses, address, deploy_config) function")

    def address(other_id: str) -> str:
        if other_id not in addresses:
            raise NotFound(
                f"Could not find address for contract {other_id}, known addresses are {', '.join(addresses)}"
            )
        return addresses[other_id]

    return module.config(addresses=addresses, address=address, deploy_config=config)


def configure_contracts(config, pending_changes: PendingChanges, addresses: Dict[str, str],
                        ledger: Optional[LedgerClient] = None) -> None:
    logger.info(f"Configuring contracts on {config.describe_network()}")
    ledger = ledger or get_upgrade_manager(config)
    if config.immediate_config_apply and not config.dry_run:
        submission = resolve_owner_submission(config, ledger)
        if isinstance(submission, QuorumSubmit):
            raise InvalidInput(
                f"Immediate config apply needs a directly owned upgrade manager, but it is owned by safe "
                f"{submission.safe}; run without it to stage the setter calls for the next upgrade"
            )

    for contract in config.contracts:
        def log(msg: str):
            logger.info(f"[{contract.id}] {msg}")

        if contract.abstract:
            log(f"Skipping {contract.id} because abstract contracts are not configurable")
            continue

        address = addresses.get(contract.id)
        if not address:
            log(f"No address for {contract.id} (dry run?), skipping")
            continue

        log(f"Detecting config changes for {contract.id} ({address})")
        contract_config = load_contract_config(config, contract.id, addresses)
        if not contract_config:
            log(f"No config found for {contract.id} skipping")
            continue

        unchanged = True
        for setter, params in contract_config.items():
            current = [
                retry(lambda g=p["getter"]: config.network.call_method(address, g),
                      config.max_attempts, config.retry_base_delay, config.sleep)
                for p in params
            ]
            desired = [p["value"] for p in params]
            if all(values_equal(c, d) for c, d in zip(current, desired)):
                continue

            unchanged = False
            log(f"There are changes, need to call the setter function '{setter}'")
            encoded_call = encode_call(setter, *desired)
            log(format_encoded_call(encoded_call))

            if config.immediate_config_apply:
                log("Immediate apply")
                submit_owner_call(config, ledger, "call", contract.id, encoded_call)
            else:
                pending_changes.encoded_calls[contract.id] = encoded_call

        if unchanged:
            log("no changes")

    logger.info("Completed configurations")
