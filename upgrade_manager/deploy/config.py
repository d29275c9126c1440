# MIT License
# Copyright (c) 2025 Hashborn

"""
Deploy configuration.

The declared contracts come from `upgrade-manager.json` in the project root:

    {"contracts": ["MockUpgradeableContract",
                   {"id": "Second", "contract": "MockUpgradeableContract"},
                   {"id": "Lib", "contract": "MockAbstract", "abstract": true,
                    "deterministic": true, "constructorArgs": [1]}]}
"""

import json
import os
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..protocol.config.params import NetworkConfig
from ..protocol.types.common import InvalidInput
from ..protocol.types.safe import SafeSignature
from .artifacts import ArtifactStore
from .network import Network
from .signer import Signer

logger = logging.getLogger(__name__)

PROJECT_CONFIG_FILE = "upgrade-manager.json"


class ContractConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    contract: str
    abstract: bool = False
    # True for the zero salt, or a fixed salt string
    deterministic: Union[bool, str] = False
    constructor_args: List[Any] = Field(default_factory=list, alias="constructorArgs")


def parse_contracts(entries: List[Union[str, dict]]) -> List[ContractConfig]:
    contracts = []
    for entry in entries:
        if isinstance(entry, str):
            contracts.append(ContractConfig(id=entry, contract=entry))
            continue
        if not isinstance(entry, dict) or "id" not in entry:
            raise InvalidInput(f"Contract entry must be a name or an object with an id, got {entry!r}")

        contract_id = entry["id"]
        if entry.get("deterministic") and not entry.get("abstract"):
            raise InvalidInput(
                f"Contract {contract_id} is deterministic but not abstract - only both or neither are currently supported"
            )
        if "constructorArgs" in entry and not entry.get("abstract"):
            raise InvalidInput(f"Contract {contract_id} has constructorArgs but is not abstract, this is not supported")

        try:
            contracts.append(ContractConfig(**{"contract": contract_id, **entry}))
        except ValidationError as e:
            raise InvalidInput(f"Invalid config for contract {contract_id}: {e}")

    seen = set()
    for c in contracts:
        if c.id in seen:
            raise InvalidInput(f"Duplicate contract id {c.id}")
        seen.add(c.id)
    return contracts


def load_contracts(root_dir: str) -> List[ContractConfig]:
    path = os.path.join(root_dir, PROJECT_CONFIG_FILE)
    if not os.path.exists(path):
        logger.warning(f"No {PROJECT_CONFIG_FILE} in {root_dir}, no contracts declared")
        return []
    with open(path, "r") as f:
        data = json.load(f)
    return parse_contracts(data.get("contracts", []))


@dataclass
class DeployConfig:
    network: Network
    signer: Signer
    network_config: NetworkConfig
    root_dir: str = "."
    contracts: List[ContractConfig] = field(default_factory=list)
    artifacts: ArtifactStore = field(default_factory=ArtifactStore)
    dry_run: bool = False
    auto_confirm: bool = False
    immediate_config_apply: bool = False
    prior_signatures: List[SafeSignature] = field(default_factory=list)
    max_attempts: Optional[int] = None
    retry_base_delay: Optional[float] = None
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        if self.max_attempts is None:
            self.max_attempts = self.network_config.max_attempts
        if self.retry_base_delay is None:
            self.retry_base_delay = self.network_config.retry_base_delay_sec

    @property
    def deploy_address(self) -> str:
        return self.signer.address

    def contract(self, contract_id: str) -> Optional[ContractConfig]:
        for c in self.contracts:
            if c.id == contract_id:
                return c
        return None

    def describe_network(self) -> str:
        where = self.network_config.rpc_url or "in-process"
        return f"{self.network_config.network_id} ({self.network.chain_id}, {where})"


def confirm(message: str, auto_confirm: bool = False, input_fn: Callable[[str], str] = input) -> bool:
    """Asks for a yes/no confirmation. UPM_AUTOCONFIRM=true answers yes."""
    if auto_confirm or os.environ.get("UPM_AUTOCONFIRM") == "true":
        logger.info(f"{message} (auto-confirmed)")
        return True
    try:
        answer = input_fn(f"{message} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


class Cancelled(Exception):
    """The operator declined a confirmation prompt."""
