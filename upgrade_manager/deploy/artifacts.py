# MIT License
# Copyright (c) 2025 Hashborn

import json
import os
import logging
from typing import Any, Dict, List, Optional

from ..chain.contracts import Artifact, ContractRegistry, get_contract_registry
from ..protocol.crypto.hash import hash_bytecode_without_metadata, to_hex

logger = logging.getLogger(__name__)


class ArtifactStore:
    """
    Local build output, by contract name.

    Artifacts are compiled from the contract registry; JSON files in
    `artifacts_dir` (`<ContractName>.json`) take precedence when present.
    """

    def __init__(self, registry: ContractRegistry = None, artifacts_dir: Optional[str] = None):
        self.registry = registry or get_contract_registry()
        self.artifacts_dir = artifacts_dir
        self._cache: Dict[str, Artifact] = {}

    def get(self, contract_name: str) -> Artifact:
        if contract_name not in self._cache:
            self._cache[contract_name] = self._load(contract_name)
        return self._cache[contract_name]

    def _load(self, contract_name: str) -> Artifact:
        if self.artifacts_dir:
            path = os.path.join(self.artifacts_dir, f"{contract_name}.json")
            if os.path.exists(path):
                with open(path, "r") as f:
                    logger.debug(f"Loading artifact {contract_name} from {path}")
                    return Artifact.model_validate(json.load(f))
        try:
            return self.registry.artifact(contract_name)
        except KeyError:
            raise KeyError(f"No artifact for contract {contract_name}, known contracts: {', '.join(self.registry.list_contracts())}")

    def init_code(self, contract_name: str, *constructor_args: Any) -> str:
        return to_hex(self.get(contract_name).init_code(*constructor_args))

    def code_hash(self, contract_name: str) -> str:
        """Metadata-stripped hash of the deployed bytecode."""
        return hash_bytecode_without_metadata(self.get(contract_name).deployed_bytecode)

    def function_names(self, contract_name: str) -> List[str]:
        return [entry["name"] for entry in self.get(contract_name).abi]

    def write(self, contract_name: str, out_dir: str) -> str:
        os.makedirs(out_dir, exist_ok=True)
        path = os.path.join(out_dir, f"{contract_name}.json")
        with open(path, "w") as f:
            json.dump(self.get(contract_name).model_dump(), f, indent=2)
        return path
