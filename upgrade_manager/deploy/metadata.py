# MIT License
# Copyright (c) 2025 Hashborn

"""
Persisted local deploy state.

* `upgrade-manager-deploy-data-<network>.json`: where the ledger lives.
* `.upgrade-manager/<chain_id>.json`: implementation manifest, i.e. every
  implementation deployed from this project keyed by code hash, and the
  deployer's shared proxy admin.
"""

import json
import os
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

UPGRADE_MANAGER_ADDRESS_KEY = "upgradeManagerAddress"
MANIFEST_DIR = ".upgrade-manager"


def _read_json(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        return json.load(f)


def _write_json(path: str, data: dict) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    os.replace(tmp_path, path)


def metadata_path(root_dir: str, network_id: str) -> str:
    return os.path.join(os.path.abspath(root_dir), f"upgrade-manager-deploy-data-{network_id}.json")


def read_metadata(root_dir: str, network_id: str, key: str = UPGRADE_MANAGER_ADDRESS_KEY) -> Optional[str]:
    return _read_json(metadata_path(root_dir, network_id)).get(key)


def write_metadata(root_dir: str, network_id: str, value: str, key: str = UPGRADE_MANAGER_ADDRESS_KEY) -> None:
    path = metadata_path(root_dir, network_id)
    metadata = _read_json(path)
    metadata[key] = value
    _write_json(path, metadata)
    logger.debug(f"Wrote {key}={value} to {path}")


class ImplementationManifest:

    def __init__(self, root_dir: str, chain_id: str):
        self.path = os.path.join(os.path.abspath(root_dir), MANIFEST_DIR, f"{chain_id}.json")
        data = _read_json(self.path)
        self.proxy_admin: Optional[str] = data.get("proxyAdmin")
        self.impls: Dict[str, Dict[str, str]] = data.get("impls", {})

    def implementation(self, code_hash: str) -> Optional[str]:
        entry = self.impls.get(code_hash)
        return entry["address"] if entry else None

    def add_implementation(self, code_hash: str, contract_name: str, address: str) -> None:
        self.impls[code_hash] = {"address": address, "contractName": contract_name}
        self.save()

    def set_proxy_admin(self, address: str) -> None:
        self.proxy_admin = address
        self.save()

    def implementation_addresses(self) -> List[str]:
        return [entry["address"] for entry in self.impls.values()]

    def save(self) -> None:
        _write_json(self.path, {"proxyAdmin": self.proxy_admin, "impls": self.impls})
