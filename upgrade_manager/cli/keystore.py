# MIT License
# Copyright (c) 2025 Hashborn

import os
import json
import time
import logging
from typing import List, Dict, Optional
from ..protocol.crypto.keys import generate_private_key, private_key_from_hex, public_key_from_private
from ..protocol.crypto.addresses import address_from_pubkey

logger = logging.getLogger(__name__)

KEYSTORE_DIR = os.path.expanduser("~/.upgrade-manager/keys")


class KeyStore:
    """Deploy keys stored as one JSON file per name."""

    def __init__(self, root_dir: Optional[str] = None):
        self.root_dir = root_dir or os.environ.get("UPM_KEYSTORE", KEYSTORE_DIR)
        os.makedirs(self.root_dir, exist_ok=True)

    def create_key(self, name: str) -> Dict[str, str]:
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")
        return self._store(name, generate_private_key())

    def import_key(self, name: str, private_key_hex: str) -> Dict[str, str]:
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")

        return self._store(name, private_key_from_hex(private_key_hex))

    def get_key(self, name: str) -> Optional[Dict[str, str]]:
        path = self._path(name)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read key file {path}: {e}")
            return None

    def private_key(self, name: str) -> bytes:
        key = self.get_key(name)
        if not key:
            raise ValueError(f"Key '{name}' not found in {self.root_dir}")
        return bytes.fromhex(key["private_key"])

    def list_keys(self) -> List[Dict[str, str]]:
        """Lists all available keys (without private info)."""
        keys = []
        for filename in sorted(os.listdir(self.root_dir)):
            if filename.endswith(".json"):
                data = self.get_key(filename[:-5])
                if data:
                    keys.append({
                        "name": data["name"],
                        "address": data["address"],
                        "public_key": data["public_key"]
                    })
        return keys

    def delete_key(self, name: str) -> bool:
        path = self._path(name)
        if os.path.exists(path):
            os.remove(path)
            return True
        return False

    def _path(self, name: str) -> str:
        return os.path.join(self.root_dir, f"{name}.json")

    def _store(self, name: str, priv: bytes) -> Dict[str, str]:
        pub = public_key_from_private(priv)
        key_data = {
            "name": name,
            "address": address_from_pubkey(pub),
            "public_key": pub.hex(),
            "private_key": priv.hex(),
            "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        }
        path = self._path(name)
        with open(path, "w") as f:
            json.dump(key_data, f, indent=2)
        # Secure permissions
        os.chmod(path, 0o600)
        return key_data
