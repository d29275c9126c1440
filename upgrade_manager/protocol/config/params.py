# MIT License
# Copyright (c) 2025 Hashborn

import copy
import os
from typing import Dict, Optional

# Global Constants
DENOM = "um"
DECIMALS = 18

# Ledger limits
MAX_ADOPTED_CONTRACTS = 100
LEDGER_CONTRACT_VERSION = 1

# Execution driver defaults
DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_RETRY_BASE_DELAY_SEC = 1.0

DEFAULT_GAS_LIMIT = 5_000_000


class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 chain_id: str,
                 rpc_url: Optional[str] = None,
                 min_gas_price: int = 0,
                 default_gas_price: int = 0,
                 default_gas_limit: int = DEFAULT_GAS_LIMIT,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 retry_base_delay_sec: float = DEFAULT_RETRY_BASE_DELAY_SEC,
                 # Devnet specific funded accounts
                 dev_account_count: int = 0,
                 dev_account_balance: int = 0,
                 dev_mnemonic_seed: Optional[str] = None):
        self.network_id = network_id
        self.chain_id = chain_id
        self.rpc_url = rpc_url
        self.min_gas_price = min_gas_price
        self.default_gas_price = default_gas_price
        self.default_gas_limit = default_gas_limit
        self.max_attempts = max_attempts
        self.retry_base_delay_sec = retry_base_delay_sec
        self.dev_account_count = dev_account_count
        self.dev_account_balance = dev_account_balance
        self.dev_mnemonic_seed = dev_mnemonic_seed

    @property
    def is_local(self) -> bool:
        return self.rpc_url is None


NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        chain_id="um-devnet-1",
        dev_account_count=10,
        dev_account_balance=10_000 * 10**DECIMALS,
        # Deterministic seed for the in-process dev accounts
        dev_mnemonic_seed="test test test test test test test test test test test junk",
    ),
    "localhost": NetworkConfig(
        network_id="localhost",
        chain_id="um-devnet-1",
        rpc_url="http://localhost:8545",
        dev_account_count=10,
        dev_account_balance=10_000 * 10**DECIMALS,
        dev_mnemonic_seed="test test test test test test test test test test test junk",
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        chain_id="um-testnet-1",
        rpc_url="http://localhost:8000",
        min_gas_price=1000,
        default_gas_price=1000,
    ),
}


def get_network(name: Optional[str] = None) -> NetworkConfig:
    """Resolves a network by name (or UPM_NETWORK), applying the UPM_NODE override."""
    name = name or os.environ.get("UPM_NETWORK", "devnet")
    if name not in NETWORKS:
        raise ValueError(f"Unknown network '{name}', known networks: {', '.join(NETWORKS)}")
    config = copy.copy(NETWORKS[name])
    node_override = os.environ.get("UPM_NODE")
    if node_override and not config.is_local:
        config.rpc_url = node_override
    return config
