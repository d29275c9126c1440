# MIT License
# Copyright (c) 2025 Hashborn

"""
Contracts hosted by the local chain.

Importing this package registers the built-in contracts.
"""

from .base import (
    Artifact,
    Contract,
    ContractRegistry,
    Ownable,
    Initializable,
    compile_contract,
    external,
    view,
    register_contract,
    get_contract_registry,
)
from .proxy import TransparentUpgradeableProxy, ProxyAdmin
from .upgrade_manager import UpgradeManager
from .safe import Safe, SENTINEL_OWNERS
from .create2_proxy import Create2Deployer

__all__ = [
    'Artifact',
    'Contract',
    'ContractRegistry',
    'Ownable',
    'Initializable',
    'compile_contract',
    'external',
    'view',
    'register_contract',
    'get_contract_registry',
    'TransparentUpgradeableProxy',
    'ProxyAdmin',
    'UpgradeManager',
    'Safe',
    'SENTINEL_OWNERS',
    'Create2Deployer',
]
