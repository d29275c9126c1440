# MIT License
# Copyright (c) 2025 Hashborn

"""
Deterministic deployment through a singleton CREATE2 proxy.

The proxy is created by the first transaction of a fixed one-time signer,
so it lands at the same well-known address on every chain. A contract
deployed through it gets an address that only depends on the proxy address,
the salt and the init code (bytecode followed by constructor arguments).
"""

import logging
from typing import Any, Optional, Sequence, Union

from ..chain.contracts import Create2Deployer, compile_contract
from ..protocol.crypto.addresses import address_from_pubkey, contract_address, create2_address
from ..protocol.crypto.hash import sha256, from_hex, to_hex
from ..protocol.crypto.keys import public_key_from_private
from ..protocol.types.abi import encode_args
from ..protocol.types.common import IntegrityFailure, InvalidInput, NotDeployed
from .network import Network
from .signer import Signer

logger = logging.getLogger(__name__)

# Publicly known key: only ever used for the proxy's deployment transaction
CREATE2_PROXY_DEPLOYMENT_SIGNER_KEY = sha256(b"upgrade-manager/create2-deployment-signer")
CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS = address_from_pubkey(public_key_from_private(CREATE2_PROXY_DEPLOYMENT_SIGNER_KEY))

CREATE2_PROXY_DEPLOYMENT_GAS_PRICE = 100_000_000_000
CREATE2_PROXY_DEPLOYMENT_GAS_LIMIT = 100_000
CREATE2_PROXY_DEPLOYMENT_COST = CREATE2_PROXY_DEPLOYMENT_GAS_PRICE * CREATE2_PROXY_DEPLOYMENT_GAS_LIMIT

CREATE2_PROXY_ADDRESS = contract_address(CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS, 0)

_PROXY_ARTIFACT = compile_contract(Create2Deployer)
CREATE2_PROXY_BYTECODE = _PROXY_ARTIFACT.deployed_bytecode

EMPTY_BYTES_32 = "0x" + "00" * 32


def deployment_signer() -> Signer:
    return Signer(
        CREATE2_PROXY_DEPLOYMENT_SIGNER_KEY,
        gas_price=CREATE2_PROXY_DEPLOYMENT_GAS_PRICE,
        gas_limit=CREATE2_PROXY_DEPLOYMENT_GAS_LIMIT,
    )


def validate_create2_bytecode(network: Network) -> None:
    code = network.get_code(CREATE2_PROXY_ADDRESS)
    if code == CREATE2_PROXY_BYTECODE:
        return
    if code in ("", "0x"):
        raise NotDeployed(f"CREATE2 bytecode is not deployed to contract address {CREATE2_PROXY_ADDRESS}")
    raise IntegrityFailure("Unexpected CREATE2 proxy code, this should never happen, something is very wrong")


def deploy_create2_proxy(network: Network, funder: Optional[Signer] = None) -> bool:
    """
    Makes sure the CREATE2 proxy exists. Returns True if it had to be deployed.

    With `funder` given, an underfunded deployment signer is topped up first.
    """
    try:
        validate_create2_bytecode(network)
        return False
    except NotDeployed:
        pass

    balance = network.get_balance(CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS)
    if balance < CREATE2_PROXY_DEPLOYMENT_COST and funder is not None:
        logger.info(f"Funding one-time deployment account {CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS}")
        funder.transact(network, CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS, value=CREATE2_PROXY_DEPLOYMENT_COST - balance)
        balance = network.get_balance(CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS)

    if balance < CREATE2_PROXY_DEPLOYMENT_COST:
        raise InvalidInput(
            f"One-time-use deployment account {CREATE2_PROXY_DEPLOYMENT_SIGNER_ADDRESS} "
            f"does not have enough balance to deploy CREATE2 proxy"
        )

    signer = deployment_signer()
    if network.get_transaction_count(signer.address) != 0:
        raise IntegrityFailure(f"Deployment account {signer.address} was already used, CREATE2 proxy address is lost")

    address = signer.deploy(network, _PROXY_ARTIFACT.bytecode)
    logger.info(f"Deployed CREATE2 proxy to {address}")

    validate_create2_bytecode(network)
    return True


def normalize_salt(salt: Union[bool, str, bytes, None]) -> bytes:
    """
    Salt as 32 bytes.

    True/None mean the zero salt. A 0x-prefixed string must be 32 bytes of
    hex; any other string is used as text, right padded with zeros.
    """
    if salt is None or salt is True:
        return from_hex(EMPTY_BYTES_32)
    if isinstance(salt, bytes):
        raw = salt
    elif isinstance(salt, str) and salt.startswith("0x"):
        try:
            raw = from_hex(salt)
        except ValueError:
            raise InvalidInput("Salt must be a valid 0x prefixed 32 byte hex string")
    elif isinstance(salt, str):
        raw = salt.encode("utf-8")
        if len(raw) > 32:
            raise InvalidInput(f"Salt '{salt}' is longer than 32 bytes")
        raw = raw.ljust(32, b"\x00")
    else:
        raise InvalidInput(f"Unsupported salt {salt!r}")

    if len(raw) != 32:
        raise InvalidInput("Salt must be a valid 0x prefixed 32 byte hex string")
    return raw


def compute_create2_address(bytecode: str, constructor_args: Sequence[Any] = (), salt: Union[bool, str, bytes, None] = None) -> str:
    init_code = from_hex(bytecode) + encode_args(constructor_args)
    return create2_address(CREATE2_PROXY_ADDRESS, normalize_salt(salt), init_code)


def create2_deployment_data(bytecode: str, constructor_args: Sequence[Any] = (),
                            salt: Union[bool, str, bytes, None] = None) -> str:
    """Calldata for the CREATE2 proxy: the 32 byte salt followed by the init code."""
    init_code = from_hex(bytecode) + encode_args(constructor_args)
    return to_hex(normalize_salt(salt) + init_code)


def deploy_create2_contract(network: Network, signer: Signer, bytecode: str,
                            constructor_args: Sequence[Any] = (),
                            salt: Union[bool, str, bytes, None] = None) -> str:
    """
    Deploys init code through the CREATE2 proxy and returns the address.

    Nothing is broadcast when code already exists at the computed address.
    """
    validate_create2_bytecode(network)

    address = compute_create2_address(bytecode, constructor_args, salt)

    if network.has_code(address):
        logger.info(f"Contract already deployed deterministically at {address}")
        return address

    signer.transact(network, CREATE2_PROXY_ADDRESS, create2_deployment_data(bytecode, constructor_args, salt))
    return address
