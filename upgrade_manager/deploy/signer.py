# MIT License
# Copyright (c) 2025 Hashborn

import os
import logging
from typing import Optional

from ..chain.core.chain import dev_private_key
from ..cli.keystore import KeyStore
from ..protocol.config.params import NetworkConfig, DEFAULT_GAS_LIMIT
from ..protocol.crypto.addresses import address_from_pubkey, contract_address
from ..protocol.crypto.keys import private_key_from_hex, public_key_from_private
from ..protocol.types.safe import SafeSignature, sign_safe_tx
from ..protocol.types.tx import Transaction
from .network import Network

logger = logging.getLogger(__name__)


class Signer:
    """Local private key that signs and broadcasts deploy transactions."""

    def __init__(self, private_key: bytes, gas_price: int = 0, gas_limit: int = DEFAULT_GAS_LIMIT):
        if len(private_key) != 32:
            raise ValueError("Private key must be 32 bytes")
        self._private_key = private_key
        self.address = address_from_pubkey(public_key_from_private(private_key))
        self.gas_price = gas_price
        self.gas_limit = gas_limit

    def __repr__(self) -> str:
        return f"Signer({self.address})"

    def sign_transaction(self, network: Network, to_address: Optional[str], data: str = "0x",
                         value: int = 0, nonce: Optional[int] = None) -> Transaction:
        if nonce is None:
            nonce = network.get_transaction_count(self.address)
        tx = Transaction(
            from_address=self.address,
            to_address=to_address,
            data=data,
            value=value,
            nonce=nonce,
            gas_price=self.gas_price,
            gas_limit=self.gas_limit,
            chain_id=network.chain_id,
        )
        tx.sign(self._private_key)
        return tx

    def transact(self, network: Network, to_address: Optional[str], data: str = "0x", value: int = 0) -> str:
        """Signs and broadcasts a transaction. Returns its hash."""
        tx = self.sign_transaction(network, to_address, data, value)
        tx_hash = network.send_transaction(tx)
        logger.debug(f"Sent tx {tx_hash[:18]}... from {self.address} (nonce {tx.nonce})")
        return tx_hash

    def deploy(self, network: Network, init_code: str, value: int = 0) -> str:
        """Creates a contract from init code. Returns the new contract's address."""
        tx = self.sign_transaction(network, None, init_code, value)
        network.send_transaction(tx)
        return contract_address(self.address, tx.nonce)

    def sign_digest(self, digest: bytes) -> SafeSignature:
        return sign_safe_tx(digest, self._private_key)


def resolve_signer(network_config: NetworkConfig, private_key: Optional[str] = None,
                   key_name: Optional[str] = None, keystore: Optional[KeyStore] = None) -> Signer:
    """
    Picks the deploy key.

    Order: an explicit hex key, UPM_DEPLOY_KEY, a named keystore entry, then
    dev account 0 of networks that have dev accounts.
    """
    gas = dict(gas_price=network_config.default_gas_price, gas_limit=network_config.default_gas_limit)

    private_key = private_key or os.environ.get("UPM_DEPLOY_KEY")
    if private_key:
        return Signer(private_key_from_hex(private_key), **gas)

    if key_name:
        return Signer((keystore or KeyStore()).private_key(key_name), **gas)

    if network_config.dev_mnemonic_seed and network_config.dev_account_count:
        logger.info(f"No deploy key given, using dev account 0 of {network_config.network_id}")
        return Signer(dev_private_key(network_config.dev_mnemonic_seed, 0), **gas)

    raise ValueError(f"No deploy key for {network_config.network_id}: pass --key or set UPM_DEPLOY_KEY")
