# MIT License
# Copyright (c) 2025 Hashborn

"""
Execution driver.

Every mutating call goes through `retry_and_wait_for_nonce_increase`: the
transaction is signed once with the current nonce, rebroadcast on transient
failures, then the signer's transaction count is polled until it moves past
that nonce, so the next call is never signed with a nonce still in flight.
"""

import time
import logging
from typing import Callable, Optional, TypeVar

from ..observability import metrics
from ..protocol.config.params import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_BASE_DELAY_SEC
from ..protocol.crypto.addresses import contract_address
from ..protocol.types.common import InvalidInput, NonceNotIncreased, RetryLimitExceeded, TransientError
from ..protocol.types.tx import Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry(cb: Callable[[], T],
          max_attempts: int = DEFAULT_MAX_ATTEMPTS,
          base_delay: float = DEFAULT_RETRY_BASE_DELAY_SEC,
          sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Runs `cb` until it succeeds.

    Attempt n (from 1) waits base_delay * n first. Only TransientError is
    retried; anything else propagates on the spot. Raises
    RetryLimitExceeded once `max_attempts` attempts failed.
    """
    last_error: Optional[TransientError] = None
    for attempt in range(1, max_attempts + 1):
        sleep(base_delay * attempt)
        try:
            return cb()
        except TransientError as e:
            last_error = e
            metrics.retries_total.inc()
            logger.warning(f"received {e.message}, trying again ({attempt} of {max_attempts} attempts)")

    metrics.retry_exhausted_total.inc()
    raise RetryLimitExceeded(f"Reached max retry attempts ({max_attempts}): {last_error.message if last_error else ''}")


def retry_and_wait_for_nonce_increase(config, build_tx: Callable[[int], Transaction],
                                      max_attempts: Optional[int] = None) -> Transaction:
    """
    Signs one transaction and drives it to completion.

    `build_tx` gets the deploy address's current transaction count and
    returns the signed transaction for that nonce. It is called once; retries
    rebroadcast the same transaction. A rebroadcast is skipped when the node
    already knows the transaction hash, and a nonce rejection counts as
    success once the transaction count moved past the pinned nonce. Then the
    count is polled until it increases. Returns the signed transaction.
    """
    attempts = max_attempts or config.max_attempts
    address = config.deploy_address
    network = config.network

    old_nonce = retry(lambda: network.get_transaction_count(address), attempts, config.retry_base_delay, config.sleep)
    tx = build_tx(old_nonce)
    tx_hash = tx.hash_hex
    broadcasts = []

    def broadcast():
        if broadcasts and network.get_receipt(tx_hash) is not None:
            logger.info(f"Tx {tx_hash[:18]}... already accepted by the node, not sending it again")
            return tx_hash
        broadcasts.append(tx_hash)
        try:
            return network.send_transaction(tx)
        except InvalidInput:
            if len(broadcasts) > 1 and network.get_transaction_count(address) > old_nonce:
                logger.info(f"Nonce {old_nonce} of {address} already used, tx {tx_hash[:18]}... was accepted")
                return tx_hash
            raise

    retry(broadcast, attempts, config.retry_base_delay, config.sleep)
    logger.debug(f"Sent tx {tx_hash[:18]}... from {address} (nonce {old_nonce})")

    def check_nonce():
        if network.get_transaction_count(address) <= old_nonce:
            raise NonceNotIncreased(f"Nonce not increased yet for {address}")

    retry(check_nonce, attempts, config.retry_base_delay, config.sleep)
    return tx


def send_transaction(config, to_address: str, data: str = "0x", value: int = 0) -> str:
    """Sends a transaction from the deploy signer through the driver. Returns the tx hash."""
    tx = retry_and_wait_for_nonce_increase(
        config, lambda nonce: config.signer.sign_transaction(config.network, to_address, data, value, nonce=nonce)
    )
    return tx.hash_hex


def deploy_contract(config, init_code: str) -> str:
    """Creates a contract from the deploy signer through the driver. Returns its address."""
    tx = retry_and_wait_for_nonce_increase(
        config, lambda nonce: config.signer.sign_transaction(config.network, None, init_code, nonce=nonce)
    )
    return contract_address(tx.from_address, tx.nonce)
