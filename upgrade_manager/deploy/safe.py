# MIT License
# Copyright (c) 2025 Hashborn

"""
Owner-authorized submission.

Calls only the ledger owner may make are submitted directly when the owner
is a plain account (DirectSubmit) or through the owner safe when the owner
is a contract (QuorumSubmit). Quorum collection is stateless: each run adds
this signer's signature to the prior ones given on the command line and
either executes the safe transaction or prints the list to relay to the
next signer.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel

from ..chain.contracts import SENTINEL_OWNERS
from ..observability import metrics
from ..protocol.types.abi import encode_call, format_encoded_call
from ..protocol.types.common import ConcurrencyConflict, Conflict, IntegrityFailure, NotFound, PermissionDenied
from ..protocol.types.safe import (
    SafeSignature,
    SafeTx,
    encode_prior_signatures,
    pack_signatures,
    safe_tx_hash,
    sort_signatures,
)
from .config import Cancelled, confirm
from .execution import deploy_contract, send_transaction
from .ledger import LedgerClient, get_admin_address, get_upgrade_manager

logger = logging.getLogger(__name__)

SAFE_CONTRACT = "Safe"


class QuorumTransaction(BaseModel):
    safe: str
    tx: SafeTx
    threshold: int
    collected: List[SafeSignature] = []

    @property
    def has_quorum(self) -> bool:
        return len(self.collected) >= self.threshold


def merge_signatures(prior: List[SafeSignature], signature: SafeSignature, digest: bytes) -> List[SafeSignature]:
    """
    Adds `signature` to the prior ones.

    Every signer may appear once. Prior signatures must have been made over
    `digest`; one made for another safe nonce or other call data is stale.
    """
    merged: List[SafeSignature] = []
    seen = set()
    for sig in list(prior) + [signature]:
        if sig.signer in seen:
            raise Conflict(f"Signer {sig.signer} is already included in priorSignatures")
        if not sig.verify(digest):
            logger.warning(f"Signature from {sig.signer} does not match this safe transaction")
            raise ConcurrencyConflict(
                f"Prior signature from {sig.signer} was made for a different safe transaction, "
                f"the safe nonce or the call data changed since it was collected"
            )
        seen.add(sig.signer)
        merged.append(sig)
    return merged


class QuorumAuthorizer:

    def __init__(self, config, safe_address: str):
        self.config = config
        self.safe = safe_address

    def _view(self, method: str, *args):
        return self.config.network.call_method(self.safe, method, *args)

    def prepare(self, to: str, data: str, value: int = 0) -> QuorumTransaction:
        logger.info(f"Preparing for safe transaction using safe {self.safe}")
        logger.info(f"It looks like a safe, version {self._view('VERSION')}")

        owners = self._view("getOwners")
        if self.config.deploy_address not in owners:
            raise PermissionDenied(f"Signer address {self.config.deploy_address} is not an owner of safe {self.safe}")

        threshold = self._view("getThreshold")
        nonce = self._view("nonce")
        logger.info(
            f"We have {len(self.config.prior_signatures)} prior signatures, and the safe threshold is "
            f"{threshold}. Safe nonce is {nonce}."
        )
        return QuorumTransaction(
            safe=self.safe,
            tx=SafeTx(to=to, value=value, data=data, nonce=nonce),
            threshold=threshold,
            collected=list(self.config.prior_signatures),
        )

    def authorize(self, to: str, data: str, value: int = 0) -> Optional[List[SafeSignature]]:
        """
        Signs the call and executes it once the threshold is reached.

        Returns None when executed, or the signatures collected so far.
        """
        quorum = self.prepare(to, data, value)
        logger.info(f"Proposed call to {to}: {format_encoded_call(data)}")

        digest = safe_tx_hash(self.config.network.chain_id, self.safe, quorum.tx)
        signature = self.config.signer.sign_digest(digest)
        quorum.collected = merge_signatures(quorum.collected, signature, digest)

        if not quorum.has_quorum:
            logger.info(f"We only have {len(quorum.collected)} signatures, but the threshold is {quorum.threshold}")
            logger.info(
                f"Still not enough signatures to submit, please gather "
                f"{quorum.threshold - len(quorum.collected)} more signatures. Current signature list:"
            )
            logger.info(f'"{encode_prior_signatures(quorum.collected)}"')
            return quorum.collected

        logger.info("We have enough signatures, submitting safe transaction")
        if not confirm("Execute safe transaction?", self.config.auto_confirm):
            raise Cancelled("Safe transaction not executed")

        packed = pack_signatures(sort_signatures(quorum.collected))
        tx = quorum.tx
        exec_data = encode_call(
            "execTransaction", tx.to, tx.value, tx.data, tx.operation, tx.safe_tx_gas,
            tx.base_gas, tx.gas_price, tx.gas_token, tx.refund_receiver, packed,
        )
        tx_hash = send_transaction(self.config, self.safe, exec_data)
        logger.info(f"Transaction successful {tx_hash}")
        return None


class OwnerSubmission(ABC):
    mode = ""

    @abstractmethod
    def submit(self, config, to: str, data: str) -> Optional[List[SafeSignature]]:
        """Submits an owner-only call. Returns partial safe signatures when no quorum yet."""


class DirectSubmit(OwnerSubmission):
    mode = "direct"

    def submit(self, config, to: str, data: str) -> Optional[List[SafeSignature]]:
        send_transaction(config, to, data)
        return None


class QuorumSubmit(OwnerSubmission):
    mode = "quorum"

    def __init__(self, safe_address: str):
        self.safe = safe_address

    def submit(self, config, to: str, data: str) -> Optional[List[SafeSignature]]:
        return QuorumAuthorizer(config, self.safe).authorize(to, data)


def resolve_owner_submission(config, ledger: LedgerClient) -> OwnerSubmission:
    owner = ledger.owner()
    if config.network.has_code(owner):
        return QuorumSubmit(owner)
    return DirectSubmit()


def submit_owner_call(config, ledger: LedgerClient, method: str, *args) -> Optional[List[SafeSignature]]:
    submission = resolve_owner_submission(config, ledger)
    metrics.submissions_total.labels(mode=submission.mode).inc()
    logger.debug(f"Submitting {method} to {ledger.address} ({submission.mode})")
    return submission.submit(config, ledger.address, encode_call(method, *args))


# --- Safe management ---

def safe_ownership(config, owners: List[str], threshold: int) -> str:
    """Creates a safe and transfers ownership of the ledger to it. Returns the safe address."""
    ledger = get_upgrade_manager(config)
    logger.info(f"Upgrade manager address {ledger.address}")
    logger.info(f"UpgradeManager owner: {ledger.owner()}")

    admin = get_admin_address(config.network, ledger.address)
    admin_owner = config.network.call_method(admin, "owner")
    logger.info(f"Upgrade manager admin address {admin}, owned by {admin_owner}")
    if admin_owner != ledger.address:
        raise PermissionDenied("The upgrade manager proxy admin owner should be the upgrade manager itself")

    if not confirm(f"Create safe with owners {', '.join(owners)} and threshold {threshold}?", config.auto_confirm):
        raise Cancelled("Safe setup cancelled")

    safe_address = deploy_contract(config, config.artifacts.init_code(SAFE_CONTRACT, list(owners), threshold))
    logger.info(f"Created safe at address {safe_address}")

    if sorted(config.network.call_method(safe_address, "getOwners")) != sorted(owners):
        raise IntegrityFailure("New safe does not have expected owners, aborting")
    if config.network.call_method(safe_address, "getThreshold") != threshold:
        raise IntegrityFailure("New safe does not have expected threshold, aborting")

    submit_owner_call(config, ledger, "transferOwnership", safe_address)
    if ledger.owner() != safe_address:
        raise IntegrityFailure("Ownership transfer failed")

    logger.info(f"Ownership of upgrade manager transferred to safe at {safe_address}")
    return safe_address


def _owner_safe(config) -> str:
    ledger = get_upgrade_manager(config)
    logger.info(f"Upgrade manager address {ledger.address}")
    safe_address = ledger.owner()
    if not config.network.has_code(safe_address):
        raise NotFound(f"Upgrade manager owner {safe_address} is not a safe")
    logger.info(f"Upgrade manager owner address {safe_address}")
    return safe_address


def _current_owners(config, safe_address: str):
    owners = config.network.call_method(safe_address, "getOwners")
    threshold = config.network.call_method(safe_address, "getThreshold")
    logger.info(f"Current owners {', '.join(owners)}")
    logger.info(f"Current threshold {threshold}")
    return owners, threshold


def add_safe_owner(config, new_owner: str, new_threshold: Optional[int] = None) -> Optional[List[SafeSignature]]:
    safe_address = _owner_safe(config)
    owners, threshold = _current_owners(config, safe_address)
    new_threshold = new_threshold or threshold
    logger.info(f"New owner {new_owner}")
    logger.info(f"New threshold {new_threshold}")

    if new_owner in owners:
        raise Conflict(f"{new_owner} is already an owner of the upgrade manager safe")

    data = encode_call("addOwnerWithThreshold", new_owner, new_threshold)
    return QuorumAuthorizer(config, safe_address).authorize(safe_address, data)


def remove_safe_owner(config, owner: str, new_threshold: Optional[int] = None) -> Optional[List[SafeSignature]]:
    safe_address = _owner_safe(config)
    owners, threshold = _current_owners(config, safe_address)
    new_threshold = new_threshold or threshold
    logger.info(f"Removing owner {owner}")
    logger.info(f"New threshold {new_threshold}")

    if owner not in owners:
        raise NotFound(f"{owner} is not an owner of the upgrade manager safe")

    index = owners.index(owner)
    prev_owner = owners[index - 1] if index > 0 else SENTINEL_OWNERS

    data = encode_call("removeOwner", prev_owner, owner, new_threshold)
    return QuorumAuthorizer(config, safe_address).authorize(safe_address, data)


def set_safe_threshold(config, new_threshold: int) -> Optional[List[SafeSignature]]:
    safe_address = _owner_safe(config)
    _current_owners(config, safe_address)
    logger.info(f"New threshold {new_threshold}")

    data = encode_call("changeThreshold", new_threshold)
    return QuorumAuthorizer(config, safe_address).authorize(safe_address, data)
