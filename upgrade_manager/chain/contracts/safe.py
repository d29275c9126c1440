# MIT License
# Copyright (c) 2025 Hashborn

"""
Threshold multisig wallet.

Transactions execute once at least `threshold` distinct owners signed the
transaction digest. Signatures are submitted packed and sorted by signer
address bytes, ascending, which also rules out duplicates. Owner management
is only reachable through the safe's own transactions.
"""

from typing import Any, List

from .base import Contract, external, view, register_contract
from ...protocol.crypto.addresses import encode_address, address_bytes, is_zero_address, is_valid_address
from ...protocol.crypto.hash import to_hex
from ...protocol.types.common import Conflict, InvalidInput, NotFound, Operation, PermissionDenied
from ...protocol.types.safe import SafeTx, safe_tx_hash, domain_separator, unpack_signatures

# Marker for "no previous owner" when removing the first owner
SENTINEL_OWNERS = encode_address(b"\x00" * 19 + b"\x01")


@register_contract
class Safe(Contract):

    def constructor(self, owners: List[str], threshold: int) -> None:
        if not owners:
            raise InvalidInput("Safe needs at least one owner")
        self.storage["owners"] = []
        for owner in owners:
            self._add_owner(owner)
        self._set_threshold(threshold)
        self.storage["nonce"] = 0
        self.emit("SafeSetup", owners=list(owners), threshold=threshold)

    # --- Internal ---

    def _add_owner(self, owner: str) -> None:
        if is_zero_address(owner) or owner == SENTINEL_OWNERS or owner == self.address or not is_valid_address(owner):
            raise InvalidInput(f"Invalid owner address {owner}")
        if owner in self.storage["owners"]:
            raise Conflict(f"Address {owner} is already an owner")
        self.storage["owners"].append(owner)

    def _set_threshold(self, threshold: int) -> None:
        if not isinstance(threshold, int) or threshold < 1:
            raise InvalidInput("Threshold needs to be greater than 0")
        if threshold > len(self.storage["owners"]):
            raise InvalidInput("Threshold cannot exceed owner count")
        self.storage["threshold"] = threshold

    def _authorized(self) -> None:
        if self.sender != self.address:
            raise PermissionDenied("Method can only be called from this contract")

    def _check_signatures(self, digest: bytes, packed: str) -> None:
        try:
            signatures = unpack_signatures(packed)
        except ValueError as e:
            raise InvalidInput(str(e))
        if len(signatures) < self.storage["threshold"]:
            raise PermissionDenied(f"Not enough signatures: {len(signatures)} < {self.storage['threshold']}")

        last = b""
        for sig in signatures:
            current = address_bytes(sig.signer)
            if current <= last:
                raise InvalidInput("Signatures must be sorted by signer and unique")
            if sig.signer not in self.storage["owners"]:
                raise PermissionDenied(f"Signer {sig.signer} is not an owner")
            if not sig.verify(digest):
                raise PermissionDenied(f"Invalid signature from {sig.signer}")
            last = current

    # --- Transactions ---

    @external
    def execTransaction(self, to: str, value: int, data: str, operation: int,
                        safe_tx_gas: int, base_gas: int, gas_price: int,
                        gas_token: str, refund_receiver: str, signatures: str) -> Any:
        if operation != Operation.CALL:
            raise InvalidInput("Only call operations are supported")
        tx = SafeTx(
            to=to, value=value, data=data, operation=operation,
            safe_tx_gas=safe_tx_gas, base_gas=base_gas, gas_price=gas_price,
            gas_token=gas_token, refund_receiver=refund_receiver,
            nonce=self.storage["nonce"],
        )
        digest = safe_tx_hash(self.vm.chain_id, self.address, tx)
        self._check_signatures(digest, signatures)

        self.storage["nonce"] += 1
        result = self.call_raw(to, data, value=value)
        self.emit("ExecutionSuccess", txHash=to_hex(digest))
        return result

    @view
    def getTransactionHash(self, to: str, value: int, data: str, operation: int,
                           safe_tx_gas: int, base_gas: int, gas_price: int,
                           gas_token: str, refund_receiver: str, nonce: int) -> str:
        tx = SafeTx(
            to=to, value=value, data=data, operation=operation,
            safe_tx_gas=safe_tx_gas, base_gas=base_gas, gas_price=gas_price,
            gas_token=gas_token, refund_receiver=refund_receiver, nonce=nonce,
        )
        return to_hex(safe_tx_hash(self.vm.chain_id, self.address, tx))

    @view
    def domainSeparator(self) -> str:
        return to_hex(domain_separator(self.vm.chain_id, self.address))

    # --- Owner management ---

    @external
    def addOwnerWithThreshold(self, owner: str, threshold: int) -> None:
        self._authorized()
        self._add_owner(owner)
        self.emit("AddedOwner", owner=owner)
        if threshold != self.storage["threshold"]:
            self.changeThreshold(threshold)

    @external
    def removeOwner(self, prev_owner: str, owner: str, threshold: int) -> None:
        self._authorized()
        owners = self.storage["owners"]
        if owner not in owners:
            raise NotFound(f"Address {owner} is not an owner")
        index = owners.index(owner)
        expected_prev = owners[index - 1] if index > 0 else SENTINEL_OWNERS
        if prev_owner != expected_prev:
            raise InvalidInput("Invalid prevOwner, owner pair provided")
        if len(owners) - 1 < threshold:
            raise InvalidInput("Threshold cannot exceed owner count")
        owners.remove(owner)
        self.emit("RemovedOwner", owner=owner)
        if threshold != self.storage["threshold"]:
            self.changeThreshold(threshold)

    @external
    def changeThreshold(self, threshold: int) -> None:
        self._authorized()
        self._set_threshold(threshold)
        self.emit("ChangedThreshold", threshold=threshold)

    # --- Reads ---

    @view
    def getOwners(self) -> List[str]:
        return list(self.storage["owners"])

    @view
    def isOwner(self, owner: str) -> bool:
        return owner in self.storage["owners"]

    @view
    def getThreshold(self) -> int:
        return self.storage["threshold"]

    @view
    def nonce(self) -> int:
        return self.storage["nonce"]

    @view
    def VERSION(self) -> str:
        return "1.3.0"
