# MIT License
# Copyright (c) 2025 Hashborn

"""
UpgradeManager ledger contract.

Holds ownership of a set of proxied contracts (and the proxy admins behind
them), lets proposers stage changes for them, and applies every staged
change in one owner-authorized batch guarded by `nonce`.

Abstract contracts are plain deployments tracked by id. Proposals for them
go into an append-only queue; at apply time the latest entry per id wins.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from .base import Ownable, Initializable, external, view, register_contract
from ...protocol.config.params import MAX_ADOPTED_CONTRACTS, LEDGER_CONTRACT_VERSION
from ...protocol.crypto.addresses import ZERO_ADDRESS, is_zero_address
from ...protocol.crypto.hash import id_hash
from ...protocol.types.abi import EMPTY_CALL_DATA, is_empty_call_data
from ...protocol.types.common import (
    CapacityExceeded,
    ConcurrencyConflict,
    Conflict,
    InvalidInput,
    NotFound,
    PermissionDenied,
    ProtocolError,
)

logger = logging.getLogger(__name__)


def _empty_record() -> Dict[str, str]:
    return {
        "id": "",
        "proxyAdmin": ZERO_ADDRESS,
        "upgradeAddress": ZERO_ADDRESS,
        "encodedCall": EMPTY_CALL_DATA,
    }


def _has_pending(record: Dict[str, str]) -> bool:
    return not is_zero_address(record["upgradeAddress"]) or not is_empty_call_data(record["encodedCall"])


@register_contract
class UpgradeManager(Ownable, Initializable):

    # --- Storage accessors ---

    def dispatch(self, method: str, args: List[Any]) -> Any:
        self._init_storage()
        return super().dispatch(method, args)

    def _init_storage(self) -> None:
        self.storage.setdefault("nonce", 0)
        self.storage.setdefault("version", "")
        self.storage.setdefault("proposers", [])
        self.storage.setdefault("adopted", {})
        self.storage.setdefault("byProxy", {})
        self.storage.setdefault("proxies", [])
        self.storage.setdefault("abstract", {})
        self.storage.setdefault("abstractIdHashes", [])
        self.storage.setdefault("proposedAbstracts", [])

    def _bump_nonce(self) -> None:
        self.storage["nonce"] += 1

    def _only_proposer(self) -> None:
        if self.sender not in self.storage["proposers"]:
            raise PermissionDenied("Caller is not proposer")

    def _record(self, contract_id: str) -> Tuple[str, Dict[str, str]]:
        proxy = self.storage["adopted"].get(contract_id)
        if proxy is None:
            raise NotFound(f"Unknown contract id {contract_id}")
        return proxy, self.storage["byProxy"][proxy]

    # --- Lifecycle ---

    @external
    def initialize(self, owner: str) -> None:
        self._initializer()
        self._init_storage()
        self._set_owner(owner)

    @external
    def setup(self, proposers: List[str]) -> None:
        self._only_owner()
        for proposer in proposers:
            if proposer not in self.storage["proposers"]:
                self._add_proposer(proposer)
        self._bump_nonce()
        self.emit("Setup")

    # --- Proposers ---

    def _add_proposer(self, proposer: str) -> None:
        if is_zero_address(proposer):
            raise InvalidInput("Proposer must not be the zero address")
        self.storage["proposers"].append(proposer)
        self.emit("ProposerAdded", proposer=proposer)

    @external
    def addUpgradeProposer(self, proposer: str) -> None:
        self._only_owner()
        if proposer in self.storage["proposers"]:
            raise Conflict("Proposer already added")
        self._add_proposer(proposer)
        self._bump_nonce()

    @external
    def removeUpgradeProposer(self, proposer: str) -> None:
        self._only_owner()
        if proposer not in self.storage["proposers"]:
            raise NotFound("Proposer not found")
        self.storage["proposers"].remove(proposer)
        self._bump_nonce()
        self.emit("ProposerRemoved", proposer=proposer)

    @view
    def getUpgradeProposers(self) -> List[str]:
        return list(self.storage["proposers"])

    @view
    def isUpgradeProposer(self, address: str) -> bool:
        return address in self.storage["proposers"]

    # --- Adoption ---

    @external
    def adoptContract(self, contract_id: str, proxy: str, proxy_admin: str) -> None:
        if self.sender != self.storage.get("owner") and self.sender not in self.storage["proposers"]:
            raise PermissionDenied("Caller is not owner or proposer")
        if not contract_id:
            raise InvalidInput("Contract id must not be empty")
        if contract_id in self.storage["adopted"]:
            raise Conflict("Contract id already registered")
        if proxy in self.storage["byProxy"]:
            raise Conflict("Proxy already adopted with a different contract id")
        if len(self.storage["proxies"]) >= MAX_ADOPTED_CONTRACTS:
            raise CapacityExceeded("Too many contracts adopted")

        try:
            admin_owner = self.static_call(proxy_admin, "owner")
        except ProtocolError:
            admin_owner = None
        if admin_owner != self.address:
            raise PermissionDenied("Must be owner of ProxyAdmin to adopt")

        try:
            actual_admin = self.static_call(proxy_admin, "getProxyAdmin", proxy)
        except ProtocolError:
            raise InvalidInput("Call to determine proxy admin ownership of proxy failed")
        if actual_admin != proxy_admin:
            raise PermissionDenied("Must be owner of ProxyAdmin to adopt")

        try:
            proxy_owner = self.static_call(proxy, "owner")
        except ProtocolError:
            proxy_owner = None
        if proxy_owner != self.address:
            raise PermissionDenied("Must be owner of contract to adopt")

        record = _empty_record()
        record["id"] = contract_id
        record["proxyAdmin"] = proxy_admin
        self.storage["adopted"][contract_id] = proxy
        self.storage["byProxy"][proxy] = record
        self.storage["proxies"].append(proxy)
        self._bump_nonce()
        self.emit("ContractAdopted", contractId=contract_id, proxyAddress=proxy)

    @external
    def disown(self, contract_id: str, new_owner: str) -> None:
        self._only_owner()
        proxy, _ = self._record(contract_id)
        self.call_contract(proxy, "transferOwnership", new_owner)

        del self.storage["adopted"][contract_id]
        del self.storage["byProxy"][proxy]
        self.storage["proxies"].remove(proxy)
        self._bump_nonce()
        self.emit("ContractDisowned", contractId=contract_id, proxyAddress=proxy)

    @external
    def changeProxyAdmin(self, proxy_admin: str, proxy: str, new_admin: str) -> None:
        self._only_owner()
        if proxy in self.storage["byProxy"]:
            raise PermissionDenied("Cannot change proxy admin for owned contract")
        self.call_contract(proxy_admin, "changeProxyAdmin", proxy, new_admin)
        self._bump_nonce()

    @external
    def disownProxyAdmin(self, proxy_admin: str, new_owner: str) -> None:
        self._only_owner()
        self.call_contract(proxy_admin, "transferOwnership", new_owner)
        self._bump_nonce()

    @view
    def getProxies(self) -> List[str]:
        return list(self.storage["proxies"])

    @view
    def adoptedContractAddresses(self, contract_id: str) -> str:
        return self.storage["adopted"].get(contract_id, ZERO_ADDRESS)

    @view
    def getAdoptedContractId(self, proxy: str) -> str:
        return self.storage["byProxy"].get(proxy, _empty_record())["id"]

    @view
    def adoptedContractsByProxyAddress(self, proxy: str) -> Dict[str, str]:
        return dict(self.storage["byProxy"].get(proxy, _empty_record()))

    # --- Proposals ---

    def _stage(self, contract_id: str, implementation: Optional[str], data: Optional[str]) -> None:
        self._only_proposer()
        proxy, record = self._record(contract_id)
        if _has_pending(record):
            raise Conflict("Upgrade already proposed, withdraw first")

        if implementation is not None:
            current = self.static_call(record["proxyAdmin"], "getProxyImplementation", proxy)
            if implementation == current:
                raise InvalidInput("Implementation address unchanged")
            if not self.is_contract(implementation):
                raise InvalidInput("Implementation address is not a contract")
            record["upgradeAddress"] = implementation

        if data is not None:
            if is_empty_call_data(data):
                raise InvalidInput("Call data must not be empty")
            record["encodedCall"] = data

        self._bump_nonce()
        self.emit("ChangesProposed", contractId=contract_id, implementationAddress=record["upgradeAddress"], encodedCall=record["encodedCall"])

    @external
    def proposeUpgrade(self, contract_id: str, implementation: str) -> None:
        self._stage(contract_id, implementation, None)

    @external
    def proposeCall(self, contract_id: str, data: str) -> None:
        self._stage(contract_id, None, data)

    @external
    def proposeUpgradeAndCall(self, contract_id: str, implementation: str, data: str) -> None:
        self._stage(contract_id, implementation, data)

    @external
    def withdrawChanges(self, contract_id: str) -> None:
        self._only_proposer()
        proxy, record = self._record(contract_id)
        record["upgradeAddress"] = ZERO_ADDRESS
        record["encodedCall"] = EMPTY_CALL_DATA
        self._bump_nonce()
        self.emit("ChangesWithdrawn", contractId=contract_id)

    @view
    def getProxiesWithPendingChanges(self) -> List[str]:
        by_proxy = self.storage["byProxy"]
        return [p for p in self.storage["proxies"] if _has_pending(by_proxy[p])]

    @view
    def getPendingUpgradeAddress(self, proxy: str) -> str:
        return self.storage["byProxy"].get(proxy, _empty_record())["upgradeAddress"]

    @view
    def getPendingCallData(self, proxy: str) -> str:
        return self.storage["byProxy"].get(proxy, _empty_record())["encodedCall"]

    # --- Abstract contracts ---

    @external
    def proposeAbstract(self, contract_id: str, contract_address: str) -> None:
        self._only_proposer()
        if not contract_id:
            raise InvalidInput("Contract id must not be empty")
        if not is_zero_address(contract_address) and not self.is_contract(contract_address):
            raise InvalidInput("Proposed address is not a contract")
        self.storage["proposedAbstracts"].append({"id": contract_id, "contractAddress": contract_address})
        self._bump_nonce()
        self.emit("AbstractProposed", contractId=contract_id, contractAddress=contract_address)

    @external
    def withdrawAllAbstractProposals(self) -> None:
        self._only_proposer()
        self.storage["proposedAbstracts"] = []
        self._bump_nonce()
        self.emit("AbstractProposalsWithdrawn")

    @view
    def getProposedAbstractContractsLength(self) -> int:
        return len(self.storage["proposedAbstracts"])

    @view
    def proposedAbstractContracts(self, index: int) -> Dict[str, str]:
        proposals = self.storage["proposedAbstracts"]
        if not isinstance(index, int) or index < 0 or index >= len(proposals):
            raise InvalidInput("Index out of range")
        return dict(proposals[index])

    @view
    def getAbstractContractAddress(self, contract_id: str) -> str:
        entry = self.storage["abstract"].get(id_hash(contract_id))
        return entry["contractAddress"] if entry else ZERO_ADDRESS

    @view
    def getAbstractContractIdHashes(self) -> List[str]:
        return list(self.storage["abstractIdHashes"])

    @view
    def getAbstractContractAddresses(self) -> List[str]:
        return [self.storage["abstract"][h]["contractAddress"] for h in self.storage["abstractIdHashes"]]

    @view
    def abstractContracts(self, hash_: str) -> Dict[str, str]:
        return dict(self.storage["abstract"].get(hash_, {"id": "", "contractAddress": ZERO_ADDRESS}))

    def _apply_abstract_proposals(self) -> None:
        latest: Dict[str, str] = {}
        for proposal in self.storage["proposedAbstracts"]:
            latest[proposal["id"]] = proposal["contractAddress"]

        for contract_id, address in latest.items():
            key = id_hash(contract_id)
            if is_zero_address(address):
                self.storage["abstract"].pop(key, None)
                if key in self.storage["abstractIdHashes"]:
                    self.storage["abstractIdHashes"].remove(key)
            else:
                self.storage["abstract"][key] = {"id": contract_id, "contractAddress": address}
                if key not in self.storage["abstractIdHashes"]:
                    self.storage["abstractIdHashes"].append(key)

        self.storage["proposedAbstracts"] = []

    # --- Owner actions ---

    @external
    def call(self, contract_id: str, data: str) -> Any:
        self._only_owner()
        proxy, _ = self._record(contract_id)
        result = self.call_raw(proxy, data)
        self._bump_nonce()
        return result

    @external
    def upgrade(self, new_version: str, expected_nonce: int) -> None:
        self._only_owner()
        if not new_version:
            raise InvalidInput("New version must be set")
        if expected_nonce != self.storage["nonce"]:
            raise ConcurrencyConflict("Invalid nonce")

        for proxy in list(self.storage["proxies"]):
            record = self.storage["byProxy"][proxy]
            if not _has_pending(record):
                continue
            implementation = record["upgradeAddress"]
            data = record["encodedCall"]
            if not is_zero_address(implementation) and not is_empty_call_data(data):
                self.call_contract(record["proxyAdmin"], "upgradeAndCall", proxy, implementation, data)
            elif not is_zero_address(implementation):
                self.call_contract(record["proxyAdmin"], "upgrade", proxy, implementation)
            else:
                self.call_raw(proxy, data)
            record["upgradeAddress"] = ZERO_ADDRESS
            record["encodedCall"] = EMPTY_CALL_DATA

        self._apply_abstract_proposals()
        self.storage["version"] = new_version
        self._bump_nonce()
        self.emit("Upgraded", version=new_version, nonce=self.storage["nonce"])

    @external
    def selfUpgrade(self, new_implementation: str, proxy_admin: str) -> None:
        self._only_owner()
        if not self.is_contract(new_implementation):
            raise InvalidInput("Implementation address is not a contract")
        self.call_contract(proxy_admin, "upgrade", self.address, new_implementation)
        self._bump_nonce()

    @external
    def transferOwnership(self, new_owner: str) -> None:
        self._only_owner()
        if is_zero_address(new_owner):
            raise InvalidInput("Ownable: new owner is the zero address")
        if new_owner == self.address:
            raise InvalidInput("Ownable: new owner is this contract")
        self._set_owner(new_owner)
        self._bump_nonce()

    @external
    def renounceOwnership(self) -> None:
        raise PermissionDenied("Ownable: cannot renounce ownership")

    # --- Reads ---

    @view
    def nonce(self) -> int:
        return self.storage.get("nonce", 0)

    @view
    def version(self) -> str:
        return self.storage.get("version", "")

    @view
    def CONTRACT_VERSION(self) -> int:
        return LEDGER_CONTRACT_VERSION
