# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict, List
from .accounts import Account
from ...protocol.crypto.hash import sha256


class WorldState:
    """Account and contract state of the local chain."""

    def __init__(self, accounts: Dict[str, Account] = None):
        self._accounts: Dict[str, Account] = accounts if accounts is not None else {}

    def clone(self) -> 'WorldState':
        """Creates a copy of the state (for simulation)."""
        new_accounts = {k: v.model_copy(deep=True) for k, v in self._accounts.items()}
        return WorldState(new_accounts)

    def get_account(self, address: str) -> Account:
        acc = self._accounts.get(address)
        if acc is None:
            acc = Account(address=address)
            self._accounts[address] = acc
        return acc

    def has_account(self, address: str) -> bool:
        return address in self._accounts

    def set_account(self, account: Account):
        self._accounts[account.address] = account

    def get_code(self, address: str) -> str:
        acc = self._accounts.get(address)
        return acc.code if acc else "0x"

    def addresses(self) -> List[str]:
        return list(self._accounts.keys())

    def compute_state_root(self) -> str:
        """Hash over all accounts, sorted by address."""
        leaves = []
        for addr in sorted(self._accounts):
            acc = self._accounts[addr]
            leaves.append(sha256(acc.model_dump_json().encode("utf-8")))
        return sha256(b"".join(leaves)).hex()
