# MIT License
# Copyright (c) 2025 Hashborn

import inspect
import logging
from typing import Any, List

from .state import WorldState
from .tx_receipt import TxLog
from ..contracts.base import CallContext, Contract, ContractRegistry, get_contract_registry, parse_init_code
from ...protocol.crypto.hash import from_hex, to_hex
from ...protocol.types.abi import is_empty_call_data
from ...protocol.types.common import Conflict, IntegrityFailure, InvalidInput, PermissionDenied

logger = logging.getLogger(__name__)

MAX_CALL_DEPTH = 64


class VM:
    """
    Executes one transaction (or read-only call) against a world state.

    The caller owns atomicity: it hands in a cloned state and only keeps it
    when execution finishes without raising.
    """

    def __init__(self, state: WorldState, registry: ContractRegistry = None, chain_id: str = ""):
        self.state = state
        self.chain_id = chain_id
        self.registry = registry or get_contract_registry()
        self.logs: List[TxLog] = []
        self.depth = 0

    def is_contract(self, address: str) -> bool:
        return self.state.get_code(address) not in ("", "0x")

    def emit(self, address: str, event: str, args: dict) -> None:
        self.logs.append(TxLog(address=address, event=event, args=dict(args)))

    def transfer(self, sender: str, to: str, amount: int) -> None:
        if amount <= 0:
            return
        src = self.state.get_account(sender)
        if src.balance < amount:
            raise InvalidInput(f"Insufficient balance: {src.balance} < {amount}")
        src.balance -= amount
        self.state.get_account(to).balance += amount

    def _resolve(self, code_address: str):
        code = self.state.get_code(code_address)
        cls = self.registry.resolve_code(from_hex(code))
        if cls is None:
            raise IntegrityFailure(f"Unknown code at {code_address}")
        return cls

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_CALL_DEPTH:
            raise InvalidInput("Max call depth exceeded")

    def message_call(self, sender: str, to: str, data: str, value: int = 0, static: bool = False) -> Any:
        if static and value:
            raise PermissionDenied("Value transfer during static call")
        self._enter()
        try:
            self.transfer(sender, to, value)
            if not self.is_contract(to):
                if is_empty_call_data(data):
                    return None
                raise InvalidInput(f"Call to non-contract address {to}")
            cls = self._resolve(to)
            instance = cls(self, to, self.state.get_account(to).storage, CallContext(sender, value, static))
            return instance.handle(data)
        finally:
            self.depth -= 1

    def delegate_call(self, caller: Contract, code_address: str, data: str) -> Any:
        """Runs the code at `code_address` on the caller's storage and context."""
        if not self.is_contract(code_address):
            raise InvalidInput(f"Delegate call to non-contract address {code_address}")
        self._enter()
        try:
            cls = self._resolve(code_address)
            instance = cls(self, caller.address, caller.storage, caller.ctx)
            return instance.handle(data)
        finally:
            self.depth -= 1

    def create(self, sender: str, init_code: bytes, address: str, value: int = 0) -> str:
        try:
            runtime, args = parse_init_code(init_code)
        except ValueError as e:
            raise InvalidInput(str(e))

        cls = self.registry.resolve_code(runtime)
        if cls is None:
            raise InvalidInput("Init code does not match any known contract")

        account = self.state.get_account(address)
        if account.is_contract:
            raise Conflict(f"Contract already exists at {address}")

        self._enter()
        try:
            account.code = to_hex(runtime)
            self.transfer(sender, address, value)
            instance = cls(self, address, account.storage, CallContext(sender, value))
            try:
                inspect.signature(instance.constructor).bind(*args)
            except TypeError as e:
                raise InvalidInput(f"{cls.__name__} constructor: {e}")
            instance.constructor(*args)
        finally:
            self.depth -= 1

        logger.debug(f"Created {cls.__name__} at {address}")
        return address
