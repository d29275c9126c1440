# MIT License
# Copyright (c) 2025 Hashborn

"""
Contract runtime for the local chain.

Contracts are Python classes. Deploying one stores its runtime code (an
identifier of the class plus a metadata trailer) at an address; every call
resolves the code back to the registered class and runs the method against
the account's storage.

Code layout:
    runtime   = RUNTIME_MAGIC ++ "<ClassName>:<revision>" ++ metadata ++ len(metadata)[2]
    init code = INIT_MAGIC ++ len(runtime)[4] ++ runtime ++ encoded constructor args
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from ...protocol.crypto.hash import sha256, to_hex, from_hex, strip_metadata
from ...protocol.crypto.addresses import ZERO_ADDRESS, is_zero_address
from ...protocol.types.abi import decode_call, encode_call, encode_args, decode_args
from ...protocol.types.common import InvalidInput, PermissionDenied

logger = logging.getLogger(__name__)

INIT_MAGIC = b"UMIC"
RUNTIME_MAGIC = b"UMRT"
METADATA_PREFIX = b"meta"


def external(func: Callable) -> Callable:
    """Marks a state-changing contract method as callable."""
    func._mutability = "nonpayable"
    return func


def view(func: Callable) -> Callable:
    """Marks a read-only contract method as callable (allowed in static calls)."""
    func._mutability = "view"
    return func


class CallContext:
    def __init__(self, sender: str, value: int = 0, static: bool = False):
        self.sender = sender
        self.value = value
        self.static = static


class Artifact(BaseModel):
    """Build output for a contract class."""
    contract_name: str
    bytecode: str
    deployed_bytecode: str
    abi: List[Dict[str, Any]]

    def init_code(self, *constructor_args: Any) -> bytes:
        return from_hex(self.bytecode) + encode_args(constructor_args)


class Contract:
    """
    Base class of all contracts hosted by the local chain.

    An instance only lives for one call frame: it is bound to the executing
    VM, the address whose storage it operates on, and the call context.
    """

    # Bump to change the runtime code of a class without renaming it
    CODE_REVISION = "1"

    def __init__(self, vm, address: str, storage: Dict[str, Any], ctx: CallContext):
        self.vm = vm
        self.address = address
        self.storage = storage
        self.ctx = ctx

    @property
    def sender(self) -> str:
        return self.ctx.sender

    def constructor(self, *args: Any) -> None:
        if args:
            raise InvalidInput(f"{type(self).__name__}: constructor takes no arguments")

    # --- Dispatch ---

    def handle(self, data: str) -> Any:
        try:
            method, args = decode_call(data)
        except ValueError as e:
            raise InvalidInput(f"{type(self).__name__}: {e}")
        return self.dispatch(method, args)

    def dispatch(self, method: str, args: List[Any]) -> Any:
        func = getattr(type(self), method, None)
        mutability = getattr(func, "_mutability", None)
        if mutability is None:
            raise InvalidInput(f"{type(self).__name__}: unknown function '{method}'")
        if self.ctx.static and mutability != "view":
            raise PermissionDenied(f"{type(self).__name__}: state change during static call to '{method}'")
        try:
            inspect.signature(func).bind(self, *args)
        except TypeError as e:
            raise InvalidInput(f"{type(self).__name__}.{method}: {e}")
        return func(self, *args)

    # --- Helpers for contract code ---

    def emit(self, event: str, **args: Any) -> None:
        self.vm.emit(self.address, event, args)

    def call_contract(self, to: str, method: str, *args: Any, value: int = 0) -> Any:
        return self.vm.message_call(self.address, to, encode_call(method, *args), value=value, static=self.ctx.static)

    def call_raw(self, to: str, data: str, value: int = 0) -> Any:
        return self.vm.message_call(self.address, to, data, value=value, static=self.ctx.static)

    def static_call(self, to: str, method: str, *args: Any) -> Any:
        return self.vm.message_call(self.address, to, encode_call(method, *args), static=True)

    def delegate(self, code_address: str, data: str) -> Any:
        return self.vm.delegate_call(self, code_address, data)

    def is_contract(self, address: str) -> bool:
        return not is_zero_address(address) and self.vm.is_contract(address)


class Ownable(Contract):
    """Single-owner access control stored under the `owner` slot."""

    def _set_owner(self, new_owner: str) -> None:
        previous = self.storage.get("owner", ZERO_ADDRESS)
        self.storage["owner"] = new_owner
        self.emit("OwnershipTransferred", previousOwner=previous, newOwner=new_owner)

    def _only_owner(self) -> None:
        if self.sender != self.storage.get("owner"):
            raise PermissionDenied("Ownable: caller is not the owner")

    @view
    def owner(self) -> str:
        return self.storage.get("owner", ZERO_ADDRESS)

    @external
    def transferOwnership(self, new_owner: str) -> None:
        self._only_owner()
        if is_zero_address(new_owner):
            raise InvalidInput("Ownable: new owner is the zero address")
        self._set_owner(new_owner)

    @external
    def renounceOwnership(self) -> None:
        self._only_owner()
        self._set_owner(ZERO_ADDRESS)


class Initializable(Contract):
    """One-shot initializer guard for contracts deployed behind a proxy."""

    def _initializer(self) -> None:
        if self.storage.get("initialized"):
            raise PermissionDenied("Initializable: contract is already initialized")
        self.storage["initialized"] = True


# --- Compilation ---

def _runtime_body(cls: Type[Contract]) -> bytes:
    return RUNTIME_MAGIC + f"{cls.__name__}:{cls.CODE_REVISION}".encode("utf-8")


def _abi(cls: Type[Contract]) -> List[Dict[str, Any]]:
    entries = []
    for name in sorted(dir(cls)):
        func = getattr(cls, name, None)
        mutability = getattr(func, "_mutability", None)
        if mutability is None:
            continue
        params = list(inspect.signature(func).parameters)[1:]
        entries.append({
            "type": "function",
            "name": name,
            "inputs": params,
            "stateMutability": mutability,
        })
    return entries


def compile_contract(cls: Type[Contract]) -> Artifact:
    """Builds the artifact for a contract class."""
    body = _runtime_body(cls)
    metadata = METADATA_PREFIX + sha256(f"{cls.__module__}.{cls.__qualname__}".encode("utf-8"))[:16]
    runtime = body + metadata + len(metadata).to_bytes(2, "big")
    init = INIT_MAGIC + len(runtime).to_bytes(4, "big") + runtime
    return Artifact(
        contract_name=cls.__name__,
        bytecode=to_hex(init),
        deployed_bytecode=to_hex(runtime),
        abi=_abi(cls),
    )


def parse_init_code(init_code: bytes) -> Tuple[bytes, List[Any]]:
    """Splits init code into (runtime code, constructor args)."""
    if len(init_code) < 8 or init_code[:4] != INIT_MAGIC:
        raise ValueError("Init code has an unknown format")
    length = int.from_bytes(init_code[4:8], "big")
    runtime = init_code[8:8 + length]
    if len(runtime) != length:
        raise ValueError("Init code is truncated")
    try:
        args = decode_args(init_code[8 + length:])
    except ValueError as e:
        raise ValueError(f"Malformed constructor arguments: {e}")
    return runtime, args


class ContractRegistry:
    """
    Registry mapping runtime code back to contract classes.

    Lookup ignores the metadata trailer, so the same class compiled from a
    different location still resolves.
    """

    def __init__(self):
        self._by_name: Dict[str, Type[Contract]] = {}
        self._by_code: Dict[bytes, Type[Contract]] = {}

    def register(self, cls: Type[Contract]) -> None:
        body = _runtime_body(cls)
        existing = self._by_code.get(body)
        if existing is not None and existing is not cls:
            logger.warning(f"Overwriting contract {cls.__name__} (was {existing.__module__}.{existing.__qualname__})")
        self._by_name[cls.__name__] = cls
        self._by_code[body] = cls
        logger.debug(f"Registered contract: {cls.__name__}")

    def get(self, name: str) -> Type[Contract]:
        if name not in self._by_name:
            raise KeyError(f"Contract {name} not found")
        return self._by_name[name]

    def resolve_code(self, code: bytes) -> Optional[Type[Contract]]:
        return self._by_code.get(strip_metadata(code))

    def has_contract(self, name: str) -> bool:
        return name in self._by_name

    def list_contracts(self) -> List[str]:
        return sorted(self._by_name)

    def artifact(self, name: str) -> Artifact:
        return compile_contract(self.get(name))


# Global contract registry
_global_registry = ContractRegistry()


def register_contract(cls: Type[Contract]) -> Type[Contract]:
    """
    Decorator to make a contract class deployable on the local chain.

    Usage:
        @register_contract
        class Counter(Contract):
            ...
    """
    _global_registry.register(cls)
    return cls


def get_contract_registry() -> ContractRegistry:
    """Get the global contract registry."""
    return _global_registry

