# MIT License
# Copyright (c) 2025 Hashborn

from typing import Any

from .base import Contract, register_contract
from ...protocol.crypto.addresses import create2_address
from ...protocol.crypto.hash import from_hex
from ...protocol.types.common import InvalidInput, PermissionDenied


@register_contract
class Create2Deployer(Contract):
    """
    Singleton deployment proxy.

    Call data is raw bytes rather than an encoded call: a 32 byte salt
    followed by init code. The created contract's address only depends on
    this proxy's address, the salt and the init code. Returns that address.
    """

    def handle(self, data: str) -> Any:
        if self.ctx.static:
            raise PermissionDenied("Create2Deployer: cannot deploy during static call")
        try:
            raw = from_hex(data)
        except ValueError as e:
            raise InvalidInput(f"Create2Deployer: {e}")
        if len(raw) < 32:
            raise InvalidInput("Create2Deployer: call data must start with a 32 byte salt")
        salt, init_code = raw[:32], raw[32:]
        address = create2_address(self.address, salt, init_code)
        return self.vm.create(self.address, init_code, address, self.ctx.value)
