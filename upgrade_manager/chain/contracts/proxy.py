# MIT License
# Copyright (c) 2025 Hashborn

"""
Transparent upgradeable proxy and its admin contract.

Calls from the proxy admin are handled by the proxy itself; every other
caller is forwarded to the implementation, which runs on the proxy's
storage.
"""

from typing import Any

from .base import Contract, Ownable, external, view, register_contract
from ...protocol.crypto.addresses import ZERO_ADDRESS, is_zero_address
from ...protocol.types.abi import decode_call, is_empty_call_data
from ...protocol.types.common import InvalidInput, PermissionDenied

# Slots kept apart from anything an implementation may store
IMPLEMENTATION_SLOT = "eip1967.proxy.implementation"
ADMIN_SLOT = "eip1967.proxy.admin"

ADMIN_FUNCTIONS = ("admin", "implementation", "changeAdmin", "upgradeTo", "upgradeToAndCall")


@register_contract
class TransparentUpgradeableProxy(Contract):

    def constructor(self, logic: str, admin: str, data: str = "0x") -> None:
        self._upgrade_to(logic)
        self._change_admin(admin)
        if not is_empty_call_data(data):
            self.delegate(logic, data)

    def handle(self, data: str) -> Any:
        if self.sender == self.storage.get(ADMIN_SLOT):
            try:
                method, args = decode_call(data)
            except ValueError as e:
                raise InvalidInput(f"TransparentUpgradeableProxy: {e}")
            if method not in ADMIN_FUNCTIONS:
                raise PermissionDenied("TransparentUpgradeableProxy: admin cannot fallback to proxy target")
            return self.dispatch(method, args)
        return self.delegate(self.storage[IMPLEMENTATION_SLOT], data)

    def _upgrade_to(self, implementation: str) -> None:
        if not self.is_contract(implementation):
            raise InvalidInput("ERC1967: new implementation is not a contract")
        self.storage[IMPLEMENTATION_SLOT] = implementation
        self.emit("Upgraded", implementation=implementation)

    def _change_admin(self, new_admin: str) -> None:
        if is_zero_address(new_admin):
            raise InvalidInput("ERC1967: new admin is the zero address")
        previous = self.storage.get(ADMIN_SLOT, ZERO_ADDRESS)
        self.storage[ADMIN_SLOT] = new_admin
        self.emit("AdminChanged", previousAdmin=previous, newAdmin=new_admin)

    @view
    def admin(self) -> str:
        return self.storage[ADMIN_SLOT]

    @view
    def implementation(self) -> str:
        return self.storage[IMPLEMENTATION_SLOT]

    @external
    def changeAdmin(self, new_admin: str) -> None:
        self._change_admin(new_admin)

    @external
    def upgradeTo(self, new_implementation: str) -> None:
        self._upgrade_to(new_implementation)

    @external
    def upgradeToAndCall(self, new_implementation: str, data: str) -> Any:
        self._upgrade_to(new_implementation)
        return self.delegate(new_implementation, data)


@register_contract
class ProxyAdmin(Ownable):
    """Owns the admin role of any number of transparent proxies."""

    def constructor(self) -> None:
        self._set_owner(self.sender)

    @view
    def getProxyImplementation(self, proxy: str) -> str:
        return self.static_call(proxy, "implementation")

    @view
    def getProxyAdmin(self, proxy: str) -> str:
        return self.static_call(proxy, "admin")

    @external
    def changeProxyAdmin(self, proxy: str, new_admin: str) -> None:
        self._only_owner()
        self.call_contract(proxy, "changeAdmin", new_admin)

    @external
    def upgrade(self, proxy: str, implementation: str) -> None:
        self._only_owner()
        self.call_contract(proxy, "upgradeTo", implementation)

    @external
    def upgradeAndCall(self, proxy: str, implementation: str, data: str) -> Any:
        self._only_owner()
        return self.call_contract(proxy, "upgradeToAndCall", implementation, data)
