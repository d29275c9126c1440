# MIT License
# Copyright (c) 2025 Hashborn

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..observability import metrics
from ..protocol.crypto.addresses import is_zero_address
from ..protocol.types.abi import format_encoded_call, is_empty_call_data
from ..protocol.types.common import NotFound, ProtocolError
from .ledger import deployed_code_matches, get_implementation_address, get_upgrade_manager

logger = logging.getLogger(__name__)

STATUS_HEADERS = [
    "Contract ID",
    "Contract Name",
    "Proxy Address",
    "Current Implementation Address",
    "Proposed Implementation Address",
    "Proposed Function Call",
    "Local Bytecode Changed",
]


@dataclass
class StatusRow:
    contract_id: str
    contract_name: str
    proxy_address: str
    current_implementation: str
    proposed_implementation: Optional[str]
    proposed_call: Optional[str]
    local_bytecode_changed: Optional[str]

    def cells(self) -> List[str]:
        return [
            self.contract_id,
            self.contract_name,
            self.proxy_address,
            self.current_implementation,
            self.proposed_implementation or "",
            self.proposed_call or "",
            self.local_bytecode_changed or "",
        ]


def get_protocol_status(config, include_unchanged: bool = False) -> Tuple[List[StatusRow], bool]:
    """Rows for adopted proxies (all of them, or only changed ones) and whether anything changed."""
    ledger = get_upgrade_manager(config)
    proxies = ledger.proxies()
    rows = []
    any_changed = False
    pending_count = 0

    for proxy in proxies:
        adopted = ledger.adopted_record(proxy)
        contract_config = config.contract(adopted["id"])
        if not contract_config:
            raise NotFound(
                f"Could not find contract config in your local configuration for adopted contract {adopted['id']}"
            )
        contract_name = contract_config.contract

        local_bytecode_changed = None if deployed_code_matches(config, contract_name, proxy) else "YES"
        has_pending = not is_zero_address(adopted["upgradeAddress"]) or not is_empty_call_data(adopted["encodedCall"])
        if has_pending:
            pending_count += 1

        code_changes = has_pending or local_bytecode_changed
        if code_changes:
            any_changed = True
        if not code_changes and not include_unchanged:
            continue

        formatted_call = None
        if not is_empty_call_data(adopted["encodedCall"]):
            formatted_call = format_encoded_call(adopted["encodedCall"])
            try:
                config.network.call(proxy, adopted["encodedCall"], from_address=ledger.address)
            except ProtocolError as e:
                formatted_call = f"{formatted_call}\nFAILING CALL!: {e.message}"

        rows.append(StatusRow(
            contract_id=adopted["id"],
            contract_name=contract_name,
            proxy_address=proxy,
            current_implementation=get_implementation_address(config.network, proxy),
            proposed_implementation=None if is_zero_address(adopted["upgradeAddress"]) else adopted["upgradeAddress"],
            proposed_call=formatted_call,
            local_bytecode_changed=local_bytecode_changed,
        ))

    metrics.update_ledger_metrics(pending_count, len(proxies))
    return rows, any_changed


def render_table(rows: List[StatusRow]) -> str:
    table = [STATUS_HEADERS] + [row.cells() for row in rows]
    widths = [max(len(line) for r in table for line in r[i].split("\n")) for i in range(len(STATUS_HEADERS))]

    def render(cells: List[str]) -> List[str]:
        split = [c.split("\n") for c in cells]
        height = max(len(s) for s in split)
        return [
            " | ".join((s[n] if n < len(s) else "").ljust(w) for s, w in zip(split, widths))
            for n in range(height)
        ]

    lines = render(STATUS_HEADERS)
    lines.append("-+-".join("-" * w for w in widths))
    for row in rows:
        lines.extend(render(row.cells()))
    return "\n".join(lines)


def report_protocol_status(config, quiet: bool = False) -> bool:
    """Prints the status table. Returns True if changes were detected."""
    rows, any_changed = get_protocol_status(config, include_unchanged=True)
    print(render_table(rows))

    if any_changed:
        if not quiet:
            print("Exiting with exit code 1 because changes were detected")
    else:
        print("No changes detected to deploy")
    return any_changed
