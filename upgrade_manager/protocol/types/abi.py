# MIT License
# Copyright (c) 2025 Hashborn

"""
Call data codec.

Contract calls are encoded as canonical JSON `{"method": ..., "args": [...]}`
and carried as 0x-prefixed hex, so call data can be compared byte-for-byte
and hashed. Empty call data is "0x".
"""

import json
from typing import Any, List, Sequence, Tuple
from ..crypto.hash import to_hex, from_hex

EMPTY_CALL_DATA = "0x"


def _canonical(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def encode_call(method: str, *args: Any) -> str:
    """Encodes a function call as hex call data."""
    if not method:
        raise ValueError("Method name must not be empty")
    return to_hex(_canonical({"method": method, "args": list(args)}))


def decode_call(data: str) -> Tuple[str, List[Any]]:
    """Decodes hex call data into (method, args)."""
    raw = from_hex(data)
    if not raw:
        raise ValueError("Empty call data")
    try:
        payload = json.loads(raw.decode("utf-8"))
        return payload["method"], list(payload.get("args", []))
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise ValueError(f"Malformed call data: {e}")


def is_empty_call_data(data: str) -> bool:
    return not data or data in ("0x", "0X")


def encode_args(args: Sequence[Any]) -> bytes:
    """Encodes constructor arguments appended to init code."""
    if not args:
        return b""
    return _canonical(list(args))


def decode_args(raw: bytes) -> List[Any]:
    if not raw:
        return []
    return list(json.loads(raw.decode("utf-8")))


def format_encoded_call(data: str) -> str:
    """Human readable rendering of call data, e.g. `setup("bar", 1)`."""
    if is_empty_call_data(data):
        return "<empty call>"
    try:
        method, args = decode_call(data)
    except ValueError:
        return f"<undecodable call {data[:18]}...>"
    rendered = ", ".join(json.dumps(a) for a in args)
    return f"{method}({rendered})"
