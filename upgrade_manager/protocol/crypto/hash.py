# MIT License
# Copyright (c) 2025 Hashborn

import hashlib
from typing import Union


def sha256(data: bytes) -> bytes:
    """Returns SHA256 hash of bytes."""
    return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
    """Returns SHA256 hash of bytes as 0x-prefixed hex string."""
    return "0x" + sha256(data).hex()


def ripemd160(data: bytes) -> bytes:
    """Returns RIPEMD160 hash of bytes."""
    h = hashlib.new('ripemd160')
    h.update(data)
    return h.digest()


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    if value.startswith("0x") or value.startswith("0X"):
        value = value[2:]
    return bytes.fromhex(value)


def strip_metadata(code: bytes) -> bytes:
    """
    Removes the trailing metadata section from runtime bytecode.

    The last two bytes hold the big-endian length of the metadata blob that
    precedes them. Code whose length prefix does not fit is returned as-is.
    """
    if len(code) < 2:
        return code
    metadata_length = int.from_bytes(code[-2:], "big")
    if metadata_length + 2 > len(code):
        return code
    return code[:-(metadata_length + 2)]


def hash_bytecode_without_metadata(code: Union[str, bytes]) -> str:
    """Content hash of bytecode, ignoring compiler metadata."""
    return sha256_hex(strip_metadata(from_hex(code)))


def id_hash(contract_id: str) -> str:
    """Storage key for an abstract contract id."""
    return sha256_hex(contract_id.encode("utf-8"))
