# MIT License
# Copyright (c) 2025 Hashborn

import bech32 # type: ignore
from .hash import sha256, ripemd160, from_hex
from typing import Tuple, Optional

ADDRESS_PREFIX = "um"
ADDRESS_LENGTH = 20


def encode_address(h20: bytes, prefix: str = ADDRESS_PREFIX) -> str:
    """Encodes 20 raw bytes as a Bech32 address."""
    if len(h20) != ADDRESS_LENGTH:
        raise ValueError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(h20)}")

    five_bit_r = bech32.convertbits(h20, 8, 5)
    if five_bit_r is None:
        raise ValueError("Error converting to bech32 words")

    return bech32.bech32_encode(prefix, five_bit_r)


def address_from_pubkey(pub_bytes: bytes, prefix: str = ADDRESS_PREFIX) -> str:
    """Creates Bech32 address from public key."""
    sha = sha256(pub_bytes)
    h20 = ripemd160(sha) # 20 bytes
    return encode_address(h20, prefix)


def decode_address(addr: str) -> Tuple[str, bytes]:
    """Decodes Bech32 address to (prefix, h20_bytes)."""
    hrp, data = bech32.bech32_decode(addr)
    if hrp is None or data is None:
        raise ValueError(f"Invalid bech32 address: {addr}")

    decoded = bech32.convertbits(data, 5, 8, False)
    if decoded is None:
        raise ValueError("Error converting from bech32 words")

    return hrp, bytes(decoded)


def address_bytes(addr: str) -> bytes:
    return decode_address(addr)[1]


def is_valid_address(addr: str, expected_prefix: Optional[str] = None) -> bool:
    try:
        hrp, raw = decode_address(addr)
        if expected_prefix and hrp != expected_prefix:
            return False
        return len(raw) == ADDRESS_LENGTH
    except ValueError:
        return False


ZERO_ADDRESS = encode_address(b"\x00" * ADDRESS_LENGTH)


def is_zero_address(addr: Optional[str]) -> bool:
    return not addr or addr == ZERO_ADDRESS


def contract_address(sender: str, nonce: int) -> str:
    """Address of a contract created by `sender` with account nonce `nonce`."""
    digest = sha256(b"create" + address_bytes(sender) + nonce.to_bytes(32, "big"))
    return encode_address(digest[12:])


def create2_address(deployer: str, salt: bytes, init_code: bytes) -> str:
    """
    Address of a contract created through a CREATE2 deployer.

    Depends only on the deployer address, the 32 byte salt and the full init
    code (bytecode followed by encoded constructor arguments).
    """
    if len(salt) != 32:
        raise ValueError("Salt must be 32 bytes")
    digest = sha256(b"\xff" + address_bytes(deployer) + salt + sha256(init_code))
    return encode_address(digest[12:])


def address_from_hex(value: str) -> str:
    """Encodes a 0x-prefixed 20 byte hex value as an address."""
    return encode_address(from_hex(value))
