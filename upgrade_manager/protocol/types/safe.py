# MIT License
# Copyright (c) 2025 Hashborn

"""
Multisig (safe) transaction types shared by the safe contract and the
off-chain authorizer.

digest = sha256(0x1901 ++ domain_separator ++ struct_hash), where both parts
are sha256 over canonical JSON, the struct including the safe's own nonce.
"""

import json
from typing import List

from pydantic import BaseModel

from .common import Operation
from ..crypto.hash import sha256, from_hex, to_hex
from ..crypto.keys import sign, verify, public_key_from_private, SIGNATURE_LENGTH, PUBKEY_LENGTH
from ..crypto.addresses import ZERO_ADDRESS, address_bytes, address_from_pubkey

SAFE_SIGNATURE_LENGTH = SIGNATURE_LENGTH + PUBKEY_LENGTH


class SafeTx(BaseModel):
    to: str
    value: int = 0
    data: str = "0x"
    operation: int = int(Operation.CALL)
    safe_tx_gas: int = 0
    base_gas: int = 0
    gas_price: int = 0
    gas_token: str = ZERO_ADDRESS
    refund_receiver: str = ZERO_ADDRESS
    nonce: int


class SafeSignature(BaseModel):
    signer: str
    data: str  # hex: 64 byte signature ++ 33 byte compressed public key

    def verify(self, digest: bytes) -> bool:
        raw = from_hex(self.data)
        if len(raw) != SAFE_SIGNATURE_LENGTH:
            return False
        pub = raw[SIGNATURE_LENGTH:]
        if address_from_pubkey(pub) != self.signer:
            return False
        return verify(digest, raw[:SIGNATURE_LENGTH], pub)


def _canonical(value: dict) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def domain_separator(chain_id: str, safe: str) -> bytes:
    return sha256(_canonical({"chainId": chain_id, "verifyingContract": safe}))


def safe_tx_hash(chain_id: str, safe: str, tx: SafeTx) -> bytes:
    struct_hash = sha256(_canonical({"type": "SafeTx", **tx.model_dump()}))
    return sha256(b"\x19\x01" + domain_separator(chain_id, safe) + struct_hash)


def sign_safe_tx(digest: bytes, priv_key: bytes) -> SafeSignature:
    pub = public_key_from_private(priv_key)
    return SafeSignature(
        signer=address_from_pubkey(pub),
        data=to_hex(sign(digest, priv_key) + pub),
    )


def sort_signatures(signatures: List[SafeSignature]) -> List[SafeSignature]:
    """Orders signatures by signer address bytes, ascending, as the safe requires."""
    return sorted(signatures, key=lambda s: address_bytes(s.signer))


def pack_signatures(signatures: List[SafeSignature]) -> str:
    return to_hex(b"".join(from_hex(s.data) for s in signatures))


def unpack_signatures(packed: str) -> List[SafeSignature]:
    raw = from_hex(packed)
    if len(raw) % SAFE_SIGNATURE_LENGTH != 0:
        raise ValueError("Packed signatures have an invalid length")
    result = []
    for i in range(0, len(raw), SAFE_SIGNATURE_LENGTH):
        chunk = raw[i:i + SAFE_SIGNATURE_LENGTH]
        signer = address_from_pubkey(chunk[SIGNATURE_LENGTH:])
        result.append(SafeSignature(signer=signer, data=to_hex(chunk)))
    return result


def encode_prior_signatures(signatures: List[SafeSignature]) -> str:
    """Relay format: `signer:data,signer:data`."""
    return ",".join(f"{s.signer}:{s.data}" for s in signatures)


def decode_prior_signatures(encoded: str) -> List[SafeSignature]:
    if not encoded:
        return []
    result = []
    for item in encoded.split(","):
        item = item.strip()
        if not item:
            continue
        signer, sep, data = item.partition(":")
        if not sep or not data:
            raise ValueError(f"Malformed signature entry '{item}', expected signer:data")
        result.append(SafeSignature(signer=signer, data=data))
    return result
