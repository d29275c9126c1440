# MIT License
# Copyright (c) 2025 Hashborn

from ecdsa import BadSignatureError, MalformedPointError, SigningKey, VerifyingKey, SECP256k1 # type: ignore
from ecdsa.util import sigdecode_string, sigencode_string # type: ignore

PRIVATE_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64
PUBKEY_LENGTH = 33


def generate_private_key() -> bytes:
    """Generates a random 32-byte secp256k1 private key."""
    return SigningKey.generate(curve=SECP256k1).to_string()


def private_key_from_hex(value: str) -> bytes:
    """Parses a private key given as hex, with or without 0x."""
    try:
        raw = bytes.fromhex(value.strip().removeprefix("0x"))
    except ValueError:
        raise ValueError("Invalid hex string")
    if len(raw) != PRIVATE_KEY_LENGTH:
        raise ValueError("Invalid private key length")
    return raw


def _signing_key(priv_bytes: bytes) -> SigningKey:
    return SigningKey.from_string(priv_bytes, curve=SECP256k1)


def public_key_from_private(priv_bytes: bytes) -> bytes:
    """Returns compressed 33-byte public key from private key."""
    return _signing_key(priv_bytes).get_verifying_key().to_string("compressed")


def sign(message_hash: bytes, priv_bytes: bytes) -> bytes:
    """Signs a 32 byte digest (RFC 6979 nonces). Returns the 64-byte r||s signature."""
    return _signing_key(priv_bytes).sign_digest_deterministic(message_hash, sigencode=sigencode_string)


def verify(message_hash: bytes, signature: bytes, pub_bytes: bytes) -> bool:
    if len(signature) != SIGNATURE_LENGTH:
        return False
    try:
        vk = VerifyingKey.from_string(pub_bytes, curve=SECP256k1)
        return vk.verify_digest(signature, message_hash, sigdecode=sigdecode_string)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False
