# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel
from typing import Optional
from ..crypto.hash import sha256_hex, from_hex
from ..crypto.keys import sign as crypto_sign, public_key_from_private
from ..crypto.addresses import address_from_pubkey


class Transaction(BaseModel):
    from_address: str
    to_address: Optional[str] = None # None creates a contract from `data`
    data: str = "0x"
    value: int = 0
    nonce: int
    gas_price: int = 0
    gas_limit: int = 0
    chain_id: str = ""
    signature: str = ""  # hex (r,s), default empty
    pub_key: str = ""    # hex compressed public key of sender

    def hash(self) -> str:
        to_addr = self.to_address if self.to_address else ""

        payload_str = (
            self.chain_id
            + self.from_address
            + to_addr
            + self.data
            + str(self.value)
            + str(self.nonce)
            + str(self.gas_price)
            + str(self.gas_limit)
            + self.pub_key
        )
        return sha256_hex(payload_str.encode("utf-8"))

    @property
    def hash_hex(self) -> str:
        return self.hash()

    @property
    def max_fee(self) -> int:
        return self.gas_price * self.gas_limit

    def sign(self, priv_key_bytes: bytes):
        """Fills in pub_key and signs the transaction hash."""
        pub = public_key_from_private(priv_key_bytes)
        if address_from_pubkey(pub) != self.from_address:
            raise ValueError("Signing key does not match from_address")
        self.pub_key = pub.hex()
        msg_hash = from_hex(self.hash())
        self.signature = crypto_sign(msg_hash, priv_key_bytes).hex()
