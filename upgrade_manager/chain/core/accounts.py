# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import Any, Dict


class Account(BaseModel):
    address: str
    balance: int = 0
    nonce: int = 0

    # Runtime code of a contract account ("0x" for externally owned accounts)
    code: str = "0x"

    # Contract storage, plain JSON-like values only so it can be cloned
    storage: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_contract(self) -> bool:
        return self.code not in ("", "0x")
