# MIT License
# Copyright (c) 2025 Hashborn

"""
Network access used by the deploy tooling.

`InProcessNetwork` talks to a LocalChain living in the same process,
`RpcNetwork` to a node serving `chain/rpc/api.py` over HTTP. Both raise the
protocol error a node raised; HTTP connection failures and 5xx responses are
turned into TransientError so the execution driver retries them.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
import logging

import requests

from ..chain.core.chain import LocalChain
from ..chain.core.tx_receipt import TxReceipt
from ..protocol.types.abi import encode_call
from ..protocol.types.common import ProtocolError, TransientError, error_from_dict
from ..protocol.types.tx import Transaction

logger = logging.getLogger(__name__)


class Network(ABC):

    @property
    @abstractmethod
    def chain_id(self) -> str:
        ...

    @abstractmethod
    def send_transaction(self, tx: Transaction) -> str:
        """Broadcasts a signed transaction and returns its hash."""

    @abstractmethod
    def call(self, to_address: Optional[str], data: str, from_address: Optional[str] = None, value: int = 0) -> Any:
        """Read-only execution against the latest state."""

    @abstractmethod
    def get_code(self, address: str) -> str:
        ...

    @abstractmethod
    def get_transaction_count(self, address: str) -> int:
        ...

    @abstractmethod
    def get_balance(self, address: str) -> int:
        ...

    @abstractmethod
    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        ...

    @abstractmethod
    def get_storage_at(self, address: str, key: str) -> Any:
        ...

    def call_method(self, to_address: str, method: str, *args: Any, from_address: Optional[str] = None) -> Any:
        return self.call(to_address, encode_call(method, *args), from_address=from_address)

    def has_code(self, address: str) -> bool:
        return self.get_code(address) not in ("", "0x")


class InProcessNetwork(Network):

    def __init__(self, chain: LocalChain):
        self.chain = chain

    @property
    def chain_id(self) -> str:
        return self.chain.chain_id

    def send_transaction(self, tx: Transaction) -> str:
        return self.chain.send_transaction(tx)

    def call(self, to_address: Optional[str], data: str, from_address: Optional[str] = None, value: int = 0) -> Any:
        return self.chain.call(to_address, data, from_address=from_address, value=value)

    def get_code(self, address: str) -> str:
        return self.chain.get_code(address)

    def get_transaction_count(self, address: str) -> int:
        return self.chain.get_transaction_count(address)

    def get_balance(self, address: str) -> int:
        return self.chain.get_balance(address)

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return self.chain.get_receipt(tx_hash)

    def get_storage_at(self, address: str, key: str) -> Any:
        return self.chain.get_storage_at(address, key)


class RpcNetwork(Network):
    """JSON-over-HTTP client for a node started with `upm node`."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._chain_id: Optional[str] = None

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"Connection error talking to {url}: {e}")

        if resp.status_code >= 500:
            raise TransientError(f"Node error {resp.status_code} from {url}: {resp.text}")
        if resp.status_code != 200:
            raise self._error(resp)
        return resp.json()

    @staticmethod
    def _error(resp: requests.Response) -> ProtocolError:
        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = None
        if isinstance(detail, dict) and "kind" in detail:
            return error_from_dict(detail)
        return ProtocolError(f"Node error {resp.status_code}: {detail or resp.text}")

    @property
    def chain_id(self) -> str:
        if self._chain_id is None:
            self._chain_id = self._request("GET", "/status")["chain_id"]
        return self._chain_id

    def send_transaction(self, tx: Transaction) -> str:
        return self._request("POST", "/tx/send", json=tx.model_dump())["tx_hash"]

    def call(self, to_address: Optional[str], data: str, from_address: Optional[str] = None, value: int = 0) -> Any:
        payload = {"to_address": to_address, "data": data, "from_address": from_address, "value": value}
        return self._request("POST", "/call", json=payload)["result"]

    def get_code(self, address: str) -> str:
        return self._request("GET", f"/code/{address}")["code"]

    def get_transaction_count(self, address: str) -> int:
        return int(self._request("GET", f"/account/{address}")["nonce"])

    def get_balance(self, address: str) -> int:
        return int(self._request("GET", f"/account/{address}")["balance"])

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        try:
            data = self._request("GET", f"/tx/{tx_hash}/receipt")
        except ProtocolError as e:
            if "not found" in e.message.lower():
                return None
            raise
        return TxReceipt.from_dict(data)

    def get_storage_at(self, address: str, key: str) -> Any:
        return self._request("GET", f"/storage/{address}/{key}")["value"]


def connect(network_config, chain: Optional[LocalChain] = None) -> Network:
    """Network for a NetworkConfig: in-process for local networks, HTTP otherwise."""
    if network_config.is_local:
        return InProcessNetwork(chain or LocalChain(network_config))
    logger.info(f"Using node at {network_config.rpc_url}")
    return RpcNetwork(network_config.rpc_url)
