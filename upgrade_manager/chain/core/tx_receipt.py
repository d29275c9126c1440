"""
Transaction receipt tracking.

Stores the outcome of transactions, including contract events, for querying.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import time
import logging
from threading import RLock

logger = logging.getLogger(__name__)


@dataclass
class TxLog:
    """Event emitted by a contract during execution."""
    address: str
    event: str
    args: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"address": self.address, "event": self.event, "args": self.args}


@dataclass
class TxReceipt:
    """
    Transaction receipt.

    Attributes:
        tx_hash: Transaction hash
        status: 'pending' or 'confirmed'
        block_height: Block height where TX was included (None if pending)
        contract_address: Address of the created contract, for creations
        return_value: Value returned by the top-level call
        logs: Contract events in emission order
    """
    tx_hash: str
    status: str
    block_height: Optional[int] = None
    contract_address: Optional[str] = None
    return_value: Any = None
    logs: List[TxLog] = field(default_factory=list)
    gas_used: int = 0
    timestamp: int = 0

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = int(time.time())

    def events(self, name: str) -> List[TxLog]:
        return [log for log in self.logs if log.event == name]

    def to_dict(self) -> dict:
        """Convert receipt to dictionary for API response."""
        return {
            "tx_hash": self.tx_hash,
            "status": self.status,
            "block_height": self.block_height,
            "contract_address": self.contract_address,
            "return_value": self.return_value,
            "logs": [log.to_dict() for log in self.logs],
            "gas_used": self.gas_used,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'TxReceipt':
        logs = [TxLog(**log) for log in data.get("logs", [])]
        return cls(
            tx_hash=data["tx_hash"],
            status=data["status"],
            block_height=data.get("block_height"),
            contract_address=data.get("contract_address"),
            return_value=data.get("return_value"),
            logs=logs,
            gas_used=data.get("gas_used", 0),
            timestamp=data.get("timestamp", 0),
        )


class TxReceiptStore:
    """
    In-memory store for transaction receipts.

    Thread-safe storage with automatic cleanup of old receipts.
    """

    def __init__(self, max_receipts: int = 10000):
        self.receipts: Dict[str, TxReceipt] = {}
        self.max_receipts = max_receipts
        self.lock = RLock()

    def add_pending(self, tx_hash: str) -> TxReceipt:
        with self.lock:
            receipt = TxReceipt(tx_hash=tx_hash, status='pending')
            self.receipts[tx_hash] = receipt
            if len(self.receipts) > self.max_receipts:
                self._cleanup_old_receipts()
            logger.debug(f"Added pending receipt: {tx_hash[:16]}...")
            return receipt

    def mark_confirmed(self, tx_hash: str, block_height: int, **outcome: Any) -> TxReceipt:
        """
        Mark transaction as confirmed, recording its execution outcome.

        Args:
            tx_hash: Transaction hash
            block_height: Block height where TX was included
            **outcome: contract_address, return_value, logs, gas_used
        """
        with self.lock:
            receipt = self.receipts.get(tx_hash)
            if not receipt:
                receipt = TxReceipt(tx_hash=tx_hash, status='confirmed')
                self.receipts[tx_hash] = receipt
            receipt.status = 'confirmed'
            receipt.block_height = block_height
            for key, value in outcome.items():
                setattr(receipt, key, value)

            logger.debug(f"Marked confirmed: {tx_hash[:16]}... at height {block_height}")
            return receipt

    def get(self, tx_hash: str) -> Optional[TxReceipt]:
        with self.lock:
            return self.receipts.get(tx_hash)

    def _cleanup_old_receipts(self) -> None:
        """Remove the oldest receipts to keep the store under max_receipts."""
        sorted_receipts = sorted(self.receipts.items(), key=lambda x: x[1].timestamp)
        to_remove = len(self.receipts) - self.max_receipts
        for tx_hash, _ in sorted_receipts[:to_remove]:
            del self.receipts[tx_hash]
        logger.info(f"Cleaned up {to_remove} old receipts")
