# MIT License
# Copyright (c) 2025 Hashborn

from typing import Any, Dict, List, Optional, Tuple
import copy
import logging
import threading

from ...protocol.types.tx import Transaction
from ...protocol.types.common import InvalidInput, PermissionDenied, ProtocolError
from ...protocol.crypto.keys import verify, public_key_from_private
from ...protocol.crypto.hash import sha256, from_hex
from ...protocol.crypto.addresses import address_from_pubkey, contract_address, ZERO_ADDRESS
from ...protocol.config.params import NetworkConfig, get_network
from ...observability import metrics
from ..contracts import ContractRegistry, get_contract_registry
from .state import WorldState
from .events import EventBus
from .tx_receipt import TxReceipt, TxReceiptStore
from .vm import VM

logger = logging.getLogger(__name__)


def dev_private_key(seed: str, index: int) -> bytes:
    """Deterministic private key of dev account `index` derived from a seed phrase."""
    return sha256(f"{seed}/{index}".encode("utf-8"))


class LocalChain:
    """
    In-process account-based chain hosting the contracts of this package.

    Every transaction is simulated first; a transaction whose execution
    raises is rejected without touching state (its nonce is not consumed).
    Accepted transactions are mined immediately unless `automine` is off, in
    which case they wait in `pending` until `mine()`.
    """

    def __init__(self, config: NetworkConfig = None, registry: ContractRegistry = None, automine: bool = True):
        self._lock = threading.RLock()
        self.config = config or get_network("devnet")
        self.registry = registry or get_contract_registry()
        self.automine = automine
        self.state = WorldState()
        self.height = 0
        self.pending: List[Tuple[Transaction, WorldState, Dict[str, Any]]] = []
        self.receipts = TxReceiptStore()
        self.events = EventBus()
        self.dev_keys: List[Tuple[str, bytes]] = []
        self._apply_dev_accounts()
        logger.info(f"Local chain {self.chain_id} initialized with {len(self.dev_keys)} dev accounts")

    @property
    def chain_id(self) -> str:
        return self.config.chain_id

    def _apply_dev_accounts(self):
        seed = self.config.dev_mnemonic_seed
        if not seed:
            return
        for i in range(self.config.dev_account_count):
            priv = dev_private_key(seed, i)
            address = address_from_pubkey(public_key_from_private(priv))
            self.state.get_account(address).balance = self.config.dev_account_balance
            self.dev_keys.append((address, priv))

    # --- Reads ---

    def get_code(self, address: str) -> str:
        with self._lock:
            return self.state.get_code(address)

    def get_balance(self, address: str) -> int:
        with self._lock:
            return self.state.get_account(address).balance if self.state.has_account(address) else 0

    def get_transaction_count(self, address: str) -> int:
        """Number of mined transactions sent from `address`."""
        with self._lock:
            return self.state.get_account(address).nonce if self.state.has_account(address) else 0

    def get_storage_at(self, address: str, key: str) -> Any:
        with self._lock:
            if not self.state.has_account(address):
                return None
            return copy.deepcopy(self.state.get_account(address).storage.get(key))

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return self.receipts.get(tx_hash)

    def call(self, to_address: Optional[str], data: str, from_address: Optional[str] = None, value: int = 0) -> Any:
        """
        Executes a call against a copy of the latest mined state.

        With `to_address` None, `data` is treated as init code and the would-be
        contract address is returned.
        """
        sender = from_address or ZERO_ADDRESS
        with self._lock:
            vm = VM(self.state.clone(), self.registry, self.chain_id)
            if to_address is None:
                address = contract_address(sender, vm.state.get_account(sender).nonce)
                return vm.create(sender, from_hex(data), address, value)
            return vm.message_call(sender, to_address, data, value=value)

    # --- Writes ---

    def send_transaction(self, tx: Transaction) -> str:
        """Validates, simulates and accepts a signed transaction. Returns its hash."""
        with self._lock:
            head = self.pending[-1][1] if self.pending else self.state
            self._validate(tx, head)

            working = head.clone()
            tx_hash = tx.hash_hex
            try:
                outcome = self._apply(working, tx)
            except ProtocolError as e:
                metrics.transactions_reverted_total.labels(kind=e.kind.value).inc()
                logger.info(f"Tx {tx_hash[:18]}... reverted: {e.message}")
                raise

            if self.automine:
                self._commit(tx, working, outcome)
            else:
                self.pending.append((tx, working, outcome))
                self.receipts.add_pending(tx_hash)
                metrics.update_chain_metrics(self)
            return tx_hash

    def mine(self) -> int:
        """Mines every pending transaction, one per block. Returns the count."""
        with self._lock:
            mined = 0
            for tx, working, outcome in self.pending:
                self._commit(tx, working, outcome)
                mined += 1
            self.pending = []
            return mined

    def set_balance(self, address: str, amount: int) -> None:
        """Dev helper: overwrite an account balance."""
        with self._lock:
            self.state.get_account(address).balance = amount

    def _validate(self, tx: Transaction, head: WorldState):
        if tx.chain_id != self.chain_id:
            raise InvalidInput(f"Invalid chain id: expected {self.chain_id}, got {tx.chain_id}")

        if not tx.signature or not tx.pub_key:
            raise PermissionDenied("Transaction is not signed")
        try:
            pub = bytes.fromhex(tx.pub_key)
            signature = bytes.fromhex(tx.signature)
        except ValueError:
            raise PermissionDenied("Malformed signature or public key")
        if address_from_pubkey(pub) != tx.from_address:
            raise PermissionDenied("Public key does not match sender address")
        if not verify(from_hex(tx.hash()), signature, pub):
            raise PermissionDenied("Invalid transaction signature")

        sender = head.get_account(tx.from_address) if head.has_account(tx.from_address) else None
        expected_nonce = sender.nonce if sender else 0
        if tx.nonce != expected_nonce:
            raise InvalidInput(f"Invalid tx nonce: expected {expected_nonce}, got {tx.nonce}")

        if tx.gas_price < self.config.min_gas_price:
            raise InvalidInput(f"Gas price {tx.gas_price} below minimum {self.config.min_gas_price}")

        needed = tx.value + tx.max_fee
        balance = sender.balance if sender else 0
        if balance < needed:
            raise InvalidInput(f"Insufficient balance: {balance} < {needed}")

    def _apply(self, state: WorldState, tx: Transaction) -> Dict[str, Any]:
        sender = state.get_account(tx.from_address)
        sender.balance -= tx.max_fee
        nonce = sender.nonce
        sender.nonce += 1

        vm = VM(state, self.registry, self.chain_id)
        created = None
        if tx.to_address is None:
            created = vm.create(tx.from_address, from_hex(tx.data), contract_address(tx.from_address, nonce), tx.value)
            result = created
        else:
            result = vm.message_call(tx.from_address, tx.to_address, tx.data, value=tx.value)

        return {
            "contract_address": created,
            "return_value": result,
            "logs": vm.logs,
            "gas_used": tx.gas_limit,
        }

    def _commit(self, tx: Transaction, working: WorldState, outcome: Dict[str, Any]):
        self.state = working
        self.height += 1
        receipt = self.receipts.mark_confirmed(tx.hash_hex, self.height, **outcome)

        metrics.update_transaction_metrics(tx)
        metrics.update_chain_metrics(self)
        logger.debug(f"Tx {tx.hash_hex[:18]}... mined in block {self.height}")

        self.events.publish_receipt(tx, receipt)
