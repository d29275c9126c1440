"""
Pub/sub for committed chain activity.

Topics:
    tx_confirmed       every mined transaction (tx, receipt)
    event:<Name>       one contract event of a mined receipt (log, receipt)
    event:*            every contract event
"""
from collections import defaultdict
from threading import RLock
from typing import Any, Callable, Dict, List
import logging

from .tx_receipt import TxReceipt

logger = logging.getLogger(__name__)

ANY_EVENT = "*"


class EventBus:
    """
    Synchronous event bus of a LocalChain.

    Listeners run on the committing thread, after the new state is visible.
    A failing listener is logged and does not affect the commit.
    """

    def __init__(self):
        self._lock = RLock()
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Callable) -> Callable[[], None]:
        """Registers `callback` for `topic`. Returns a function that removes it."""
        with self._lock:
            self.listeners[topic].append(callback)
        logger.debug(f"Subscribed to {topic}")

        def unsubscribe():
            with self._lock:
                if callback in self.listeners.get(topic, []):
                    self.listeners[topic].remove(callback)

        return unsubscribe

    def on_contract_event(self, name: str, callback: Callable) -> Callable[[], None]:
        """Subscribes to a contract event by name, or to all of them with '*'."""
        return self.subscribe(f"event:{name}", callback)

    def emit(self, topic: str, **data: Any) -> None:
        with self._lock:
            listeners = list(self.listeners.get(topic, []))
        for callback in listeners:
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Error in listener for {topic}: {e}", exc_info=True)

    def publish_receipt(self, tx, receipt: TxReceipt) -> None:
        """Fans a mined transaction out to its topics."""
        from ...observability.metrics import event_confirmations_total
        event_confirmations_total.inc()

        self.emit("tx_confirmed", tx=tx, receipt=receipt)
        for log in receipt.logs:
            self.emit(f"event:{log.event}", log=log, receipt=receipt)
            self.emit(f"event:{ANY_EVENT}", log=log, receipt=receipt)

    def clear(self) -> None:
        with self._lock:
            self.listeners.clear()
