"""
StockEventBus -- explicit change-notification channel for part quantities.

Responsibility:
    Delivers a PartChangedEvent to every subscriber after PartStore commits
    a quantity change.  Replaces live-listener coupling to the storage
    layer: subscribers (dashboards, low-stock alerts) register here and
    never poll or watch store keys.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Published to by PartStore only.  Subscribed to by anything.

Invariants enforced:
    - Events are published only after the store write succeeded, so a
      subscriber never sees a quantity that was not committed.
    - A failing subscriber cannot fail or roll back the write; the error is
      logged and delivery continues with the next subscriber.

Failure modes:
    (none raised -- subscriber exceptions are logged with exc_info)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from stock_kernel.domain.parts import TransactionKind
from stock_kernel.logging_config import get_logger

logger = get_logger("services.event_bus")


@dataclass(frozen=True)
class PartChangedEvent:
    """A committed change to one part's on-hand quantity."""

    part_id: str
    quantity_before: int
    quantity_after: int
    delta: int
    kind: TransactionKind
    version: int
    occurred_at: datetime
    is_low_stock: bool
    source_record_id: str | None = None


Subscriber = Callable[[PartChangedEvent], None]


class StockEventBus:
    """
    Synchronous in-process publish/subscribe for PartChangedEvent.

    Guarantees:
        - Subscribers registered for a part id receive only that part's
          events; subscribers registered with ``part_id=None`` receive all.
        - Delivery order follows subscription order.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[str | None, Subscriber]] = []

    def subscribe(
        self,
        callback: Subscriber,
        part_id: str | None = None,
    ) -> Callable[[], None]:
        """
        Register a callback.

        Returns:
            A function that removes this subscription when called.
        """
        entry = (part_id, callback)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: PartChangedEvent) -> int:
        """Deliver event to matching subscribers. Returns the delivery count."""
        with self._lock:
            targets = [
                callback
                for part_id, callback in self._subscribers
                if part_id is None or part_id == event.part_id
            ]

        delivered = 0
        for callback in targets:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.error(
                    "stock_event_subscriber_failed",
                    extra={
                        "part_id": event.part_id,
                        "subscriber": getattr(callback, "__qualname__", repr(callback)),
                    },
                    exc_info=True,
                )
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
