"""
settlement.py — Exactly-once Settlement Across Both Confirmation Paths

The capture response (orders.py) and the capture webhook (webhooks.py) both
report that an order settled, in no guaranteed order, and the webhook may be
delivered more than once. This module merges those observations:

    • Order status is a monotonic lattice. An update only applies if it is
      above the current status; stale or conflicting terminal updates are ignored.
    • One-time side effects go through an `IdempotencyStore`. The settlement
      callback is keyed on the order id, webhook observations on the event id.

The default store is process-local and bounded: once it holds `max_keys` keys
the least recently used one is forgotten. The tracker keeps at most
`max_orders` order snapshots the same way. Deployments with several workers
need a shared implementation (e.g. a key-value table) behind the same interface.
"""

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional

from .clients import as_object
from .logging_config import get_logger
from .models import CaptureResult, Order, OrderStatus, WebhookEvent

log = get_logger(__name__)

# status -> statuses it supersedes
_SUPERSEDES = {
    OrderStatus.CREATED: frozenset(),
    OrderStatus.APPROVED: frozenset({OrderStatus.CREATED}),
    OrderStatus.CAPTURED: frozenset({OrderStatus.CREATED, OrderStatus.APPROVED}),
    OrderStatus.DENIED: frozenset({OrderStatus.CREATED, OrderStatus.APPROVED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.CREATED, OrderStatus.APPROVED}),
    OrderStatus.REFUNDED: frozenset({OrderStatus.CREATED, OrderStatus.APPROVED, OrderStatus.CAPTURED}),
}

EVENT_STATUS = {
    "CHECKOUT.ORDER.APPROVED": OrderStatus.APPROVED,
    "PAYMENT.CAPTURE.COMPLETED": OrderStatus.CAPTURED,
    "CHECKOUT.ORDER.COMPLETED": OrderStatus.CAPTURED,
    "PAYMENT.CAPTURE.DENIED": OrderStatus.DENIED,
    "CHECKOUT.ORDER.CANCELLED": OrderStatus.CANCELLED,
    "PAYMENT.CAPTURE.REFUNDED": OrderStatus.REFUNDED,
}


DEFAULT_MAX_KEYS = 10000
DEFAULT_MAX_ORDERS = 10000


def merge_status(current: Optional[OrderStatus], incoming: OrderStatus) -> OrderStatus:
    """Highest wins: `incoming` replaces `current` only if it supersedes it."""
    if current is None or current in _SUPERSEDES[incoming]:
        return incoming
    return current


class IdempotencyStore(ABC):
    """Records which one-time keys have already been used."""

    @abstractmethod
    def claim(self, key: str) -> bool:
        """Marks `key` as used. Returns True only for the first caller."""
        ...

    @abstractmethod
    def release(self, key: str) -> None:
        """Forgets `key` so a failed side effect can be attempted again."""
        ...


class InMemoryIdempotencyStore(IdempotencyStore):
    """
    Process-local store holding at most `max_keys` keys.

    When full, the least recently claimed or re-seen key is evicted. A
    redelivery arriving after its key was evicted is treated as new.
    """

    def __init__(self, max_keys: int = DEFAULT_MAX_KEYS):
        self.max_keys = max_keys
        self._keys = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._keys)

    def claim(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                self._keys.move_to_end(key)
                return False
            self._keys[key] = True
            while len(self._keys) > self.max_keys:
                self._keys.popitem(last=False)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._keys.pop(key, None)


def log_settlement(order: Order):
    log.info(f"[Order: {order.order_id}] SETTLED: Capture {order.capture_id}, "
             f"Amount {order.amount_captured}, Payer: {order.payer_email}")


class SettlementTracker:
    """
    Merges order observations from both confirmation paths.

    Args:
        store (IdempotencyStore): Keeps one-time keys (settlements, event ids).
        on_settled (Callable[[Order], None]): Invoked once per order when it is first seen CAPTURED.
        max_orders (int): Snapshots kept in memory; the least recently observed order is dropped first.
    """

    def __init__(self, store: IdempotencyStore, on_settled: Callable[[Order], None] = log_settlement,
                 max_orders: int = DEFAULT_MAX_ORDERS):
        self.store = store
        self.on_settled = on_settled
        self.max_orders = max_orders
        self._orders: "OrderedDict[str, Order]" = OrderedDict()
        self._lock = threading.Lock()

    def snapshot(self, order_id: str) -> Optional[Order]:
        with self._lock:
            return self._orders.get(order_id)

    def observe(self, order_id: str, status: OrderStatus, **facts) -> Order:
        """
        Applies one observation and fires the settlement callback if it is the first CAPTURED one.

        Facts (capture_id, payer_email, amount_captured, purchase) fill fields that
        are still empty; they never overwrite what an earlier observation recorded.
        """
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                current = Order(order_id=order_id, status=status)
            merged = merge_status(current.status, status)
            if merged != status:
                log.info(f"[Order: {order_id}] Ignoring stale status {status.value} (current: {merged.value})")
            updates = {key: value for key, value in facts.items()
                       if value is not None and getattr(current, key) is None}
            order = current.model_copy(update=dict(updates, status=merged))
            self._orders[order_id] = order
            self._orders.move_to_end(order_id)
            while len(self._orders) > self.max_orders:
                self._orders.popitem(last=False)

        if order.status == OrderStatus.CAPTURED and self.store.claim(f"settled:{order_id}"):
            try:
                self.on_settled(order)
            except Exception:
                log.exception(f"[Order: {order_id}] Settlement callback failed, will retry on next confirmation.")
                self.store.release(f"settled:{order_id}")
        return order

    def observe_capture(self, result: CaptureResult) -> Order:
        """Observation from the synchronous capture response."""
        if result.status == "COMPLETED":
            status = OrderStatus.CAPTURED
        elif result.status == "DECLINED":
            status = OrderStatus.DENIED
        else:
            status = OrderStatus.APPROVED
        return self.observe(
            result.order_id,
            status,
            capture_id=result.capture_id,
            payer_email=result.payer_email,
            amount_captured=result.amount_paid,
        )

    def observe_event(self, event: WebhookEvent, result: dict) -> Optional[Order]:
        """
        Observation from a reconciled webhook event.

        Redelivered events (same event id) and events without an order id are skipped.
        For PAYMENT.CAPTURE.* events the resource is the capture, so the order id
        comes from `supplementary_data.related_ids` and the capture id from `resource.id`.
        """
        status = EVENT_STATUS.get(event.event_type)
        if status is None:
            return None
        if event.id and not self.store.claim(f"event:{event.id}"):
            log.info(f"[Webhook] Duplicate delivery of event {event.id} ignored.")
            return None

        resource = event.resource or {}
        related_ids = as_object(as_object(resource.get("supplementary_data")).get("related_ids"))
        capture_id = result.get("captureId")
        if event.event_type.startswith("PAYMENT.CAPTURE."):
            order_id = related_ids.get("order_id") or result.get("orderId")
            if related_ids.get("order_id") and not capture_id:
                capture_id = resource.get("id")
        else:
            order_id = result.get("orderId") or related_ids.get("order_id")
        if not order_id:
            return None

        return self.observe(
            order_id,
            status,
            capture_id=capture_id if status == OrderStatus.CAPTURED else None,
            payer_email=result.get("payerEmail"),
            amount_captured=result.get("amount") if status == OrderStatus.CAPTURED else None,
            purchase=result.get("orderDetails") or None,
        )
