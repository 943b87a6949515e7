"""Keeps a signed-in user's recent orders in step with the orders table.

One bulk fetch seeds the list, then a single channel on ``orders`` filtered
to the user feeds INSERT and UPDATE events through an inbox that is drained
in arrival order. Status changes raise a toast and, when permitted, a
system notification.
"""
import logging
import threading
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from . import schemas
from .config import get_config
from .identity import Identity
from .notifications import Notifier
from .realtime import Channel, ChangeEvent, RealtimeHub
from .store import Store, StoreError

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    schemas.OrderStatus.preparing: "Your order is being prepared!",
    schemas.OrderStatus.ready: "Your order is ready for pickup!",
    schemas.OrderStatus.delivered: "Order delivered! Enjoy your meal!",
    schemas.OrderStatus.cancelled: "Your order has been cancelled.",
}


def status_message(status: Optional[str]) -> Optional[str]:
    try:
        return STATUS_MESSAGES.get(schemas.OrderStatus(status))
    except ValueError:
        return None


def _normalize(row: Dict[str, Any]) -> Dict[str, Any]:
    return schemas.OrderRead.model_validate(row).model_dump()


class RealtimeOrderTracker:
    def __init__(self, store: Store, hub: RealtimeHub, notifier: Notifier, identity: Identity, limit: Optional[int] = None):
        self._store = store
        self._hub = hub
        self._notifier = notifier
        self.identity = identity
        self.limit = limit or get_config().recent_orders_limit
        self._orders: List[Dict[str, Any]] = []
        self._channel: Optional[Channel] = None
        self._inbox: Deque[ChangeEvent] = deque()
        self._lock = threading.Lock()
        # newest updated_at delivered per order id, oldest ids evicted first
        self._latest: "OrderedDict[str, Optional[datetime]]" = OrderedDict()
        self.active = False
        self.loading = False
        self.load_failed = False

    @property
    def orders(self) -> List[schemas.OrderRead]:
        with self._lock:
            return [schemas.OrderRead.model_validate(o) for o in self._orders]

    @property
    def subscribed(self) -> bool:
        return self._channel is not None and not self._channel.closed

    async def start(self) -> None:
        # subscribe before fetching so nothing committed in between is missed
        self.active = True
        self._subscribe()
        await self.refresh()

    async def refresh(self) -> None:
        self.loading = True
        try:
            rows = await self._store.list_user_orders(self.identity.user_id, limit=self.limit)
        except StoreError:
            logger.warning("initial order fetch failed for user=%s", self.identity.user_id)
            self.load_failed = True
            self._notifier.error("Could not load your orders. Please try again.")
            return
        finally:
            self.loading = False
        if not self.active:
            return
        self.load_failed = False
        with self._lock:
            pushed = {o["id"]: o for o in self._orders}
            merged = []
            for row in rows:
                fetched = row.model_dump()
                live = pushed.pop(fetched["id"], None)
                if live and live.get("updated_at") and fetched.get("updated_at") and live["updated_at"] > fetched["updated_at"]:
                    fetched = live
                merged.append(fetched)
            combined = sorted(list(pushed.values()) + merged, key=lambda o: o["created_at"], reverse=True)
            self._orders = combined[: self.limit]

    def _subscribe(self) -> None:
        if self._channel is not None:
            self._channel.close()
        self._channel = self._hub.subscribe(
            "orders",
            self._on_event,
            filters={"user_id": self.identity.user_id},
            kinds=("INSERT", "UPDATE"),
        )

    def stop(self) -> None:
        self.active = False
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        with self._lock:
            self._orders = []
            self._inbox.clear()
            self._latest.clear()

    def _on_event(self, change: ChangeEvent) -> None:
        if not self.active:
            return
        self._inbox.append(change)
        with self._lock:
            while self._inbox:
                self._apply(self._inbox.popleft())

    def _apply(self, change: ChangeEvent) -> None:
        row = _normalize(change.row)
        if not self._remember(row["id"], row.get("updated_at")):
            logger.debug("duplicate or stale %s for order %s dropped", change.kind, row["id"])
            return

        index = next((i for i, o in enumerate(self._orders) if o["id"] == row["id"]), None)
        if change.kind == "INSERT":
            if index is None:
                self._orders.insert(0, row)
                del self._orders[self.limit:]
            else:
                self._merge(index, row)
            return

        # orders outside the visible list are still announced
        if index is not None and not self._merge(index, row):
            return
        previous = change.previous or {}
        if previous.get("status") != row["status"]:
            self._announce(row["status"])

    def _remember(self, order_id: str, updated_at: Optional[datetime]) -> bool:
        """Record the newest delivery per order; False for a repeat or an older one."""
        known_at = self._latest.get(order_id)
        if order_id in self._latest and (updated_at is None or (known_at is not None and updated_at <= known_at)):
            return False
        self._latest[order_id] = updated_at
        self._latest.move_to_end(order_id)
        while len(self._latest) > self.limit * 5:
            self._latest.popitem(last=False)
        return True

    def _merge(self, index: int, row: Dict[str, Any]) -> bool:
        current = self._orders[index]
        known_at, incoming_at = current.get("updated_at"), row.get("updated_at")
        if known_at and incoming_at and incoming_at < known_at:
            logger.info("stale update for order %s dropped", row["id"])
            return False
        current.update(row)
        return True

    def _announce(self, status) -> None:
        message = status_message(status)
        if not message:
            return
        self._notifier.info(message, duration_ms=5000)
        self._notifier.system(message)
