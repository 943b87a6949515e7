"""In-process change feed for committed rows.

Session hooks capture the old and new image of every row touched by a flush
and publish them once the transaction commits. Subscribers receive a
``ChangeEvent`` per row through a ``Channel`` they must close when done.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EventKind = Literal["INSERT", "UPDATE", "DELETE"]
_PENDING_KEY = "tiffin_table.pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    kind: EventKind
    table: str
    row: Dict[str, Any]
    previous: Optional[Dict[str, Any]] = None
    commit_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[ChangeEvent], None]


class Channel:
    """A live subscription. Delivery stops as soon as it is closed."""

    def __init__(self, hub: "RealtimeHub", table: str, handler: EventHandler, filters: Dict[str, Any], kinds: frozenset[str]):
        self._hub = hub
        self.table = table
        self.handler = handler
        self.filters = dict(filters)
        self.kinds = kinds
        self.closed = False

    def matches(self, change: ChangeEvent) -> bool:
        if self.closed or change.table != self.table or change.kind not in self.kinds:
            return False
        image = change.row if change.kind != "DELETE" else (change.previous or {})
        return all(image.get(key) == value for key, value in self.filters.items())

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._hub._remove(self)


class RealtimeHub:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._channels: List[Channel] = []

    def subscribe(
        self,
        table: str,
        handler: EventHandler,
        filters: Optional[Dict[str, Any]] = None,
        kinds: tuple[str, ...] = ("INSERT", "UPDATE", "DELETE"),
    ) -> Channel:
        channel = Channel(self, table, handler, filters or {}, frozenset(kinds))
        with self._lock:
            self._channels.append(channel)
        logger.debug("subscribed to %s filters=%s", table, channel.filters)
        return channel

    def _remove(self, channel: Channel) -> None:
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)
        logger.debug("unsubscribed from %s filters=%s", channel.table, channel.filters)

    def active_channels(self, table: Optional[str] = None) -> List[Channel]:
        with self._lock:
            return [c for c in self._channels if table is None or c.table == table]

    def publish(self, change: ChangeEvent) -> None:
        for channel in self.active_channels(change.table):
            if not channel.matches(change):
                continue
            try:
                channel.handler(change)
            except Exception:
                # one broken subscriber must not starve the others
                logger.exception("realtime handler failed for %s %s", change.kind, change.table)


hub = RealtimeHub()


# -------------------- session hooks --------------------

def _row_image(obj) -> Dict[str, Any]:
    state = inspect(obj)
    return {attr.key: state.dict.get(attr.key) for attr in state.mapper.column_attrs}


def _previous_image(obj) -> Dict[str, Any]:
    state = inspect(obj)
    image = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        image[attr.key] = history.deleted[0] if history.deleted else state.dict.get(attr.key)
    return image


def bind_change_feed(target, feed: RealtimeHub) -> None:
    """Publish committed row changes made through ``target`` to ``feed``.

    ``target`` is anything SQLAlchemy accepts as a session event target: a
    ``sessionmaker``, a ``Session`` subclass or a single session.
    """

    @event.listens_for(target, "after_flush")
    def _collect(session: Session, flush_context):
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            pending.append(("INSERT", obj.__tablename__, _row_image(obj), None))
        for obj in session.dirty:
            if session.is_modified(obj, include_collections=False):
                pending.append(("UPDATE", obj.__tablename__, _row_image(obj), _previous_image(obj)))
        for obj in session.deleted:
            pending.append(("DELETE", obj.__tablename__, {}, _previous_image(obj)))

    @event.listens_for(target, "after_commit")
    def _publish(session: Session):
        pending = session.info.pop(_PENDING_KEY, [])
        now = datetime.now(timezone.utc)
        for kind, table, row, previous in pending:
            feed.publish(ChangeEvent(kind=kind, table=table, row=row, previous=previous, commit_timestamp=now))

    @event.listens_for(target, "after_rollback")
    def _discard(session: Session):
        dropped = session.info.pop(_PENDING_KEY, [])
        if dropped:
            logger.debug("discarded %d uncommitted change(s) after rollback", len(dropped))
