import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from tiffin_table import config, crud, schemas
from tiffin_table.identity import Identity
from tiffin_table.notifications import Notifier
from tiffin_table.realtime import ChangeEvent, RealtimeHub
from tiffin_table.store import StoreError
from tiffin_table.tracker import RealtimeOrderTracker

T0 = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
ME = Identity(user_id="u1", email="asha@example.com")


def row(order_id, status="pending", minutes=0, user_id="u1", created=None):
    return {
        "id": order_id,
        "user_id": user_id,
        "customer_name": "Asha",
        "customer_phone": None,
        "total_amount": Decimal("230"),
        "status": status,
        "notes": None,
        "needs_cleanup": False,
        "created_at": created or T0,
        "updated_at": T0 + timedelta(minutes=minutes),
    }


class FakeStore:
    def __init__(self, rows=(), fail=False):
        self.rows = list(rows)
        self.fail = fail
        self.calls = 0

    async def list_user_orders(self, user_id, limit=None, status_q=None):
        self.calls += 1
        if self.fail:
            raise StoreError("connection reset")
        return [schemas.OrderRead.model_validate(r) for r in self.rows if r["user_id"] == user_id][:limit]


def started(rows=(), notifier=None, hub=None, fail=False):
    hub = hub or RealtimeHub()
    tracker = RealtimeOrderTracker(FakeStore(rows, fail=fail), hub, notifier or Notifier(), ME)
    asyncio.run(tracker.start())
    return tracker, hub


def update(old, new):
    return ChangeEvent(kind="UPDATE", table="orders", row=new, previous=old)


def test_initial_fetch_and_single_subscription():
    tracker, hub = started([row("o2", created=T0 + timedelta(hours=1)), row("o1")])
    assert [o.id for o in tracker.orders] == ["o2", "o1"]
    assert len(hub.active_channels("orders")) == 1

    # starting again replaces the channel instead of adding a second one
    asyncio.run(tracker.start())
    assert len(hub.active_channels("orders")) == 1


def test_status_change_notifies_exactly_once():
    notifier = Notifier()
    notifier.set_permission(True)
    tracker, hub = started([row("o1", "preparing")], notifier=notifier)

    hub.publish(update(row("o1", "preparing"), row("o1", "ready", minutes=5)))

    assert tracker.orders[0].status == schemas.OrderStatus.ready
    messages = [t.message for t in notifier.toasts]
    assert messages == ["Your order is ready for pickup!"]
    assert [n.body for n in notifier.system_sent] == ["Your order is ready for pickup!"]
    assert notifier.system_sent[0].title == "Tiffin Table"


def test_update_without_status_change_is_silent():
    notifier = Notifier()
    tracker, hub = started([row("o1", "preparing")], notifier=notifier)

    changed = dict(row("o1", "preparing", minutes=1), notes="extra spicy")
    hub.publish(update(row("o1", "preparing"), changed))

    assert tracker.orders[0].notes == "extra spicy"
    assert list(notifier.toasts) == []


def test_system_notification_needs_permission():
    notifier = Notifier()
    tracker, hub = started([row("o1", "ready")], notifier=notifier)
    hub.publish(update(row("o1", "ready"), row("o1", "delivered", minutes=2)))
    assert [t.message for t in notifier.toasts] == ["Order delivered! Enjoy your meal!"]
    assert notifier.system_sent == []


def test_unmapped_status_change_has_no_message():
    notifier = Notifier()
    tracker, hub = started([row("o1", "preparing")], notifier=notifier)
    hub.publish(update(row("o1", "preparing"), row("o1", "pending", minutes=1)))
    assert list(notifier.toasts) == []


def test_update_merges_in_place_without_resorting():
    tracker, hub = started([row("o3", created=T0 + timedelta(hours=2)), row("o2", created=T0 + timedelta(hours=1)), row("o1")])
    hub.publish(update(row("o1"), row("o1", "cancelled", minutes=3)))
    assert [(o.id, o.status.value) for o in tracker.orders] == [("o3", "pending"), ("o2", "pending"), ("o1", "cancelled")]


def test_insert_prepends_and_caps_list():
    config.set_config(recent_orders_limit=3)
    tracker, hub = started([row("o2", created=T0 + timedelta(hours=1)), row("o1")])
    for n in (3, 4):
        hub.publish(ChangeEvent(kind="INSERT", table="orders", row=row(f"o{n}", created=T0 + timedelta(hours=n))))
    assert [o.id for o in tracker.orders] == ["o4", "o3", "o2"]


def test_duplicate_insert_is_not_listed_twice():
    tracker, hub = started()
    event = ChangeEvent(kind="INSERT", table="orders", row=row("o1"))
    hub.publish(event)
    hub.publish(event)
    assert [o.id for o in tracker.orders] == ["o1"]


def test_redelivered_update_notifies_once():
    notifier = Notifier()
    tracker, hub = started([row("o1", "pending")], notifier=notifier)
    event = update(row("o1", "pending"), row("o1", "preparing", minutes=1))
    hub.publish(event)
    hub.publish(event)
    assert [t.message for t in notifier.toasts] == ["Your order is being prepared!"]


def test_out_of_order_update_does_not_regress_state():
    notifier = Notifier()
    tracker, hub = started([row("o1", "pending")], notifier=notifier)
    hub.publish(update(row("o1", "preparing", minutes=1), row("o1", "ready", minutes=2)))
    # the older transition arrives late
    hub.publish(update(row("o1", "pending"), row("o1", "preparing", minutes=1)))
    assert tracker.orders[0].status == schemas.OrderStatus.ready
    assert [t.message for t in notifier.toasts] == ["Your order is ready for pickup!"]


def test_events_for_other_users_are_filtered_out():
    tracker, hub = started([row("o1")])
    hub.publish(ChangeEvent(kind="INSERT", table="orders", row=row("x9", user_id="someone-else")))
    assert [o.id for o in tracker.orders] == ["o1"]


def test_stop_releases_channel_and_ignores_late_events():
    tracker, hub = started([row("o1")])
    tracker.stop()
    assert hub.active_channels() == []
    assert tracker.subscribed is False
    tracker._on_event(ChangeEvent(kind="INSERT", table="orders", row=row("o2")))
    assert tracker.orders == []


def test_fetch_failure_is_logged_and_retryable(caplog):
    notifier = Notifier()
    tracker, hub = started([row("o1")], notifier=notifier, fail=True)

    assert tracker.load_failed is True
    assert tracker.orders == []
    assert "initial order fetch failed" in caplog.text
    assert notifier.toasts[-1].level == "error"
    # still subscribed, so live events keep arriving
    assert tracker.subscribed is True

    tracker._store.fail = False
    asyncio.run(tracker.refresh())
    assert tracker.load_failed is False
    assert [o.id for o in tracker.orders] == ["o1"]


def test_admin_status_update_reaches_tracker_through_change_feed(store, hub, user, db_session):
    order = crud.create_order(
        db_session, user.id, schemas.OrderCreate(customer_name="Asha", total_amount=Decimal("230"))
    )
    notifier = Notifier()
    identity = Identity(user_id=user.id, email=user.email)
    tracker = RealtimeOrderTracker(store, hub, notifier, identity)
    asyncio.run(tracker.start())
    assert [o.status for o in tracker.orders] == [schemas.OrderStatus.pending]

    crud.update_order_status(db_session, order.id, schemas.OrderStatus.preparing)
    crud.update_order_status(db_session, order.id, schemas.OrderStatus.ready)

    assert tracker.orders[0].status == schemas.OrderStatus.ready
    assert [t.message for t in notifier.toasts] == [
        "Your order is being prepared!",
        "Your order is ready for pickup!",
    ]

    # a second order placed elsewhere shows up at the top
    second = crud.create_order(
        db_session, user.id, schemas.OrderCreate(customer_name="Asha", total_amount=Decimal("90"))
    )
    assert [o.id for o in tracker.orders] == [second.id, order.id]
    tracker.stop()


def test_status_change_for_order_outside_the_list_still_notifies():
    notifier = Notifier()
    notifier.set_permission(True)
    newer = [row(f"o{n}", "preparing", created=T0 + timedelta(hours=n)) for n in range(10, 0, -1)]
    tracker, hub = started(newer, notifier=notifier)
    assert len(tracker.orders) == 10

    hub.publish(update(row("o0", "preparing"), row("o0", "ready", minutes=4)))

    assert [t.message for t in notifier.toasts] == ["Your order is ready for pickup!"]
    assert [n.body for n in notifier.system_sent] == ["Your order is ready for pickup!"]
    # the visible list is not padded with the older order
    assert "o0" not in [o.id for o in tracker.orders]

    hub.publish(update(row("o0", "preparing"), row("o0", "ready", minutes=4)))
    assert len(notifier.toasts) == 1


def test_update_during_initial_fetch_is_announced():
    notifier = Notifier()
    hub = RealtimeHub()

    class RacingStore(FakeStore):
        async def list_user_orders(self, user_id, limit=None, status_q=None):
            # the order changes after the channel opened but before the fetch returns
            hub.publish(update(row("o1", "pending"), row("o1", "preparing", minutes=1)))
            return await super().list_user_orders(user_id, limit=limit, status_q=status_q)

    tracker = RealtimeOrderTracker(RacingStore([row("o1", "preparing", minutes=1)]), hub, notifier, ME)
    asyncio.run(tracker.start())

    assert [t.message for t in notifier.toasts] == ["Your order is being prepared!"]
    assert [(o.id, o.status) for o in tracker.orders] == [("o1", schemas.OrderStatus.preparing)]


def test_delivery_history_stays_bounded():
    config.set_config(recent_orders_limit=2)
    tracker, hub = started()
    for n in range(50):
        hub.publish(update(row(f"x{n}", "pending"), row(f"x{n}", "preparing", minutes=1)))
    assert len(tracker._latest) == 10
    assert "x49" in tracker._latest and "x0" not in tracker._latest
