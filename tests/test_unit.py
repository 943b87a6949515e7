from decimal import Decimal

import pytest

from tiffin_table import crud, schemas
from tiffin_table.schemas import OrderStatus


def new_order(db, user, amount="10.00"):
    return crud.create_order(db, user.id, schemas.OrderCreate(customer_name="Asha", total_amount=Decimal(amount)))


def test_create_order_rounds_half_up(db_session, user):
    order = new_order(db_session, user, "10.125")
    assert order.total_amount == Decimal("10.13")
    assert order.status == "pending"
    assert order.needs_cleanup is False


def test_create_order_fk_violation(db_session):
    with pytest.raises(ValueError):
        crud.create_order(db_session, "nobody", schemas.OrderCreate(customer_name="X", total_amount=Decimal("5.00")))


def test_order_must_start_pending():
    with pytest.raises(ValueError):
        schemas.OrderCreate(customer_name="X", total_amount=Decimal("5"), status="ready")


def test_negative_amount_rejected():
    with pytest.raises(ValueError):
        schemas.OrderCreate(customer_name="X", total_amount=Decimal("-1.00"))


def test_order_lines_need_at_least_one_and_valid_items(db_session, user, menu):
    order = new_order(db_session, user)
    with pytest.raises(ValueError):
        crud.create_order_items(db_session, order.id, [])
    with pytest.raises(ValueError):
        crud.create_order_items(
            db_session, order.id, [schemas.OrderLineCreate(menu_item_id="ghost", quantity=1, price=Decimal("1"))]
        )
    rows = crud.create_order_items(
        db_session, order.id, [schemas.OrderLineCreate(menu_item_id=menu[0].id, quantity=2, price=Decimal("200"))]
    )
    assert [(r.menu_item_id, r.quantity) for r in rows] == [(menu[0].id, 2)]


@pytest.mark.parametrize(
    "current,new,allowed",
    [
        (OrderStatus.pending, OrderStatus.preparing, True),
        (OrderStatus.preparing, OrderStatus.ready, True),
        (OrderStatus.ready, OrderStatus.delivered, True),
        (OrderStatus.ready, OrderStatus.cancelled, True),
        (OrderStatus.pending, OrderStatus.ready, False),
        (OrderStatus.delivered, OrderStatus.cancelled, False),
        (OrderStatus.cancelled, OrderStatus.pending, False),
    ],
)
def test_status_transitions(current, new, allowed):
    assert current.can_become(new) is allowed


def test_terminal_states():
    assert OrderStatus.delivered.is_terminal
    assert OrderStatus.cancelled.is_terminal
    assert not OrderStatus.ready.is_terminal


def test_update_order_status_bumps_updated_at(db_session, user):
    order = new_order(db_session, user)
    before = order.updated_at
    updated = crud.update_order_status(db_session, order.id, OrderStatus.preparing)
    assert updated.status == "preparing"
    assert updated.updated_at >= before
    assert crud.update_order_status(db_session, "missing", OrderStatus.ready) is None
    with pytest.raises(ValueError):
        crud.update_order_status(db_session, order.id, OrderStatus.delivered)


def test_user_orders_newest_first_and_status_filter(db_session, user):
    first = new_order(db_session, user)
    second = new_order(db_session, user)
    crud.update_order_status(db_session, first.id, OrderStatus.cancelled)

    assert [o.id for o in crud.list_user_orders(db_session, user.id)] == [second.id, first.id]
    assert [o.id for o in crud.list_user_orders(db_session, user.id, limit=1)] == [second.id]
    assert [o.id for o in crud.list_user_orders(db_session, user.id, status_q="cancel")] == [first.id]
    assert [o.id for o in crud.list_orders(db_session, status=OrderStatus.pending)] == [second.id]


def test_purge_only_touches_flagged_headers_without_lines(db_session, user, menu):
    kept = new_order(db_session, user)
    crud.create_order_items(
        db_session, kept.id, [schemas.OrderLineCreate(menu_item_id=menu[0].id, quantity=1, price=Decimal("200"))]
    )
    crud.flag_order_for_cleanup(db_session, kept.id)
    unflagged = new_order(db_session, user)
    orphan = new_order(db_session, user)
    assert crud.flag_order_for_cleanup(db_session, orphan.id) is True
    assert crud.flag_order_for_cleanup(db_session, "missing") is False

    assert crud.purge_orphaned_orders(db_session) == [orphan.id]
    assert {o.id for o in crud.list_orders(db_session)} == {kept.id, unflagged.id}


def test_duplicate_email_rejected(db_session, user):
    with pytest.raises(ValueError, match="email already registered"):
        crud.create_profile(db_session, schemas.SignUp(email="ASHA@example.com", password="secret1"))


def test_set_role_replaces_existing_role(db_session, user):
    assert crud.list_roles(db_session, user.id) == ["user"]
    crud.set_role(db_session, user.id, schemas.Role.admin)
    assert crud.list_roles(db_session, user.id) == ["admin"]
    assert crud.set_role(db_session, "missing", schemas.Role.admin) is None


def test_menu_filters_and_featured_first(db_session, menu):
    names = [i.name for i in crud.list_menu_items(db_session)]
    assert names == ["Avocado Toast Supreme", "Chicken Biryani", "Comfort Khichuri Bowl", "Masala Chai"]
    assert [i.name for i in crud.list_menu_items(db_session, q="basmati")] == ["Chicken Biryani"]
    assert [i.name for i in crud.list_menu_items(db_session, category="snacks")] == ["Comfort Khichuri Bowl"]

    crud.update_menu_item(db_session, menu[3].id, schemas.MenuItemUpdate(is_available=False))
    assert "Masala Chai" not in [i.name for i in crud.list_menu_items(db_session)]
    assert "Masala Chai" in [i.name for i in crud.list_menu_items(db_session, available_only=False)]


def test_menu_item_referenced_by_order_cannot_be_deleted(db_session, user, menu):
    order = new_order(db_session, user)
    crud.create_order_items(
        db_session, order.id, [schemas.OrderLineCreate(menu_item_id=menu[0].id, quantity=1, price=Decimal("200"))]
    )
    with pytest.raises(ValueError):
        crud.delete_menu_item(db_session, menu[0].id)
    assert crud.delete_menu_item(db_session, menu[3].id) is True
    assert crud.delete_menu_item(db_session, menu[3].id) is False


def test_favorites_are_unique_per_user(db_session, user, menu):
    crud.add_favorite(db_session, user.id, menu[0].id)
    with pytest.raises(ValueError):
        crud.add_favorite(db_session, user.id, menu[0].id)
    assert crud.list_favorite_ids(db_session, user.id) == [menu[0].id]
    assert crud.remove_favorite(db_session, user.id, menu[0].id) is True
    assert crud.remove_favorite(db_session, user.id, menu[0].id) is False


def test_reviews_require_existing_item(db_session, user, menu):
    with pytest.raises(ValueError):
        crud.create_review(db_session, user.id, schemas.ReviewCreate(menu_item_id="ghost", rating=4))
    review = crud.create_review(db_session, user.id, schemas.ReviewCreate(menu_item_id=menu[0].id, rating=4, comment=""))
    assert review.comment is None
    assert crud.delete_review(db_session, review.id) is True
    assert crud.list_reviews(db_session) == []
