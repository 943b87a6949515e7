from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import hash_password

# Business rule: amounts stored rounded to 2 decimals, non-negative

def round_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _like(q: str) -> str:
    return f"%{q}%"


# -------------------- Profiles & roles --------------------

def create_profile(db: Session, signup: schemas.SignUp, role: schemas.Role = schemas.Role.user) -> models.Profile:
    profile = models.Profile(
        email=signup.email.lower(),
        full_name=signup.full_name,
        phone=signup.phone,
        password_hash=hash_password(signup.password),
    )
    profile.roles.append(models.UserRole(role=role.value))
    db.add(profile)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("email already registered") from e
    db.refresh(profile)
    return profile


def get_profile(db: Session, user_id: str) -> models.Profile | None:
    return db.get(models.Profile, user_id)


def get_profile_by_email(db: Session, email: str) -> models.Profile | None:
    return db.query(models.Profile).filter(models.Profile.email == email.lower()).first()


def list_roles(db: Session, user_id: str) -> List[str]:
    rows = db.query(models.UserRole.role).filter(models.UserRole.user_id == user_id).all()
    return [r[0] for r in rows]


def list_profiles(db: Session) -> List[models.Profile]:
    return db.query(models.Profile).order_by(models.Profile.created_at, models.Profile.email).all()


def set_role(db: Session, user_id: str, role: schemas.Role) -> models.Profile | None:
    profile = db.get(models.Profile, user_id)
    if not profile:
        return None
    # one role per user; replace whatever was there
    profile.roles.clear()
    db.flush()
    profile.roles.append(models.UserRole(role=role.value))
    db.commit()
    db.refresh(profile)
    return profile


# -------------------- Menu --------------------

def list_menu_items(
    db: Session,
    category: Optional[str] = None,
    q: Optional[str] = None,
    available_only: bool = True,
    limit: Optional[int] = None,
) -> List[models.MenuItem]:
    query = db.query(models.MenuItem)
    if available_only:
        query = query.filter(models.MenuItem.is_available.is_(True))
    if category:
        query = query.filter(models.MenuItem.category == category)
    if q:
        query = query.filter(
            or_(
                models.MenuItem.name.ilike(_like(q)),
                models.MenuItem.description.ilike(_like(q)),
                models.MenuItem.category.ilike(_like(q)),
            )
        )
    query = query.order_by(models.MenuItem.is_featured.desc(), models.MenuItem.name)
    if limit:
        query = query.limit(limit)
    return query.all()


def list_menu_items_by_ids(db: Session, ids: Iterable[str], q: Optional[str] = None, limit: Optional[int] = None) -> List[models.MenuItem]:
    ids = list(ids)
    if not ids:
        return []
    query = db.query(models.MenuItem).filter(models.MenuItem.id.in_(ids))
    if q:
        query = query.filter(or_(models.MenuItem.name.ilike(_like(q)), models.MenuItem.category.ilike(_like(q))))
    query = query.order_by(models.MenuItem.name)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_menu_item(db: Session, item_id: str) -> models.MenuItem | None:
    return db.get(models.MenuItem, item_id)


def create_menu_item(db: Session, item: schemas.MenuItemCreate) -> models.MenuItem:
    data = item.model_dump()
    data["price"] = round_amount(item.price)
    db_item = models.MenuItem(**data)
    db.add(db_item)
    db.commit()
    db.refresh(db_item)
    return db_item


def update_menu_item(db: Session, item_id: str, changes: schemas.MenuItemUpdate) -> models.MenuItem | None:
    db_item = db.get(models.MenuItem, item_id)
    if not db_item:
        return None
    for field, value in changes.model_dump(exclude_unset=True).items():
        if field == "price" and value is not None:
            value = round_amount(value)
        setattr(db_item, field, value)
    db.commit()
    db.refresh(db_item)
    return db_item


def delete_menu_item(db: Session, item_id: str) -> bool:
    db_item = db.get(models.MenuItem, item_id)
    if not db_item:
        return False
    db.delete(db_item)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("menu item is referenced by existing orders") from e
    return True


# -------------------- Orders --------------------

def create_order(db: Session, user_id: str, order: schemas.OrderCreate) -> models.Order:
    if not db.get(models.Profile, user_id):
        raise ValueError("foreign key violation: user does not exist")

    amount = round_amount(order.total_amount)
    if amount < 0:
        raise ValueError("amount must be non-negative")

    now = models.utcnow()
    db_order = models.Order(
        id=models.new_id(),
        user_id=user_id,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        total_amount=amount,
        status=order.status.value,
        notes=order.notes,
        needs_cleanup=False,
        created_at=now,
        updated_at=now,
    )
    db.add(db_order)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("integrity error") from e
    db.refresh(db_order)
    return db_order


def create_order_items(db: Session, order_id: str, lines: Iterable[schemas.OrderLineCreate]) -> List[models.OrderItem]:
    lines = list(lines)
    if not lines:
        raise ValueError("an order needs at least one line")
    rows = [
        models.OrderItem(
            order_id=order_id,
            menu_item_id=line.menu_item_id,
            quantity=line.quantity,
            price=round_amount(line.price),
        )
        for line in lines
    ]
    db.add_all(rows)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("foreign key violation: order or menu item does not exist") from e
    return rows


def list_order_items(db: Session, order_id: str) -> List[models.OrderItem]:
    return db.query(models.OrderItem).filter(models.OrderItem.order_id == order_id).order_by(models.OrderItem.id).all()


def get_order(db: Session, order_id: str) -> models.Order | None:
    return db.get(models.Order, order_id)


def list_user_orders(db: Session, user_id: str, limit: Optional[int] = None, status_q: Optional[str] = None) -> List[models.Order]:
    query = db.query(models.Order).filter(models.Order.user_id == user_id)
    if status_q:
        query = query.filter(models.Order.status.ilike(_like(status_q)))
    query = query.order_by(models.Order.created_at.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def list_orders(db: Session, status: Optional[schemas.OrderStatus] = None) -> List[models.Order]:
    query = db.query(models.Order)
    if status is not None:
        query = query.filter(models.Order.status == status.value)
    return query.order_by(models.Order.created_at.desc()).all()


def update_order_status(db: Session, order_id: str, status: schemas.OrderStatus) -> models.Order | None:
    order = db.get(models.Order, order_id)
    if not order:
        return None
    current = schemas.OrderStatus(order.status)
    if current == status:
        return order
    if not current.can_become(status):
        raise ValueError(f"invalid status transition: {current.value} -> {status.value}")
    order.status = status.value
    order.updated_at = models.utcnow()
    db.commit()
    db.refresh(order)
    return order


def flag_order_for_cleanup(db: Session, order_id: str) -> bool:
    order = db.get(models.Order, order_id)
    if not order:
        return False
    order.needs_cleanup = True
    order.updated_at = models.utcnow()
    db.commit()
    return True


def purge_orphaned_orders(db: Session) -> List[str]:
    """Delete order headers flagged for cleanup that never got their lines."""
    orphans = (
        db.query(models.Order)
        .filter(models.Order.needs_cleanup.is_(True))
        .filter(~models.Order.items.any())
        .all()
    )
    ids = [o.id for o in orphans]
    for order in orphans:
        db.delete(order)
    db.commit()
    return ids


# -------------------- Favorites --------------------

def list_favorite_ids(db: Session, user_id: str) -> List[str]:
    rows = (
        db.query(models.Favorite.menu_item_id)
        .filter(models.Favorite.user_id == user_id)
        .order_by(models.Favorite.id)
        .all()
    )
    return [r[0] for r in rows]


def add_favorite(db: Session, user_id: str, menu_item_id: str) -> models.Favorite:
    fav = models.Favorite(user_id=user_id, menu_item_id=menu_item_id)
    db.add(fav)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValueError("favorite already exists or menu item does not exist") from e
    return fav


def remove_favorite(db: Session, user_id: str, menu_item_id: str) -> bool:
    deleted = (
        db.query(models.Favorite)
        .filter(models.Favorite.user_id == user_id, models.Favorite.menu_item_id == menu_item_id)
        .delete()
    )
    db.commit()
    return deleted > 0


# -------------------- Reviews --------------------

def create_review(db: Session, user_id: str, review: schemas.ReviewCreate) -> models.Review:
    if not db.get(models.MenuItem, review.menu_item_id):
        raise ValueError("foreign key violation: menu item does not exist")
    db_review = models.Review(
        user_id=user_id,
        menu_item_id=review.menu_item_id,
        rating=review.rating,
        comment=review.comment or None,
    )
    db.add(db_review)
    db.commit()
    db.refresh(db_review)
    return db_review


def list_reviews(db: Session, menu_item_id: Optional[str] = None) -> List[models.Review]:
    query = db.query(models.Review)
    if menu_item_id:
        query = query.filter(models.Review.menu_item_id == menu_item_id)
    return query.order_by(models.Review.created_at.desc(), models.Review.id.desc()).all()


def delete_review(db: Session, review_id: int) -> bool:
    review = db.get(models.Review, review_id)
    if not review:
        return False
    db.delete(review)
    db.commit()
    return True
