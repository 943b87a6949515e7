from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, PositiveInt, field_validator
from pydantic.config import ConfigDict


class Role(str, Enum):
    user = "user"
    staff = "staff"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    preparing = "preparing"
    ready = "ready"
    delivered = "delivered"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.delivered, OrderStatus.cancelled)

    def can_become(self, new: "OrderStatus") -> bool:
        return new in ORDER_TRANSITIONS[self]


# Happy path moves forward one step; any non-terminal state may be cancelled.
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.preparing, OrderStatus.cancelled}),
    OrderStatus.preparing: frozenset({OrderStatus.ready, OrderStatus.cancelled}),
    OrderStatus.ready: frozenset({OrderStatus.delivered, OrderStatus.cancelled}),
    OrderStatus.delivered: frozenset(),
    OrderStatus.cancelled: frozenset(),
}


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# -------------------- Accounts --------------------
class SignUp(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=32)


class Login(BaseModel):
    email: str
    password: str


class ProfileRead(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserRead(ProfileRead):
    roles: list[Role] = []
    is_admin: bool = False


class RoleUpdate(BaseModel):
    role: Role


# -------------------- Menu --------------------
class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=Decimal("0"))
    image_url: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=50)
    is_available: bool = True
    is_featured: bool = False
    stock: Optional[int] = Field(default=None, ge=0)


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    image_url: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None
    stock: Optional[int] = Field(default=None, ge=0)


class MenuItemRead(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    image_url: Optional[str] = None
    category: str
    is_available: bool = True
    is_featured: bool = False
    stock: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------- Cart --------------------
class CartItem(BaseModel):
    """What the cart copies from a menu item when it is added."""

    id: str
    name: str
    price: Decimal = Field(..., ge=Decimal("0"))
    image_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CartLine(CartItem):
    quantity: PositiveInt = 1

    model_config = ConfigDict(from_attributes=True, validate_assignment=True)


class CartRead(BaseModel):
    lines: list[CartLine]
    total_items: int
    total_price: Decimal
    is_open: bool


class CartAdd(BaseModel):
    menu_item_id: str


class QuantityUpdate(BaseModel):
    # zero or negative removes the line
    quantity: int


class DrawerUpdate(BaseModel):
    open: bool


# -------------------- Orders --------------------
class OrderCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_phone: Optional[str] = None
    total_amount: Decimal = Field(..., ge=Decimal("0"))
    status: OrderStatus = OrderStatus.pending
    notes: Optional[str] = None

    @field_validator("status")
    def starts_pending(cls, v: OrderStatus):
        if v != OrderStatus.pending:
            raise ValueError("new orders must start as pending")
        return v


class OrderLineCreate(BaseModel):
    menu_item_id: str
    quantity: PositiveInt
    price: Decimal = Field(..., ge=Decimal("0"))


class OrderLineRead(OrderLineCreate):
    order_id: str

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: str
    user_id: str
    customer_name: str
    customer_phone: Optional[str] = None
    total_amount: Decimal
    status: OrderStatus
    notes: Optional[str] = None
    needs_cleanup: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "updated_at")
    def utc(cls, v):
        return _as_utc(v)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


# -------------------- Favorites / reviews --------------------
class FavoriteToggle(BaseModel):
    menu_item_id: str
    is_favorite: bool


class ReviewCreate(BaseModel):
    menu_item_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewRead(BaseModel):
    id: int
    user_id: str
    menu_item_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at")
    def utc(cls, v):
        return _as_utc(v)


# -------------------- Search / notifications --------------------
SearchFilter = Literal["all", "menu", "orders", "favorites"]


class SearchResult(BaseModel):
    id: str
    type: Literal["menu", "order", "favorite"]
    title: str
    subtitle: str
    image: Optional[str] = None
    price: Optional[Decimal] = None
    status: Optional[OrderStatus] = None


class ToastRead(BaseModel):
    level: Literal["info", "success", "error"]
    message: str
    duration_ms: int


class PermissionUpdate(BaseModel):
    granted: bool
