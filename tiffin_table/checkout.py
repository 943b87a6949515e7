"""Turns the cart into an order header plus one line per cart line.

The two inserts are separate writes. If the header lands but the lines do
not, the header is flagged ``needs_cleanup`` and the cart is kept so the
customer can try again.
"""
import logging
from decimal import Decimal

from . import schemas
from .cart import CartStore
from .config import get_config
from .identity import SessionProvider
from .notifications import Notifier
from .store import Store, StoreError

logger = logging.getLogger(__name__)


class CheckoutError(Exception):
    pass


class LoginRequired(CheckoutError):
    pass


class EmptyCart(CheckoutError):
    pass


class SubmissionInProgress(CheckoutError):
    pass


class SubmissionFailed(CheckoutError):
    def __init__(self, message: str, order_id: str | None = None):
        super().__init__(message)
        self.order_id = order_id


def delivery_fee(subtotal: Decimal) -> Decimal:
    cfg = get_config()
    return Decimal("0") if subtotal > cfg.free_delivery_threshold else cfg.delivery_fee


def order_total(subtotal: Decimal) -> Decimal:
    return subtotal + delivery_fee(subtotal)


class OrderSubmission:
    def __init__(self, store: Store, session: SessionProvider, cart: CartStore, notifier: Notifier):
        self._store = store
        self._session = session
        self._cart = cart
        self._notifier = notifier
        self.in_flight = False

    async def submit(self) -> schemas.OrderRead:
        user = self._session.current_user
        if user is None:
            self._cart.close()
            self._notifier.info("Please login to place an order")
            raise LoginRequired("login required")
        if len(self._cart) == 0:
            self._notifier.error("Your cart is empty")
            raise EmptyCart("cart is empty")
        if self.in_flight:
            raise SubmissionInProgress("an order is already being placed")

        self.in_flight = True
        try:
            return await self._place(user)
        finally:
            self.in_flight = False

    async def _place(self, user) -> schemas.OrderRead:
        lines = self._cart.snapshot()
        subtotal = sum((line.price * line.quantity for line in lines), Decimal("0"))

        try:
            profile = await self._store.get_profile(user.user_id)
            order = await self._store.create_order(
                user.user_id,
                schemas.OrderCreate(
                    customer_name=(profile.full_name if profile else None) or user.email or "Customer",
                    customer_phone=profile.phone if profile else None,
                    total_amount=order_total(subtotal),
                ),
            )
        except StoreError as e:
            self._notifier.error("Failed to place order. Please try again.")
            raise SubmissionFailed("order could not be created") from e

        try:
            await self._store.create_order_items(
                order.id,
                [schemas.OrderLineCreate(menu_item_id=line.id, quantity=line.quantity, price=line.price) for line in lines],
            )
        except StoreError as e:
            logger.error("order %s written without lines; flagging for cleanup", order.id)
            await self._flag_orphan(order.id)
            self._notifier.error("Failed to place order. Please try again.")
            raise SubmissionFailed("order lines could not be created", order_id=order.id) from e

        self._cart.discard(lines)
        self._cart.close()
        self._notifier.success("Order placed successfully!")
        logger.info("order %s placed by user=%s total=%s lines=%d", order.id, user.user_id, order.total_amount, len(lines))
        return order

    async def _flag_orphan(self, order_id: str) -> None:
        try:
            await self._store.flag_order_for_cleanup(order_id)
        except StoreError:
            logger.exception("could not flag order %s for cleanup", order_id)
