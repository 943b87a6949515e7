"""Client-held shopping cart.

Totals are always computed from the current lines; there is no stored total
that could drift from them.
"""
import time
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from .config import get_config
from .schemas import CartItem, CartLine, CartRead


class CartStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lines: List[CartLine] = []
        self._recently_added: Dict[str, float] = {}
        self._clock = clock
        self.is_open = False

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return tuple(line.model_copy() for line in self._lines)

    def snapshot(self) -> Tuple[CartLine, ...]:
        return self.lines

    def __len__(self) -> int:
        return len(self._lines)

    def _find(self, item_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.id == item_id:
                return line
        return None

    def add_item(self, item: CartItem) -> CartLine:
        line = self._find(item.id)
        if line is not None:
            line.quantity += 1
        else:
            line = CartLine(id=item.id, name=item.name, price=item.price, image_url=item.image_url, quantity=1)
            self._lines.append(line)
        self._recently_added[item.id] = self._clock()
        return line.model_copy()

    def add_item_guarded(self, item: CartItem) -> bool:
        """Add unless the same item was added moments ago (repeated taps)."""
        added_at = self._recently_added.get(item.id)
        if added_at is not None and self._clock() - added_at < get_config().added_lock_seconds:
            return False
        self.add_item(item)
        return True

    def update_quantity(self, item_id: str, quantity: int) -> None:
        line = self._find(item_id)
        if line is None:
            return
        if quantity <= 0:
            self._lines.remove(line)
        else:
            line.quantity = quantity

    def remove_item(self, item_id: str) -> None:
        self._lines = [line for line in self._lines if line.id != item_id]

    def discard(self, ordered: Tuple[CartLine, ...]) -> None:
        """Take ordered quantities out of the cart, keeping anything added since the snapshot."""
        for line in ordered:
            current = self._find(line.id)
            if current is not None:
                self.update_quantity(line.id, current.quantity - line.quantity)

    def clear(self) -> None:
        self._lines = []
        self._recently_added.clear()

    @property
    def total_items(self) -> int:
        return sum(line.quantity for line in self._lines)

    @property
    def total_price(self) -> Decimal:
        return sum((line.price * line.quantity for line in self._lines), Decimal("0"))

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def toggle(self) -> bool:
        self.is_open = not self.is_open
        return self.is_open

    def read(self) -> CartRead:
        return CartRead(
            lines=list(self.lines),
            total_items=self.total_items,
            total_price=self.total_price,
            is_open=self.is_open,
        )
