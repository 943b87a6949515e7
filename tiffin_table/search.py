"""Search across the menu, the user's orders and their favorites.

``on_input`` is the keystroke entry point: it debounces and only lets the
most recently scheduled run publish ``results``. ``query`` runs a search
immediately and is what the HTTP endpoint uses.
"""
import asyncio
import logging
from typing import List, Optional

from . import schemas
from .cart import CartStore
from .config import get_config
from .favorites import FavoritesStore
from .identity import SessionProvider
from .notifications import Notifier
from .store import Store, StoreError
from .utils import sanitize_input

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
MENU_LIMIT = 5
ORDER_LIMIT = 3
FAVORITE_LIMIT = 3


class ItemUnavailable(Exception):
    """A picked result no longer matches an orderable menu item."""


class CatalogSearch:
    def __init__(
        self,
        store: Store,
        session: SessionProvider,
        cart: CartStore,
        notifier: Notifier,
        favorites: Optional[FavoritesStore] = None,
    ):
        self._store = store
        self._session = session
        self._cart = cart
        self._notifier = notifier
        self.favorites = favorites
        self.results: List[schemas.SearchResult] = []
        self.loading = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    async def query(self, text: str, filter: schemas.SearchFilter = "all") -> List[schemas.SearchResult]:
        q = sanitize_input(text)
        if len(q) < MIN_QUERY_LENGTH:
            return []

        results: List[schemas.SearchResult] = []
        user = self._session.current_user
        try:
            if filter in ("all", "menu"):
                items = await self._store.list_menu_items(q=q, limit=MENU_LIMIT)
                results.extend(
                    schemas.SearchResult(
                        id=i.id, type="menu", title=i.name, subtitle=i.category, image=i.image_url, price=i.price
                    )
                    for i in items
                )

            if user is not None and filter in ("all", "orders"):
                orders = await self._store.list_user_orders(user.user_id, limit=ORDER_LIMIT, status_q=q)
                results.extend(
                    schemas.SearchResult(
                        id=o.id,
                        type="order",
                        title=f"Order #{o.id[:8]}",
                        subtitle=o.created_at.date().isoformat(),
                        price=o.total_amount,
                        status=o.status,
                    )
                    for o in orders
                )

            favorite_ids = self.favorites.favorites if self.favorites is not None else []
            if user is not None and favorite_ids and filter in ("all", "favorites"):
                items = await self._store.list_menu_items_by_ids(favorite_ids, q=q, limit=FAVORITE_LIMIT)
                results.extend(
                    schemas.SearchResult(
                        id=i.id, type="favorite", title=i.name, subtitle="Favorite", image=i.image_url, price=i.price
                    )
                    for i in items
                )
        except StoreError:
            logger.warning("search for %r failed", q)
            return []
        return results

    def on_input(self, text: str, filter: schemas.SearchFilter = "all") -> asyncio.Task:
        """Schedule a search after the debounce delay, superseding any pending one."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._generation += 1
        self._task = asyncio.get_running_loop().create_task(self._debounced(self._generation, text, filter))
        return self._task

    async def _debounced(self, generation: int, text: str, filter: schemas.SearchFilter) -> None:
        await asyncio.sleep(get_config().search_debounce_seconds)
        if len(sanitize_input(text)) < MIN_QUERY_LENGTH:
            if generation == self._generation:
                self.results = []
            return
        self.loading = True
        try:
            found = await self.query(text, filter)
        finally:
            if generation == self._generation:
                self.loading = False
        # a newer keystroke owns the results now
        if generation == self._generation:
            self.results = found

    async def settle(self) -> List[schemas.SearchResult]:
        """Wait for the latest scheduled search and return the committed results."""
        while self._task is not None:
            task = self._task
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            if task is self._task:
                break
        return self.results

    async def select(self, result: schemas.SearchResult) -> Optional[str]:
        """Act on a picked result. Menu and favorite hits are re-read from the
        catalog, so the cart line carries the current name and price."""
        if result.type not in ("menu", "favorite"):
            return "orders"
        item = await self._store.get_menu_item(result.id)
        if item is None or not item.is_available:
            self._notifier.error("This item is no longer available")
            raise ItemUnavailable(result.id)
        self._cart.add_item(item)
        self._notifier.success(f"{item.name} added to cart")
        return None

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._generation += 1
