"""Per-user favorite items with optimistic toggling.

Each item carries a small state tag. ``Pending`` and ``Failed`` remember the
membership the item had before the toggle, so a rollback just restores that
captured value.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Set, Union

from .identity import SessionProvider
from .notifications import Notifier
from .store import Store, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Pending:
    previous: bool


@dataclass(frozen=True)
class Failed:
    previous: bool


ToggleState = Union[Idle, Pending, Failed]
IDLE = Idle()


class FavoritesStore:
    def __init__(self, store: Store, session: SessionProvider, notifier: Notifier):
        self._store = store
        self._session = session
        self._notifier = notifier
        self._ids: Set[str] = set()
        self._order: List[str] = []
        self._states: Dict[str, ToggleState] = {}

    @property
    def favorites(self) -> List[str]:
        return [i for i in self._order if i in self._ids]

    def __len__(self) -> int:
        return len(self._ids)

    def is_favorite(self, menu_item_id: str) -> bool:
        return menu_item_id in self._ids

    def state_of(self, menu_item_id: str) -> ToggleState:
        return self._states.get(menu_item_id, IDLE)

    async def load(self) -> None:
        user = self._session.current_user
        if user is None:
            self.clear()
            return
        try:
            ids = await self._store.list_favorite_ids(user.user_id)
        except StoreError:
            logger.warning("could not load favorites for user=%s", user.user_id)
            self._notifier.error("Failed to load favorites")
            return
        self._ids = set(ids)
        self._order = list(ids)

    def clear(self) -> None:
        self._ids.clear()
        self._order.clear()
        self._states.clear()

    def _set(self, menu_item_id: str, member: bool) -> None:
        if member:
            self._ids.add(menu_item_id)
            if menu_item_id not in self._order:
                self._order.append(menu_item_id)
        else:
            self._ids.discard(menu_item_id)
            if menu_item_id in self._order:
                self._order.remove(menu_item_id)

    async def toggle(self, menu_item_id: str) -> bool:
        """Flip membership; returns the membership after the call settles."""
        user = self._session.current_user
        if user is None:
            self._notifier.error("Please login to add favorites")
            return self.is_favorite(menu_item_id)

        if isinstance(self.state_of(menu_item_id), Pending):
            # a write for this item is still in flight
            return self.is_favorite(menu_item_id)

        previous = self.is_favorite(menu_item_id)
        self._states[menu_item_id] = Pending(previous)
        self._set(menu_item_id, not previous)
        try:
            if previous:
                await self._store.remove_favorite(user.user_id, menu_item_id)
            else:
                await self._store.add_favorite(user.user_id, menu_item_id)
        except StoreError:
            self._rollback(menu_item_id)
            self._notifier.error("Failed to update favorites")
            return self.is_favorite(menu_item_id)

        if self._session.current_user != user:
            # signed out or switched user while the write was in flight
            return self.is_favorite(menu_item_id)
        self._states[menu_item_id] = IDLE
        self._notifier.success("Removed from favorites" if previous else "Added to favorites")
        return not previous

    def _rollback(self, menu_item_id: str) -> None:
        state = self.state_of(menu_item_id)
        if not isinstance(state, Pending):
            return
        self._set(menu_item_id, state.previous)
        self._states[menu_item_id] = Failed(state.previous)
        logger.info("rolled back favorite toggle item=%s to %s", menu_item_id, state.previous)
