"""Per-client state containers and their lifecycle.

A ``ClientSession`` is built when a client connects and owns everything that
client sees: who is signed in, the cart, favorites, the order tracker and
the search box. Signing in (or switching user) tears down the previous
user's favorites and tracker before building new ones, so at most one order
subscription exists per session.
"""
import logging
import threading
from typing import Dict, Optional
from uuid import uuid4

from . import schemas
from .cart import CartStore
from .checkout import OrderSubmission
from .favorites import FavoritesStore
from .identity import Identity, SessionProvider
from .notifications import Notifier
from .realtime import RealtimeHub
from .search import CatalogSearch
from .store import Store
from .tracker import RealtimeOrderTracker

logger = logging.getLogger(__name__)


class ClientSession:
    def __init__(self, store: Store, hub: RealtimeHub, session_id: Optional[str] = None):
        self.id = session_id or uuid4().hex
        self.store = store
        self.hub = hub
        self.notifier = Notifier()
        self.auth = SessionProvider(store)
        self.cart = CartStore()
        self.favorites = FavoritesStore(store, self.auth, self.notifier)
        self.tracker: Optional[RealtimeOrderTracker] = None
        self.search = CatalogSearch(store, self.auth, self.cart, self.notifier, favorites=self.favorites)
        self.checkout = OrderSubmission(store, self.auth, self.cart, self.notifier)

    @property
    def user(self) -> Optional[Identity]:
        return self.auth.current_user

    async def sign_in(self, email: str, password: str) -> Identity:
        identity = await self.auth.sign_in(email, password)
        self._detach()
        await self.favorites.load()
        self.tracker = RealtimeOrderTracker(self.store, self.hub, self.notifier, identity)
        await self.tracker.start()
        return identity

    def sign_out(self) -> None:
        self._detach()
        self.auth.sign_out()

    def _detach(self) -> None:
        if self.tracker is not None:
            self.tracker.stop()
            self.tracker = None
        self.favorites.clear()

    def orders(self) -> list[schemas.OrderRead]:
        return self.tracker.orders if self.tracker is not None else []

    def close(self) -> None:
        self.search.close()
        self.sign_out()


class SessionRegistry:
    def __init__(self, store: Store, hub: RealtimeHub):
        self.store = store
        self.hub = hub
        self._sessions: Dict[str, ClientSession] = {}
        self._lock = threading.Lock()

    def create(self) -> ClientSession:
        session = ClientSession(self.store, self.hub)
        with self._lock:
            self._sessions[session.id] = session
        logger.info("client session %s created", session.id)
        return session

    def get(self, session_id: str) -> Optional[ClientSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def destroy(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("client session %s closed", session_id)
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions, self._sessions = list(self._sessions.values()), {}
        for session in sessions:
            session.close()

    def __len__(self) -> int:
        return len(self._sessions)
