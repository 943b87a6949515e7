"""Async boundary to the data service.

Every call opens its own short-lived session, runs one ``crud`` operation in
the threadpool and hands back pydantic models, so nothing returned here is
bound to a session. Any rejection from the data layer surfaces as
``StoreError``.
"""
import logging
from typing import Callable, Iterable, List, Optional, TypeVar

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import crud, schemas
from .auth import verify_password

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(Exception):
    """A read or write was rejected by the data service."""


class Store:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _run(self, op: Callable[[Session], T]) -> T:
        with self._session_factory() as db:
            try:
                return op(db)
            except (SQLAlchemyError, ValueError) as e:
                db.rollback()
                logger.warning("store call failed: %s", e)
                raise StoreError(str(e)) from e

    async def call(self, op: Callable[[Session], T]) -> T:
        return await run_in_threadpool(self._run, op)

    # -------------------- identity --------------------

    async def sign_up(self, signup: schemas.SignUp) -> schemas.ProfileRead:
        return await self.call(lambda db: schemas.ProfileRead.model_validate(crud.create_profile(db, signup)))

    async def authenticate(self, email: str, password: str) -> Optional[schemas.UserRead]:
        def op(db: Session):
            profile = crud.get_profile_by_email(db, email)
            if not profile or not verify_password(password, profile.password_hash):
                return None
            return user_read(profile, crud.list_roles(db, profile.id))

        return await self.call(op)

    async def get_profile(self, user_id: str) -> Optional[schemas.ProfileRead]:
        def op(db: Session):
            profile = crud.get_profile(db, user_id)
            return schemas.ProfileRead.model_validate(profile) if profile else None

        return await self.call(op)

    # -------------------- menu --------------------

    async def list_menu_items(self, category: Optional[str] = None, q: Optional[str] = None, limit: Optional[int] = None) -> List[schemas.MenuItemRead]:
        return await self.call(
            lambda db: [schemas.MenuItemRead.model_validate(i) for i in crud.list_menu_items(db, category=category, q=q, limit=limit)]
        )

    async def list_menu_items_by_ids(self, ids: Iterable[str], q: Optional[str] = None, limit: Optional[int] = None) -> List[schemas.MenuItemRead]:
        ids = list(ids)
        return await self.call(
            lambda db: [schemas.MenuItemRead.model_validate(i) for i in crud.list_menu_items_by_ids(db, ids, q=q, limit=limit)]
        )

    async def get_menu_item(self, item_id: str) -> Optional[schemas.MenuItemRead]:
        def op(db: Session):
            item = crud.get_menu_item(db, item_id)
            return schemas.MenuItemRead.model_validate(item) if item else None

        return await self.call(op)

    # -------------------- orders --------------------

    async def create_order(self, user_id: str, order: schemas.OrderCreate) -> schemas.OrderRead:
        return await self.call(lambda db: schemas.OrderRead.model_validate(crud.create_order(db, user_id, order)))

    async def create_order_items(self, order_id: str, lines: Iterable[schemas.OrderLineCreate]) -> List[schemas.OrderLineRead]:
        lines = list(lines)
        return await self.call(
            lambda db: [schemas.OrderLineRead.model_validate(r) for r in crud.create_order_items(db, order_id, lines)]
        )

    async def flag_order_for_cleanup(self, order_id: str) -> bool:
        return await self.call(lambda db: crud.flag_order_for_cleanup(db, order_id))

    async def list_user_orders(self, user_id: str, limit: Optional[int] = None, status_q: Optional[str] = None) -> List[schemas.OrderRead]:
        return await self.call(
            lambda db: [schemas.OrderRead.model_validate(o) for o in crud.list_user_orders(db, user_id, limit=limit, status_q=status_q)]
        )

    # -------------------- favorites --------------------

    async def list_favorite_ids(self, user_id: str) -> List[str]:
        return await self.call(lambda db: crud.list_favorite_ids(db, user_id))

    async def add_favorite(self, user_id: str, menu_item_id: str) -> None:
        await self.call(lambda db: crud.add_favorite(db, user_id, menu_item_id))

    async def remove_favorite(self, user_id: str, menu_item_id: str) -> None:
        await self.call(lambda db: crud.remove_favorite(db, user_id, menu_item_id))

    # -------------------- reviews --------------------

    async def create_review(self, user_id: str, review: schemas.ReviewCreate) -> schemas.ReviewRead:
        return await self.call(lambda db: schemas.ReviewRead.model_validate(crud.create_review(db, user_id, review)))


def user_read(profile, roles: List[str]) -> schemas.UserRead:
    return schemas.UserRead(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        phone=profile.phone,
        roles=roles,
        is_admin=schemas.Role.admin.value in roles,
    )
