import logging
from dataclasses import dataclass
from typing import Optional

from . import schemas
from .auth import AuthenticationError, create_access_token
from .store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    role: schemas.Role = schemas.Role.user

    @property
    def is_admin(self) -> bool:
        return self.role == schemas.Role.admin


class SessionProvider:
    """Holds who is signed in for one client."""

    def __init__(self, store: Store):
        self._store = store
        self.current_user: Optional[Identity] = None
        self.access_token: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.current_user is not None and self.current_user.is_admin

    async def sign_up(self, signup: schemas.SignUp) -> schemas.ProfileRead:
        profile = await self._store.sign_up(signup)
        logger.info("signed up user=%s", profile.id)
        return profile

    async def sign_in(self, email: str, password: str) -> Identity:
        user = await self._store.authenticate(email, password)
        if user is None:
            raise AuthenticationError("invalid credentials")
        role = schemas.Role.admin if user.is_admin else (user.roles[0] if user.roles else schemas.Role.user)
        self.current_user = Identity(user_id=user.id, email=user.email, role=role)
        self.access_token = create_access_token(user.id, role.value)
        logger.info("signed in user=%s role=%s", user.id, role.value)
        return self.current_user

    def sign_out(self) -> None:
        if self.current_user is not None:
            logger.info("signed out user=%s", self.current_user.user_id)
        self.current_user = None
        self.access_token = None
