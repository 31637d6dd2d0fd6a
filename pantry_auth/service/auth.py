from __future__ import annotations

import asyncio
from typing import Optional, Protocol, Tuple

from pantry_auth.logging import get_logger
from pantry_auth.service.errors import (
    ConflictError,
    InvalidCredentialsError,
    InvalidCurrentPasswordError,
    NotFoundError,
)
from pantry_auth.service.passwords import CredentialHasher
from pantry_auth.service.sessions import SessionManager, TokenPair
from pantry_auth.storage.errors import ConstraintViolation
from pantry_auth.storage.models import Role, User

logger = get_logger(__name__)


class UserStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_login(self, identifier: str) -> Optional[User]: ...

    def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        *,
        role: Role | str = Role.STAFF,
        location_id: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        is_active: bool = True,
    ) -> User: ...

    def save_password_hash(self, user_id: str, password_hash: str) -> bool: ...


class AuthService:
    """Credential checks on top of the session manager.

    Hashing is CPU-bound, so the async entry points run it in a worker
    thread to keep the event loop responsive.
    """

    def __init__(
        self,
        users: UserStore,
        hasher: CredentialHasher,
        sessions: SessionManager,
    ) -> None:
        self.users = users
        self.hasher = hasher
        self.sessions = sessions

    async def login(self, identifier: str, password: str) -> Tuple[User, TokenPair]:
        user = self.users.get_user_by_login(identifier)
        if user is None or not user.is_active:
            logger.info("login_failed", reason="unknown_or_inactive_user")
            raise InvalidCredentialsError()
        valid = await asyncio.to_thread(self.hasher.verify, password, user.password_hash)
        if not valid:
            logger.info("login_failed", reason="password_mismatch", user_id=user.id)
            raise InvalidCredentialsError()
        if self.hasher.needs_rehash(user.password_hash):
            new_hash = await asyncio.to_thread(self.hasher.hash, password)
            self.users.save_password_hash(user.id, new_hash)
            logger.info("password_rehashed", user_id=user.id)
        tokens = self.sessions.issue_tokens(user)
        logger.info("login_succeeded", user_id=user.id, role=user.role.value)
        return user, tokens

    def get_profile(self, user_id: str) -> User:
        user = self.users.get_user(user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    async def change_password(
        self, user_id: str, current_password: str, new_password: str
    ) -> int:
        """Replace the user's password and revoke every session they hold.

        Returns the number of sessions revoked.
        """
        user = self.get_profile(user_id)
        valid = await asyncio.to_thread(
            self.hasher.verify, current_password, user.password_hash
        )
        if not valid:
            raise InvalidCurrentPasswordError("current password is incorrect")
        new_hash = await asyncio.to_thread(self.hasher.hash, new_password)
        if not self.users.save_password_hash(user.id, new_hash):
            raise NotFoundError("user not found")
        revoked = self.sessions.revoke_all(user.id)
        logger.info("password_changed", user_id=user.id, revoked_sessions=revoked)
        return revoked

    async def register_user(
        self,
        *,
        username: str,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Role,
        location_id: Optional[str] = None,
    ) -> User:
        password_hash = await asyncio.to_thread(self.hasher.hash, password)
        try:
            user = self.users.create_user(
                username,
                email,
                password_hash,
                role=role,
                location_id=location_id,
                first_name=first_name,
                last_name=last_name,
            )
        except ConstraintViolation as exc:
            raise ConflictError(exc.message, detail=exc.detail) from exc
        logger.info("user_registered", user_id=user.id, role=user.role.value)
        return user
