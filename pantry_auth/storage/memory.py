from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from pantry_auth.logging import get_logger
from pantry_auth.storage.errors import ConstraintViolation
from pantry_auth.storage.models import Role, User, UserSession, utcnow


class MemoryStore:
    """In-process user and session store for development and tests.

    All dict access goes through one ``RLock`` so the delete-returns-bool
    contract holds under concurrent refreshes, like a row count would.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.sessions: Dict[str, UserSession] = {}
        self._session_ids_by_token: Dict[str, str] = {}
        self._data_lock = threading.RLock()

    # users
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
    ) -> User:
        with self._data_lock:
            for existing in self.users.values():
                if existing.username == username:
                    raise ConstraintViolation("username already exists", field="username")
                if existing.email.lower() == email.lower():
                    raise ConstraintViolation("email already exists", field="email")
            user = User(
                id=str(uuid.uuid4()),
                username=username,
                email=email,
                role=Role(role),
                password_hash=password_hash,
                location_id=location_id,
                first_name=first_name,
                last_name=last_name,
                is_active=is_active,
            )
            self.users[user.id] = user
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_login(self, identifier: str) -> Optional[User]:
        """Find a user whose username or email equals ``identifier``."""
        needle = identifier.strip()
        with self._data_lock:
            for user in self.users.values():
                if user.username == needle or user.email.lower() == needle.lower():
                    return user
        return None

    def save_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            self.users[user_id] = replace(
                user, password_hash=password_hash, updated_at=utcnow()
            )
            return True

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            updated = replace(user, is_active=is_active, updated_at=utcnow())
            self.users[user_id] = updated
            return updated

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            removed = self.users.pop(user_id, None) is not None
            # sessions reference users with ON DELETE CASCADE in SQL
            self.delete_user_sessions(user_id)
            return removed

    # sessions
    def create_session(
        self, user_id: str, refresh_token: str, expires_at: datetime
    ) -> UserSession:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "session user missing", field="user_id", detail={"user_id": user_id}
                )
            if refresh_token in self._session_ids_by_token:
                raise ConstraintViolation("refresh token already in use", field="refresh_token")
            session = UserSession.new(user_id, refresh_token, expires_at)
            self.sessions[session.id] = session
            self._session_ids_by_token[refresh_token] = session.id
            return session

    def find_session_by_token(self, refresh_token: str) -> Optional[UserSession]:
        with self._data_lock:
            session_id = self._session_ids_by_token.get(refresh_token)
            return self.sessions.get(session_id) if session_id else None

    def delete_session(self, session: UserSession) -> bool:
        with self._data_lock:
            removed = self.sessions.pop(session.id, None)
            if removed is None:
                return False
            self._session_ids_by_token.pop(removed.refresh_token, None)
            return True

    def delete_user_sessions(self, user_id: str) -> int:
        with self._data_lock:
            stale = [s for s in self.sessions.values() if s.user_id == user_id]
            for session in stale:
                self.delete_session(session)
            return len(stale)

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._data_lock:
            expired = [s for s in self.sessions.values() if s.expires_at < now]
            for session in expired:
                self.delete_session(session)
        if expired:
            self.logger.debug("memory_sessions_expired", count=len(expired))
        return len(expired)

    def list_user_sessions(self, user_id: str) -> List[UserSession]:
        with self._data_lock:
            return sorted(
                (s for s in self.sessions.values() if s.user_id == user_id),
                key=lambda s: s.created_at,
            )
