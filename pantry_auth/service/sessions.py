from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol

from pantry_auth.config import Settings
from pantry_auth.logging import get_logger
from pantry_auth.service.errors import (
    SessionExpiredError,
    SessionNotFoundError,
    TokenInvalidError,
    UserUnavailableError,
)
from pantry_auth.service.tokens import TokenClaims, TokenCodec
from pantry_auth.storage.models import User, UserSession

logger = get_logger(__name__)


class SessionStore(Protocol):
    def create_session(
        self, user_id: str, refresh_token: str, expires_at: datetime
    ) -> UserSession: ...

    def find_session_by_token(self, refresh_token: str) -> Optional[UserSession]: ...

    def delete_session(self, session: UserSession) -> bool: ...

    def delete_user_sessions(self, user_id: str) -> int: ...

    def delete_expired_sessions(self, now: datetime) -> int: ...

    def list_user_sessions(self, user_id: str) -> List[UserSession]: ...


class UserLookup(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: str
    token_type: str = "bearer"


def claims_for(user: User) -> TokenClaims:
    return TokenClaims(
        user_id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        location_id=user.location_id or None,
    )


class SessionManager:
    """Issues, rotates and revokes refresh sessions.

    A refresh token is only honoured while its own signature and ``exp`` are
    valid *and* the stored row's ``expires_at`` has not passed. The stored
    expiry is the authoritative session lifetime.
    """

    def __init__(
        self,
        codec: TokenCodec,
        store: SessionStore,
        users: UserLookup,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.codec = codec
        self.store = store
        self.users = users
        self.session_ttl = timedelta(seconds=settings.session_ttl_seconds)
        self.expires_in = settings.jwt_expires_in
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    def issue_tokens(self, user: User) -> TokenPair:
        access_token = self.codec.sign_access_token(claims_for(user))
        refresh_token = self.codec.sign_refresh_token()
        expires_at = self._now() + self.session_ttl
        session = self.store.create_session(user.id, refresh_token, expires_at)
        logger.info(
            "tokens_issued",
            user_id=user.id,
            session_id=session.id,
            session_expires_at=expires_at.isoformat(),
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.expires_in,
        )

    def refresh(self, refresh_token: str) -> TokenPair:
        try:
            self.codec.verify_refresh_token(refresh_token)
        except TokenInvalidError as exc:
            logger.info("session_refresh_rejected", reason=exc.kind.value)
            raise

        session = self.store.find_session_by_token(refresh_token)
        if session is None:
            logger.info("session_refresh_rejected", reason="session_not_found")
            raise SessionNotFoundError()

        if session.is_expired(self._now()):
            self.store.delete_session(session)
            logger.info(
                "session_refresh_rejected",
                reason="session_expired",
                session_id=session.id,
                user_id=session.user_id,
            )
            raise SessionExpiredError()

        user = self.users.get_user(session.user_id)
        if user is None or not user.is_active:
            self.store.delete_session(session)
            logger.warning(
                "session_refresh_rejected",
                reason="user_unavailable",
                session_id=session.id,
                user_id=session.user_id,
            )
            raise UserUnavailableError()

        tokens = self.issue_tokens(user)
        if not self.store.delete_session(session):
            # A concurrent refresh consumed this session first; undo our pair
            replacement = self.store.find_session_by_token(tokens.refresh_token)
            if replacement is not None:
                self.store.delete_session(replacement)
            logger.warning(
                "session_refresh_race_lost",
                session_id=session.id,
                user_id=session.user_id,
            )
            raise SessionNotFoundError()

        logger.info("session_rotated", old_session_id=session.id, user_id=user.id)
        return tokens

    def revoke(self, refresh_token: str) -> bool:
        """Delete the session holding ``refresh_token``; unknown tokens are ignored."""
        session = self.store.find_session_by_token(refresh_token)
        if session is None:
            return False
        removed = self.store.delete_session(session)
        if removed:
            logger.info("session_revoked", session_id=session.id, user_id=session.user_id)
        return removed

    def revoke_all(self, user_id: str) -> int:
        count = self.store.delete_user_sessions(user_id)
        logger.info("user_sessions_revoked", user_id=user_id, count=count)
        return count

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        count = self.store.delete_expired_sessions(now or self._now())
        if count:
            logger.info("expired_sessions_cleaned", count=count)
        return count
