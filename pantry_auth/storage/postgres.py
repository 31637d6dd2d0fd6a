from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from pantry_auth.logging import get_logger
from pantry_auth.storage.errors import ConstraintViolation
from pantry_auth.storage.models import Role, User, UserSession, utcnow

_SESSION_COLUMNS = "id, user_id, refresh_token, expires_at, created_at"
_USER_COLUMNS = (
    "id, username, email, password_hash, first_name, last_name, role, "
    "location_id, is_active, created_at, updated_at"
)


class PostgresStore:
    """Postgres-backed user lookup and ``user_sessions`` persistence.

    The ``users`` table belongs to user management and must already exist;
    ``user_sessions`` and its indexes are created on startup when missing.
    """

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()
        self._ensure_session_table()

    def _connect(self):
        return self.pool.connection()

    def close(self) -> None:
        self.pool.close()

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def _verify_required_schema(self) -> None:
        with self._connect() as conn:
            row = conn.execute("SELECT to_regclass('public.users') AS oid").fetchone()
        if not row or not row.get("oid"):
            raise RuntimeError(
                "Missing required Postgres table: users. Run the inventory migrations first."
            )

    def _ensure_session_table(self) -> None:
        """Create ``user_sessions`` and its lookup indexes if they are missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_sessions (
                    id UUID PRIMARY KEY,
                    user_id UUID NOT NULL REFERENCES users(id) ON UPDATE CASCADE ON DELETE CASCADE,
                    refresh_token TEXT NOT NULL,
                    expires_at TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS user_sessions_user_id_idx ON user_sessions (user_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS user_sessions_expires_at_idx ON user_sessions (expires_at)"
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS user_sessions_refresh_token_key "
                "ON user_sessions (refresh_token)"
            )

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        return User(
            id=str(row["id"]),
            username=row["username"],
            email=row["email"],
            role=Role(row["role"]),
            password_hash=row["password_hash"],
            location_id=str(row["location_id"]) if row.get("location_id") else None,
            is_active=row.get("is_active", True),
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            created_at=row.get("created_at") or utcnow(),
            updated_at=row.get("updated_at") or utcnow(),
        )

    @staticmethod
    def _row_to_session(row: Dict[str, Any]) -> UserSession:
        return UserSession(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            refresh_token=row["refresh_token"],
            expires_at=row["expires_at"],
            created_at=row.get("created_at") or utcnow(),
        )

    # users
    def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(str(user_id))
        except ValueError:
            return None
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_login(self, identifier: str) -> Optional[User]:
        needle = identifier.strip()
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {_USER_COLUMNS} FROM users
                WHERE username = %s OR lower(email) = lower(%s)
                ORDER BY (username = %s) DESC
                LIMIT 1
                """,
                (needle, needle, needle),
            ).fetchone()
        return self._row_to_user(row) if row else None

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
        now = utcnow()
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
            created_at=now,
            updated_at=now,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO users ({_USER_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user.id,
                        user.username,
                        user.email,
                        user.password_hash,
                        user.first_name,
                        user.last_name,
                        user.role.value,
                        user.location_id,
                        user.is_active,
                        user.created_at,
                        user.updated_at,
                    ),
                )
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None) or ""
            field = "email" if "email" in constraint else "username"
            raise ConstraintViolation(f"{field} already exists", field=field) from exc
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "location missing", field="location_id", detail={"location_id": location_id}
            ) from exc
        return user

    def save_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE users SET password_hash = %s, updated_at = %s WHERE id = %s",
                (password_hash, utcnow(), user_id),
            )
            return cur.rowcount > 0

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE users SET is_active = %s, updated_at = %s WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                (is_active, utcnow(), user_id),
            ).fetchone()
        return self._row_to_user(row) if row else None

    # sessions
    def create_session(
        self, user_id: str, refresh_token: str, expires_at: datetime
    ) -> UserSession:
        session = UserSession.new(user_id, refresh_token, expires_at)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO user_sessions ({_SESSION_COLUMNS}) VALUES (%s, %s, %s, %s, %s)",
                    (
                        session.id,
                        session.user_id,
                        session.refresh_token,
                        session.expires_at,
                        session.created_at,
                    ),
                )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "session user missing", field="user_id", detail={"user_id": user_id}
            ) from exc
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "refresh token already in use", field="refresh_token"
            ) from exc
        return session

    def find_session_by_token(self, refresh_token: str) -> Optional[UserSession]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM user_sessions WHERE refresh_token = %s",
                (refresh_token,),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def delete_session(self, session: UserSession) -> bool:
        # rowcount is the arbiter when two refreshes race for one session
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM user_sessions WHERE id = %s", (session.id,))
            return cur.rowcount > 0

    def delete_user_sessions(self, user_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM user_sessions WHERE user_id = %s", (user_id,))
            return cur.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM user_sessions WHERE expires_at < %s", (now,))
            count = cur.rowcount
        self.logger.debug("postgres_sessions_expired", count=count)
        return count

    def list_user_sessions(self, user_id: str) -> List[UserSession]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SESSION_COLUMNS} FROM user_sessions
                WHERE user_id = %s ORDER BY created_at
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]
