from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Staff roles of the restaurant chain, most privileged first."""

    ADMIN = "admin"
    AREA_MANAGER = "area_manager"
    CENTRAL_KITCHEN_MANAGER = "central_kitchen_manager"
    RESTAURANT_MANAGER = "restaurant_manager"
    HEAD_CHEF = "head_chef"
    STAFF = "staff"


# Roles that may act on every location regardless of assignment
CHAIN_WIDE_ROLES = frozenset({Role.ADMIN, Role.AREA_MANAGER})


@dataclass
class User:
    id: str
    username: str
    email: str
    role: Role
    password_hash: str
    location_id: Optional[str] = None
    is_active: bool = True
    first_name: str = ""
    last_name: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.role = Role(self.role)


@dataclass
class UserSession:
    """One persisted refresh-token session (row of ``user_sessions``)."""

    id: str
    user_id: str
    refresh_token: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, user_id: str, refresh_token: str, expires_at: datetime) -> "UserSession":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            refresh_token=refresh_token,
            expires_at=expires_at,
            created_at=utcnow(),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now
