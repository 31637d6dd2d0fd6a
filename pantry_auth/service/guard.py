from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from pantry_auth.logging import get_logger
from pantry_auth.service.errors import (
    InsufficientPermissionsError,
    LocationNotAccessibleError,
    TokenInvalidError,
    TokenMissingError,
)
from pantry_auth.service.tokens import TokenClaims, TokenCodec
from pantry_auth.storage.models import CHAIN_WIDE_ROLES, Role

logger = get_logger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """Identity attached to one request; ``claims`` is None for anonymous callers."""

    claims: Optional[TokenClaims] = None

    @property
    def is_authenticated(self) -> bool:
        return self.claims is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.claims.user_id if self.claims else None

    @property
    def role(self) -> Optional[Role]:
        return self.claims.role if self.claims else None

    @property
    def location_id(self) -> Optional[str]:
        return self.claims.location_id if self.claims else None


ANONYMOUS = RequestContext()


class AuthorizationGuard:
    def __init__(self, codec: TokenCodec) -> None:
        self.codec = codec

    @staticmethod
    def extract_token(header: Optional[str]) -> str:
        """Pull the token out of an Authorization header.

        Accepts ``Bearer <token>`` as well as a bare token for older clients.
        """
        if not header or not header.strip():
            raise TokenMissingError()
        value = header.strip()
        scheme, _, rest = value.partition(" ")
        if scheme.lower() == "bearer":
            value = rest.strip()
        if not value:
            raise TokenMissingError()
        return value

    def authenticate(self, header: Optional[str]) -> RequestContext:
        token = self.extract_token(header)
        try:
            claims = self.codec.verify_access_token(token)
        except TokenInvalidError as exc:
            logger.info("access_token_rejected", reason=exc.message)
            raise
        return RequestContext(claims=claims)

    def authenticate_optional(self, header: Optional[str]) -> RequestContext:
        try:
            return self.authenticate(header)
        except (TokenMissingError, TokenInvalidError):
            return ANONYMOUS

    @staticmethod
    def require_roles(context: RequestContext, roles: Iterable[Role | str]) -> RequestContext:
        if context.claims is None:
            raise TokenMissingError("no authenticated user")
        allowed = {Role(role) for role in roles}
        if context.claims.role not in allowed:
            logger.info(
                "role_check_failed",
                user_id=context.user_id,
                role=context.claims.role.value,
                allowed=sorted(role.value for role in allowed),
            )
            raise InsufficientPermissionsError()
        return context

    @staticmethod
    def require_location(context: RequestContext, location_id: Optional[str]) -> RequestContext:
        if context.claims is None:
            raise TokenMissingError("no authenticated user")
        if context.claims.role in CHAIN_WIDE_ROLES:
            return context
        if context.claims.location_id and context.claims.location_id == location_id:
            return context
        logger.info(
            "location_check_failed",
            user_id=context.user_id,
            assigned_location_id=context.claims.location_id,
            requested_location_id=location_id,
        )
        raise LocationNotAccessibleError()
