"""Signed access and refresh tokens.

Both token types use the compact JWS layout
``base64url(header).base64url(payload).base64url(signature)`` with HS256.
Access and refresh tokens are signed with different secrets so that a leaked
key for one type cannot be used to mint the other.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pantry_auth.config import Settings
from pantry_auth.logging import get_logger
from pantry_auth.service.errors import TokenInvalidError
from pantry_auth.storage.models import Role

logger = get_logger(__name__)

_ALGORITHM = "HS256"
_HEADER = {"alg": _ALGORITHM, "typ": "JWT"}

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by an access token."""

    user_id: str
    username: str
    email: str
    role: Role
    location_id: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sub": self.user_id,
            "username": self.username,
            "email": self.email,
            "role": Role(self.role).value,
        }
        if self.location_id:
            payload["location_id"] = self.location_id
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        try:
            return cls(
                user_id=str(payload["sub"]),
                username=str(payload["username"]),
                email=str(payload["email"]),
                role=Role(payload["role"]),
                location_id=payload.get("location_id") or None,
            )
        except (KeyError, ValueError) as exc:
            raise TokenInvalidError("token claims incomplete") from exc


@dataclass(frozen=True)
class RefreshClaims:
    token_id: str
    expires_at: datetime


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


class TokenCodec:
    """Creates and verifies access and refresh tokens."""

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.issuer = settings.jwt_issuer
        self.audience = settings.jwt_audience
        self.access_ttl_seconds = settings.access_token_ttl_seconds
        self.refresh_ttl_seconds = settings.refresh_token_ttl_seconds
        self.leeway_seconds = settings.token_leeway_seconds
        self._access_secret = settings.jwt_secret.encode()
        self._refresh_secret = settings.jwt_refresh_secret.encode()
        self._clock = clock

    def sign_access_token(self, claims: TokenClaims) -> str:
        payload = claims.to_payload()
        payload["token_type"] = ACCESS_TOKEN_TYPE
        return self._encode(payload, self._access_secret, self.access_ttl_seconds)

    def sign_refresh_token(self) -> str:
        payload = {"jti": str(uuid.uuid4()), "token_type": REFRESH_TOKEN_TYPE}
        return self._encode(payload, self._refresh_secret, self.refresh_ttl_seconds)

    def verify_access_token(self, token: str) -> TokenClaims:
        payload = self._decode(token, self._access_secret, ACCESS_TOKEN_TYPE)
        return TokenClaims.from_payload(payload)

    def verify_refresh_token(self, token: str) -> RefreshClaims:
        payload = self._decode(token, self._refresh_secret, REFRESH_TOKEN_TYPE)
        token_id = payload.get("jti")
        if not isinstance(token_id, str) or not token_id:
            raise TokenInvalidError("refresh token id missing")
        return RefreshClaims(
            token_id=token_id,
            expires_at=datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc),
        )

    def _sign(self, signing_input: str, secret: bytes) -> str:
        digest = hmac.new(secret, signing_input.encode(), hashlib.sha256).digest()
        return _encode_segment(digest)

    def _encode(self, payload: dict[str, Any], secret: bytes, ttl_seconds: int) -> str:
        now = int(self._clock())
        body = {
            **payload,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
        payload_enc = _encode_segment(json.dumps(body, separators=(",", ":")).encode())
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"

    def _decode(self, token: str, secret: bytes, token_type: str) -> dict[str, Any]:
        if not isinstance(token, str):
            raise TokenInvalidError()
        # compact JWS is base64url plus dots; compare_digest rejects non-ASCII str
        if not token.isascii():
            raise TokenInvalidError("malformed token")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise TokenInvalidError("malformed token") from None

        # Reject anything but HS256 so "none" or asymmetric headers cannot be smuggled in
        try:
            header = json.loads(_decode_segment(header_b64))
        except (ValueError, UnicodeDecodeError):
            logger.warning("token_header_decode_failed")
            raise TokenInvalidError("malformed token") from None
        if not isinstance(header, dict) or header.get("alg") != _ALGORITHM:
            logger.warning(
                "token_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise TokenInvalidError("unsupported token algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}", secret)
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise TokenInvalidError("bad token signature")

        try:
            payload = json.loads(_decode_segment(payload_b64))
        except (ValueError, UnicodeDecodeError) as exc:
            logger.warning("token_payload_decode_failed", error=str(exc))
            raise TokenInvalidError("malformed token") from None
        if not isinstance(payload, dict):
            raise TokenInvalidError("malformed token")

        if payload.get("iss") != self.issuer:
            raise TokenInvalidError("token issuer mismatch")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise TokenInvalidError("token audience mismatch")
        if payload.get("token_type") != token_type:
            raise TokenInvalidError("wrong token type")

        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidError("token expiry missing") from None
        if exp_ts <= self._clock() - self.leeway_seconds:
            raise TokenInvalidError("token expired")
        return payload
