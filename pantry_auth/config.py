from __future__ import annotations

import os
import re
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from pantry_auth.logging import get_logger

logger = get_logger(__name__)

TOKEN_ISSUER = "restaurant-inventory-api"
TOKEN_AUDIENCE = "restaurant-inventory-client"

_DURATION_RE = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d|w)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 60 * 60 * 24,
    "w": 60 * 60 * 24 * 7,
}


def parse_duration(value: str | int) -> int:
    """Convert a lifetime such as ``"24h"``, ``"7d"`` or ``"900"`` into seconds.

    Bare numbers are seconds. Raises ``ValueError`` for anything else.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError("duration must be positive")
        return value
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    seconds = int(int(amount) * _DURATION_UNITS[(unit or "s").lower()])
    if seconds <= 0:
        raise ValueError("duration must be positive")
    return seconds


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


def _load_or_create_secret(secrets_dir: Path, name: str) -> str:
    """Return the secret persisted at ``secrets_dir/name``, generating it once.

    Tokens must stay valid across restarts, so a generated secret is written
    atomically with 0600 permissions before it is used.
    """
    secret_path = secrets_dir / name
    try:
        secrets_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(secrets_dir, 0o700)
    except PermissionError:
        # Directory may already exist with different ownership (e.g. in a container)
        pass

    if secret_path.exists() and not secret_path.is_symlink():
        try:
            persisted = secret_path.read_text().strip()
        except OSError as exc:
            logger.error("secret_read_failed", error=str(exc), path=str(secret_path))
        else:
            if len(persisted) >= 32:
                return persisted

    generated = secrets.token_urlsafe(64)
    fd, tmp_path = tempfile.mkstemp(dir=str(secrets_dir), prefix=f"{name}_", suffix=".tmp")
    try:
        try:
            os.write(fd, generated.encode())
            os.fchmod(fd, 0o600)
        finally:
            os.close(fd)
        os.rename(tmp_path, str(secret_path))
    except OSError as exc:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.error("secret_persist_failed", error=str(exc), path=str(secret_path))
        raise RuntimeError(
            f"Unable to persist {name}; set it via environment or make SECRETS_DIR writable"
        ) from exc
    logger.warning("secret_generated", name=name, path=str(secret_path))
    return generated


class Settings(BaseModel):
    """Runtime settings for the auth core and its HTTP surface."""

    database_url: str = env_field(
        "postgresql://localhost:5432/restaurant_inventory", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    secrets_dir: str = env_field("/srv/pantry_auth", "SECRETS_DIR")
    # secrets must be declared after secrets_dir so generation can find it
    jwt_secret: str | None = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_refresh_secret: str | None = env_field(
        None, "JWT_REFRESH_SECRET", validate_default=True
    )
    jwt_issuer: str = env_field(TOKEN_ISSUER, "JWT_ISSUER")
    jwt_audience: str = env_field(TOKEN_AUDIENCE, "JWT_AUDIENCE")
    jwt_expires_in: str = env_field(
        "24h",
        "JWT_EXPIRES_IN",
        description="Access token lifetime, e.g. 15m, 24h",
    )
    jwt_refresh_expires_in: str = env_field(
        "7d",
        "JWT_REFRESH_EXPIRES_IN",
        description="Lifetime embedded in signed refresh tokens",
    )
    session_ttl_days: int = env_field(
        7,
        "SESSION_TTL_DAYS",
        ge=1,
        description="Lifetime of the stored refresh session row",
    )
    token_leeway_seconds: int = env_field(0, "TOKEN_LEEWAY_SECONDS", ge=0)
    password_time_cost: int = env_field(3, "PASSWORD_TIME_COST", ge=1)
    password_memory_cost: int = env_field(65536, "PASSWORD_MEMORY_COST", ge=8)
    password_parallelism: int = env_field(4, "PASSWORD_PARALLELISM", ge=1)
    session_cleanup_interval_seconds: int = env_field(
        3600, "SESSION_CLEANUP_INTERVAL_SECONDS", ge=60
    )
    cors_allow_origins: list[str] = env_field(
        ["http://localhost:5173"], "CORS_ALLOW_ORIGINS"
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @property
    def access_token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_expires_in)

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return parse_duration(self.jwt_refresh_expires_in)

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    @field_validator("jwt_expires_in", "jwt_refresh_expires_in")
    @classmethod
    def _validate_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("jwt_secret", "jwt_refresh_secret")
    @classmethod
    def _ensure_secret(cls, value: str | None, info: ValidationInfo) -> str:
        if value:
            return value
        secrets_dir = Path(info.data.get("secrets_dir") or "/srv/pantry_auth")
        return _load_or_create_secret(secrets_dir, f".{info.field_name}")

    @model_validator(mode="after")
    def _check_token_policy(self) -> "Settings":
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        if self.refresh_token_ttl_seconds < self.session_ttl_seconds:
            logger.warning(
                "refresh_token_outlived_by_session",
                refresh_token_ttl_seconds=self.refresh_token_ttl_seconds,
                session_ttl_seconds=self.session_ttl_seconds,
                message="refresh tokens will expire before their stored session",
            )
        return self


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
