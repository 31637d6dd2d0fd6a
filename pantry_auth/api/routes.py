from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from pantry_auth.api.deps import get_principal, require_roles, runtime_dependency
from pantry_auth.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    LogoutRequest,
    PasswordChangeRequest,
    ProfileResponse,
    RegisterRequest,
    TokenRefreshRequest,
    TokenResponse,
    UserResponse,
)
from pantry_auth.logging import get_logger
from pantry_auth.service.guard import RequestContext
from pantry_auth.service.runtime import Runtime
from pantry_auth.service.sessions import TokenPair
from pantry_auth.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _token_response(tokens: TokenPair) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        expires_in=tokens.expires_in,
        token_type=tokens.token_type,
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, runtime: Runtime = Depends(runtime_dependency)):
    """Authenticate with username (or email) and password.

    Raises:
        401: If the credentials are invalid or the account is inactive
    """
    user, tokens = await runtime.auth.login(body.username, body.password)
    return Envelope(
        status="ok",
        data=AuthResponse(user=UserResponse.from_user(user), tokens=_token_response(tokens)),
    )


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(
    body: TokenRefreshRequest, runtime: Runtime = Depends(runtime_dependency)
):
    """Exchange a refresh token for a new token pair; the old token becomes unusable."""
    tokens = runtime.sessions.refresh(body.refresh_token)
    return Envelope(status="ok", data={"tokens": _token_response(tokens)})


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(body: LogoutRequest, runtime: Runtime = Depends(runtime_dependency)):
    if body.refresh_token:
        runtime.sessions.revoke(body.refresh_token)
    return Envelope(status="ok", data={"message": "logged out"})


@router.post("/auth/logout-all", response_model=Envelope, tags=["auth"])
async def logout_all(
    principal: RequestContext = Depends(get_principal),
    runtime: Runtime = Depends(runtime_dependency),
):
    revoked = runtime.sessions.revoke_all(principal.user_id)
    return Envelope(status="ok", data={"message": "logged out everywhere", "revoked": revoked})


@router.get("/auth/profile", response_model=Envelope, tags=["auth"])
async def get_profile(
    principal: RequestContext = Depends(get_principal),
    runtime: Runtime = Depends(runtime_dependency),
):
    user = runtime.auth.get_profile(principal.user_id)
    active = len(runtime.store.list_user_sessions(user.id))
    return Envelope(
        status="ok",
        data=ProfileResponse(user=UserResponse.from_user(user), active_sessions=active),
    )


@router.put("/auth/change-password", response_model=Envelope, tags=["auth"])
async def change_password(
    body: PasswordChangeRequest,
    principal: RequestContext = Depends(get_principal),
    runtime: Runtime = Depends(runtime_dependency),
):
    """Change the caller's password and sign them out of every device."""
    revoked = await runtime.auth.change_password(
        principal.user_id, body.current_password, body.new_password
    )
    return Envelope(
        status="ok",
        data={"message": "password changed, please log in again", "revoked": revoked},
    )


@router.post(
    "/auth/register",
    response_model=Envelope,
    status_code=status.HTTP_201_CREATED,
    tags=["auth"],
)
async def register(
    body: RegisterRequest,
    response: Response,
    principal: RequestContext = Depends(require_roles(Role.ADMIN)),
    runtime: Runtime = Depends(runtime_dependency),
):
    user = await runtime.auth.register_user(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        location_id=body.location_id,
    )
    logger.info("user_created_by_admin", admin_id=principal.user_id, user_id=user.id)
    response.headers["Location"] = f"/v1/users/{user.id}"
    return Envelope(status="ok", data={"user": UserResponse.from_user(user)})
