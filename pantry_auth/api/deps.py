"""FastAPI dependencies that run the authorization guard for a request.

Handlers receive the resulting ``RequestContext`` as an explicit argument.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, Path

from pantry_auth.service.guard import RequestContext
from pantry_auth.service.runtime import Runtime, get_runtime
from pantry_auth.storage.models import Role


def runtime_dependency() -> Runtime:
    return get_runtime()


async def get_principal(
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(runtime_dependency),
) -> RequestContext:
    return runtime.guard.authenticate(authorization)


async def get_optional_principal(
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(runtime_dependency),
) -> RequestContext:
    return runtime.guard.authenticate_optional(authorization)


def require_roles(*roles: Role) -> Callable:
    """Dependency factory admitting only callers whose role is in ``roles``."""
    allowed = tuple(Role(role) for role in roles)

    async def dependency(
        principal: RequestContext = Depends(get_principal),
        runtime: Runtime = Depends(runtime_dependency),
    ) -> RequestContext:
        return runtime.guard.require_roles(principal, allowed)

    return dependency


async def require_location_access(
    location_id: str = Path(..., max_length=64),
    principal: RequestContext = Depends(get_principal),
    runtime: Runtime = Depends(runtime_dependency),
) -> RequestContext:
    """Admit callers allowed to act on the ``{location_id}`` path parameter."""
    return runtime.guard.require_location(principal, location_id)
