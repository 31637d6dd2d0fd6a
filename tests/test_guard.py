import pytest

from pantry_auth.service.errors import (
    AuthErrorKind,
    InsufficientPermissionsError,
    LocationNotAccessibleError,
    TokenInvalidError,
    TokenMissingError,
)
from pantry_auth.service.guard import ANONYMOUS, AuthorizationGuard, RequestContext
from pantry_auth.service.tokens import TokenClaims, TokenCodec
from pantry_auth.storage.models import Role


def _claims(role: Role, location_id=None) -> TokenClaims:
    return TokenClaims(
        user_id=f"user-{role.value}",
        username=role.value.replace("_", ""),
        email=f"{role.value}@example.com",
        role=role,
        location_id=location_id,
    )


@pytest.fixture
def codec(settings):
    return TokenCodec(settings)


@pytest.fixture
def guard(codec):
    return AuthorizationGuard(codec)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc.def.ghi", "abc.def.ghi"),
        ("  Bearer   abc.def.ghi  ", "abc.def.ghi"),
        ("abc.def.ghi", "abc.def.ghi"),
    ],
)
def test_extract_token(header, expected):
    assert AuthorizationGuard.extract_token(header) == expected


@pytest.mark.parametrize("header", [None, "", "   ", "Bearer", "Bearer   "])
def test_extract_token_missing(header):
    with pytest.raises(TokenMissingError) as exc:
        AuthorizationGuard.extract_token(header)
    assert exc.value.kind is AuthErrorKind.TOKEN_MISSING


def test_authenticate_returns_claims(guard, codec):
    claims = _claims(Role.STAFF, "loc-1")
    context = guard.authenticate(f"Bearer {codec.sign_access_token(claims)}")

    assert context.is_authenticated
    assert context.claims == claims
    assert context.user_id == claims.user_id
    assert context.role is Role.STAFF
    assert context.location_id == "loc-1"


def test_authenticate_rejects_refresh_token(guard, codec):
    with pytest.raises(TokenInvalidError):
        guard.authenticate(f"Bearer {codec.sign_refresh_token()}")


def test_authenticate_optional_falls_back_to_anonymous(guard, codec):
    assert guard.authenticate_optional(None) is ANONYMOUS
    assert guard.authenticate_optional("Bearer garbage") is ANONYMOUS
    assert guard.authenticate_optional("Bearer h.p.é") is ANONYMOUS
    assert not ANONYMOUS.is_authenticated
    assert ANONYMOUS.user_id is None

    token = codec.sign_access_token(_claims(Role.ADMIN))
    assert guard.authenticate_optional(token).role is Role.ADMIN


def test_require_roles():
    manager = RequestContext(_claims(Role.RESTAURANT_MANAGER, "loc-1"))

    assert AuthorizationGuard.require_roles(manager, [Role.ADMIN, Role.RESTAURANT_MANAGER]) is manager
    assert AuthorizationGuard.require_roles(manager, ["restaurant_manager"]) is manager
    with pytest.raises(InsufficientPermissionsError) as exc:
        AuthorizationGuard.require_roles(manager, [Role.ADMIN])
    assert exc.value.status_code == 403


def test_require_roles_needs_identity():
    with pytest.raises(TokenMissingError):
        AuthorizationGuard.require_roles(ANONYMOUS, [Role.STAFF])


@pytest.mark.parametrize("role", [Role.ADMIN, Role.AREA_MANAGER])
def test_chain_wide_roles_reach_any_location(role):
    context = RequestContext(_claims(role))

    assert AuthorizationGuard.require_location(context, "loc-1") is context
    assert AuthorizationGuard.require_location(context, "loc-2") is context


@pytest.mark.parametrize(
    "role",
    [Role.CENTRAL_KITCHEN_MANAGER, Role.RESTAURANT_MANAGER, Role.HEAD_CHEF, Role.STAFF],
)
def test_location_bound_roles_only_reach_their_location(role):
    context = RequestContext(_claims(role, "loc-1"))

    assert AuthorizationGuard.require_location(context, "loc-1") is context
    with pytest.raises(LocationNotAccessibleError) as exc:
        AuthorizationGuard.require_location(context, "loc-2")
    assert exc.value.status_code == 403


def test_unassigned_staff_reach_no_location():
    context = RequestContext(_claims(Role.STAFF))

    with pytest.raises(LocationNotAccessibleError):
        AuthorizationGuard.require_location(context, "loc-1")
    with pytest.raises(LocationNotAccessibleError):
        AuthorizationGuard.require_location(context, None)
