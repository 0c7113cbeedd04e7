"""
auth/dependencies.py -- FastAPI Depends() helpers for protected routes.

The gate a protected route sits behind:
  1. Authorization: Bearer <token> header is required.
  2. The codec must verify the token (signature, issuer, expiry).
  3. The token must be an access token -- refresh tokens are not accepted here.
  4. The token must not be on the revocation list. A structurally valid token
     can still be revoked; revocation is the only way to kill a token before
     it expires, so this check is never skipped.
  5. The principal must still exist and be active.

Every failure above raises the same Unauthorized -> HTTP 401 with one
message. The cause is logged by the codec/service at DEBUG/WARNING.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import Forbidden, Unauthorized
from auth.models import Principal, TokenClaims
from auth.service import AuthService
from auth.tokens import ACCESS


@dataclass(frozen=True)
class CurrentPrincipal:
    """The authenticated caller: the stored principal plus the token it presented."""

    principal: Principal
    claims: TokenClaims
    token: str

    def has_authority(self, authority: str) -> bool:
        return authority in self.claims.authorities


def extract_bearer(request: Request) -> str | None:
    """Return the raw token from an Authorization: Bearer header, or None."""
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        token = header[7:].strip()
        return token or None
    return None


def get_current_principal(request: Request) -> CurrentPrincipal:
    """Require a valid, unrevoked access token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(current: CurrentPrincipal = Depends(get_current_principal)): ...
    """
    service: AuthService = request.app.state.auth_service
    token = extract_bearer(request)
    if token is None:
        raise Unauthorized(reason="missing")

    claims = service.codec.claims(token)
    if claims.token_type != ACCESS:
        raise Unauthorized(reason="wrong token type")
    if service.is_revoked(token):
        raise Unauthorized(reason="revoked")

    principal = service.directory.find_by_login(claims.subject)
    if principal is None or not principal.is_active:
        raise Unauthorized(reason="principal gone")
    return CurrentPrincipal(principal=principal, claims=claims, token=token)


def require_authority(authority: str) -> Callable[..., CurrentPrincipal]:
    """Dependency factory: 401 if unauthenticated, 403 if the token lacks authority.

        @router.get("/users", dependencies=[Depends(require_authority("USER_MANAGE"))])
    """

    def _dependency(current: CurrentPrincipal = Depends(get_current_principal)) -> CurrentPrincipal:
        if not current.has_authority(authority):
            raise Forbidden()
        return current

    return _dependency
