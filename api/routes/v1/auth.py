"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login                        -- password login; returns access + refresh tokens
  POST /api/v1/auth/refresh                      -- new access token from the registered refresh token
  POST /api/v1/auth/logout                       -- revoke access token, drop refresh registration; always 200
  GET  /api/v1/auth/me                           -- current principal (requires valid, unrevoked token)
  GET  /api/v1/auth/principals/{id}/lockout      -- lockout snapshot (SYSTEM_SECURITY authority)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [C1] AuthService.authenticate() runs bcrypt for unknown logins too -- never
       inline find_by_login() + verify_password() here.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Failures are raised as auth.errors.AuthError subclasses; api/main.py maps
  them to the error envelope in one place.

Handlers are plain `def`: every call blocks on the state store and the DB,
so FastAPI runs them on its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LockoutStatusResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PrincipalInfo,
    RefreshRequest,
    TokenResponse,
)
from auth.dependencies import CurrentPrincipal, extract_bearer, get_current_principal, require_authority
from auth.roles import Authority
from auth.service import AuthService, principal_view
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:   public -- the refresh token is the credential
# - POST /api/v1/auth/logout:    public -- revokes whatever token is presented; no-op without one
# - GET  /api/v1/auth/me:        requires auth (get_current_principal)
# - GET  /api/v1/auth/principals/{id}/lockout: requires SYSTEM_SECURITY
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return access and refresh tokens.

    Wrong password and unknown username both produce 401 bad_credentials.
    The fifth consecutive failure (and every attempt during the lockout
    window, even with the right password) produces 423 account_locked.
    """
    service: AuthService = request.app.state.auth_service
    result = service.authenticate(body.username, body.password)
    return _no_store(JSONResponse(status_code=200, content=LoginResponse.from_result(result).model_dump()))


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange the registered refresh token for a new access token.

    The refresh token is not rotated. It stops working after logout or once a
    newer login replaces it.
    """
    service: AuthService = request.app.state.auth_service
    result = service.refresh(body.refresh_token)
    return _no_store(JSONResponse(status_code=200, content=TokenResponse.from_result(result).model_dump()))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> MessageResponse:
    """Revoke the presented access token and end the refresh session.

    Always succeeds: an absent, expired, or forged token simply has nothing
    to revoke.
    """
    service: AuthService = request.app.state.auth_service
    service.logout(extract_bearer(request), None)
    return MessageResponse(message="Logout successful")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=PrincipalInfo)
def me(current: CurrentPrincipal = Depends(get_current_principal)) -> PrincipalInfo:
    """Return identity information for the currently authenticated principal."""
    return PrincipalInfo.from_view(principal_view(current.principal))


@router.get("/auth/principals/{principal_id}/lockout", response_model=LockoutStatusResponse)
def lockout_status(
    request: Request,
    principal_id: int,
    current: CurrentPrincipal = Depends(require_authority(Authority.SYSTEM_SECURITY.value)),
) -> LockoutStatusResponse:
    """Report failed-attempt count and lock state for a principal. Read-only."""
    service: AuthService = request.app.state.auth_service
    status = service.lockout_status(principal_id)
    return LockoutStatusResponse(
        principal_id=status.principal_id,
        failed_attempts=status.failed_attempts,
        locked=status.locked,
        remaining_lock_ms=status.remaining_lock_ms,
    )
