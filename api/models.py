"""
API request and response models for SchoolGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import LoginResult, PrincipalView, TokenResult

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    password max_length stays under bcrypt's 72-byte input limit for ASCII.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PrincipalInfo(BaseModel):
    """Public principal view -- no credential material."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    full_name: str
    email: Optional[str] = None
    role: str
    permissions: list[str]

    @classmethod
    def from_view(cls, view: PrincipalView) -> "PrincipalInfo":
        return cls(
            user_id=view.id,
            username=view.login,
            full_name=view.display_name,
            email=view.email,
            role=view.role,
            permissions=list(view.permissions),
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int = Field(
        description="Access token lifetime in milliseconds. An upper bound: the token's exp claim is "
        "whole seconds, so it may lapse up to one second earlier."
    )
    user_info: PrincipalInfo

    @classmethod
    def from_result(cls, result: LoginResult) -> "LoginResponse":
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            expires_in=result.expires_in_ms,
            user_info=PrincipalInfo.from_view(result.principal),
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int = Field(
        description="Access token lifetime in milliseconds. An upper bound: the token's exp claim is "
        "whole seconds, so it may lapse up to one second earlier."
    )

    @classmethod
    def from_result(cls, result: TokenResult) -> "TokenResponse":
        return cls(
            access_token=result.access_token,
            token_type=result.token_type,
            expires_in=result.expires_in_ms,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LockoutStatusResponse(BaseModel):
    """Response for GET /api/v1/auth/principals/{id}/lockout."""

    model_config = ConfigDict(frozen=True)

    principal_id: int
    failed_attempts: int
    locked: bool
    remaining_lock_ms: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
