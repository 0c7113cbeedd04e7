"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
orchestrator do the work; these only own the shape.

PII fields (email, mobile) are plaintext here. Encryption happens at the
persistence boundary in auth/store.py, never on the dataclass itself.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.roles import Role


@dataclass
class Principal:
    """An identity that can authenticate.

    login is unique and doubles as the JWT subject. hashed_password is a
    bcrypt hash; plaintext secrets never reach this object.
    """

    login: str
    display_name: str
    role: Role
    hashed_password: str
    id: int | None = None
    email: str | None = None
    mobile: str | None = None
    is_active: bool = True
    last_login_at: str | None = None  # ISO 8601, UTC
    password_changed_at: str | None = None  # ISO 8601, UTC
    created_at: str | None = None


@dataclass(frozen=True)
class PrincipalView:
    """Public projection of a Principal returned after login. No credential data."""

    id: int
    login: str
    display_name: str
    role: str
    permissions: list[str]
    email: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a token."""

    subject: str
    user_id: int | None
    authorities: list[str]
    issued_at: int  # epoch seconds
    expires_at: int  # epoch seconds
    token_type: str
    jti: str = ""


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in_ms: int
    principal: PrincipalView
    token_type: str = "Bearer"


@dataclass(frozen=True)
class TokenResult:
    access_token: str
    expires_in_ms: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class LockoutStatus:
    """Snapshot of a principal's lockout state (admin tooling)."""

    principal_id: int
    failed_attempts: int
    locked: bool
    remaining_lock_ms: int = 0
