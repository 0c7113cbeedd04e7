"""
auth/tokens.py -- JWT codec and password hashing.

Security design decisions:
  JWT: python-jose with HS512. Tokens are signed, not encrypted -- the holder
       can read every claim. They carry the login (sub), numeric user_id, the
       flattened authorities list, iat/exp, the issuer, a random jti and a
       typ of "access" or "refresh".

       verify() returns None on ANY failure: malformed structure, bad
       signature, expiry, wrong issuer, unsupported algorithm, wrong shape.
       Callers cannot branch on the cause; it is logged at DEBUG only.

       jose checks exp with whole-second granularity. verify() re-checks exp
       against time.time() so a token is rejected as soon as its second has
       passed rather than up to a second later.

  Degraded mode: JWT_SECRET must be base64 and decode to at least 64 bytes
       (the HS512 output size). Anything else logs a warning and the codec
       starts anyway, signing with a throwaway random key and failing every
       verify(). The process stays up; nobody can authenticate.

  Passwords: bcrypt used directly. _DUMMY_HASH enables timing equalization
       in the orchestrator so response time does not reveal whether a login
       exists [C1].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import time
import uuid
from typing import TYPE_CHECKING, Any

import bcrypt
from jose import JWTError, jwt

from auth.errors import Unauthorized
from auth.models import TokenClaims
from auth.roles import authorities_for
from core.config import Settings

if TYPE_CHECKING:
    from auth.models import Principal

logger = logging.getLogger("schoolgate.auth")

_ALGORITHM = "HS512"
_MIN_SECRET_BYTES = 64

ACCESS = "access"
REFRESH = "refresh"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes. The API layer caps password length
    well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first unknown-login attempt is not measurably faster than later ones.
_DUMMY_HASH: str = hash_password("schoolgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt verification on a hash that never matches."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT codec
# ---------------------------------------------------------------------------


def _decode_secret(secret: str) -> bytes | None:
    if not secret:
        return None
    try:
        key = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(key) < _MIN_SECRET_BYTES:
        return None
    return key


class TokenCodec:
    """Issue and verify signed bearer tokens.

    Usage:
        codec = TokenCodec.from_settings(get_settings())
        token = codec.issue(principal, ttl_ms=900_000)
        codec.verify(token)        # dict of claims, or None
        codec.claims(token)        # TokenClaims, or raises Unauthorized
    """

    def __init__(self, secret: str, issuer: str) -> None:
        key = _decode_secret(secret)
        self.degraded = key is None
        if self.degraded:
            logger.warning(
                "JWT signing secret is missing or malformed (need base64, >= %d bytes). "
                "Token verification is disabled.",
                _MIN_SECRET_BYTES,
            )
            key = secrets.token_bytes(_MIN_SECRET_BYTES)
        else:
            logger.info("JWT signing key initialized")
        self._key = key
        self.issuer = issuer

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(settings.jwt_secret, settings.jwt_issuer)

    def issue(self, principal: Principal, ttl_ms: int, token_type: str = ACCESS) -> str:
        """Sign a token for principal that expires ttl_ms from now.

        exp is whole seconds, truncated, so a token may stop verifying up to
        one second before ttl_ms has fully elapsed.
        """
        now = time.time()
        payload: dict[str, Any] = {
            "sub": principal.login,
            "authorities": authorities_for(principal.role),
            "iat": int(now),
            "exp": int(now + ttl_ms / 1000),
            "iss": self.issuer,
            "jti": uuid.uuid4().hex,
            "typ": token_type,
        }
        if principal.id is not None:
            payload["user_id"] = int(principal.id)
        return jwt.encode(payload, self._key, algorithm=_ALGORITHM)

    def _decode(self, token: str | None, *, verify_exp: bool) -> dict | None:
        if self.degraded:
            logger.debug("Token rejected: codec is degraded")
            return None
        if not token or not isinstance(token, str):
            return None
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[_ALGORITHM],
                issuer=self.issuer,
                options={"verify_exp": verify_exp},
            )
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            return None
        except (ValueError, TypeError, AttributeError) as exc:
            logger.debug("Token rejected (malformed): %s", exc)
            return None
        if not isinstance(payload.get("sub"), str) or not isinstance(payload.get("exp"), int):
            logger.debug("Token rejected: missing sub/exp")
            return None
        return payload

    def verify(self, token: str | None) -> dict | None:
        """Return the claims dict if the token is valid, else None."""
        payload = self._decode(token, verify_exp=True)
        if payload is not None and payload["exp"] <= time.time():
            logger.debug("Token rejected: expired")
            return None
        return payload

    def claims(self, token: str | None) -> TokenClaims:
        """Return typed claims for a valid token. Raises Unauthorized otherwise."""
        payload = self.verify(token)
        if payload is None:
            raise Unauthorized(reason="invalid")
        return _to_claims(payload)

    def claims_allow_expired(self, token: str | None) -> TokenClaims | None:
        """Claims of a token signed by this codec, whether or not it has expired.

        Signature, algorithm and issuer are still checked. Only for finding
        which principal a stale token belonged to (logout); never for access
        decisions.
        """
        payload = self._decode(token, verify_exp=False)
        return _to_claims(payload) if payload is not None else None

    @staticmethod
    def remaining_ms(claims: TokenClaims) -> int:
        """Milliseconds until claims expire; may be zero or negative."""
        return int(claims.expires_at * 1000 - time.time() * 1000)


def _to_claims(payload: dict) -> TokenClaims:
    user_id = payload.get("user_id")
    return TokenClaims(
        subject=payload["sub"],
        user_id=int(user_id) if user_id is not None else None,
        authorities=list(payload.get("authorities") or []),
        issued_at=int(payload.get("iat", 0)),
        expires_at=payload["exp"],
        token_type=payload.get("typ", ACCESS),
        jti=payload.get("jti", ""),
    )
