"""
auth/service.py -- Authentication orchestrator: credentials, lockout, token lifecycle.

Per-principal state is derived from the security state store, never stored
as a single field:

  Unlocked-NoAttempts      no counter, no lock flag
  Unlocked-WithAttempts(n) counter = n (< max), TTL = attempt_counter_ttl_ms
  Locked(until)            lock flag present, TTL = lockout_duration_ms

Keys:
  user:loginattempts:<id>  failed-attempt counter (atomic INCR)
  user:locked:<id>         lock flag; value = lock-until epoch ms
  user:refreshtoken:<id>   the single live refresh token for the principal
  blacklist:token:<token>  revoked access token, TTL = its remaining lifetime

Ordering in authenticate() matters:
  1. unknown login        -> InvalidCredentials (bcrypt still runs) [C1]
  2. lock flag present    -> AccountLocked, BEFORE the password is checked
  3. inactive             -> AccountInactive
  4. wrong password       -> counter++; at threshold lock and AccountLocked
  5. success              -> clear counter, issue tokens, register refresh

Every store call is a single atomic operation, so an aborted request leaves
no partial writes. Two concurrent failures that both reach the threshold
both set the same lock flag -- harmless.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import time
from datetime import datetime, timezone

from auth.errors import AccountInactive, AccountLocked, InvalidCredentials, Unauthorized
from auth.models import LockoutStatus, LoginResult, Principal, PrincipalView, TokenResult
from auth.roles import Role, permissions_for
from auth.state import SecurityStateStore
from auth.store import PrincipalDirectory
from auth.tokens import ACCESS, REFRESH, TokenCodec, burn_password_check, hash_password, verify_password
from core.config import Settings

logger = logging.getLogger("schoolgate.auth")

LOGIN_ATTEMPTS_KEY_PREFIX = "user:loginattempts:"
LOCKED_KEY_PREFIX = "user:locked:"
REFRESH_TOKEN_KEY_PREFIX = "user:refreshtoken:"
BLACKLIST_TOKEN_KEY_PREFIX = "blacklist:token:"

TOKEN_TYPE = "Bearer"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuthService:
    """Credential verification, distributed lockout, and token issue/refresh/revoke."""

    def __init__(
        self,
        directory: PrincipalDirectory,
        state: SecurityStateStore,
        codec: TokenCodec,
        settings: Settings,
    ) -> None:
        self.directory = directory
        self.state = state
        self.codec = codec
        self.access_ttl_ms = settings.access_token_ttl_ms
        self.refresh_ttl_ms = settings.refresh_token_ttl_ms
        self.max_attempts = settings.max_failed_attempts
        self.lockout_ms = settings.lockout_duration_ms
        self.attempt_ttl_ms = settings.attempt_counter_ttl_ms

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def authenticate(self, login: str, password: str) -> LoginResult:
        logger.debug("Authentication attempt for login: %s", login)

        principal = self.directory.find_by_login(login)
        if principal is None or principal.id is None:
            burn_password_check(password)
            logger.warning("Authentication failed - unknown login")
            raise InvalidCredentials()

        self._check_not_locked(principal)

        if not principal.is_active:
            logger.warning("Authentication failed - inactive principal id=%s", principal.id)
            raise AccountInactive()

        if not verify_password(password, principal.hashed_password):
            self._record_failure(principal.id)
            raise InvalidCredentials()

        self.state.delete(LOGIN_ATTEMPTS_KEY_PREFIX + str(principal.id))

        access_token = self.codec.issue(principal, self.access_ttl_ms, ACCESS)
        refresh_token = self.codec.issue(principal, self.refresh_ttl_ms, REFRESH)
        self.state.set(REFRESH_TOKEN_KEY_PREFIX + str(principal.id), refresh_token, self.refresh_ttl_ms)

        principal.last_login_at = _now_iso()
        self.directory.save(principal)

        logger.info("Principal authenticated id=%s", principal.id)
        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=TOKEN_TYPE,
            expires_in_ms=self.access_ttl_ms,
            principal=principal_view(principal),
        )

    def _check_not_locked(self, principal: Principal) -> None:
        lock_key = LOCKED_KEY_PREFIX + str(principal.id)
        if not self.state.exists(lock_key):
            return
        logger.warning("Authentication failed - principal id=%s is locked", principal.id)
        raise AccountLocked(retry_after_ms=self._remaining_lock_ms(lock_key))

    def _remaining_lock_ms(self, lock_key: str) -> int:
        until = self.state.get(lock_key)
        try:
            return max(0, int(until) - _now_ms()) if until is not None else 0
        except ValueError:
            return self.state.ttl_ms(lock_key)

    def _record_failure(self, principal_id: int) -> None:
        """Count a failed password and raise the matching error.

        Raises AccountLocked when this failure reaches the threshold,
        InvalidCredentials otherwise.
        """
        attempts = self.state.increment(LOGIN_ATTEMPTS_KEY_PREFIX + str(principal_id), self.attempt_ttl_ms)
        logger.info("Failed login attempt %d/%d for principal id=%s", attempts, self.max_attempts, principal_id)
        if attempts < self.max_attempts:
            raise InvalidCredentials()

        until_ms = _now_ms() + self.lockout_ms
        self.state.set(LOCKED_KEY_PREFIX + str(principal_id), str(until_ms), self.lockout_ms)
        logger.warning("Principal id=%s locked after %d failed attempts", principal_id, attempts)
        raise AccountLocked(
            "Account locked due to too many failed login attempts. "
            f"Please try again after {self.lockout_ms // 60000} minutes.",
            retry_after_ms=self.lockout_ms,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenResult:
        """Mint a new access token from the principal's registered refresh token.

        The refresh token itself is not rotated; it stays valid until it
        expires, the principal logs out, or a newer login supersedes it.
        """
        payload = self.codec.verify(refresh_token)
        if payload is None:
            logger.warning("Refresh rejected - token failed verification")
            raise Unauthorized(reason="invalid")
        if payload.get("typ") != REFRESH:
            logger.warning("Refresh rejected - not a refresh token")
            raise Unauthorized(reason="invalid")

        principal = self.directory.find_by_login(payload["sub"])
        if principal is None or principal.id is None or not principal.is_active:
            logger.warning("Refresh rejected - principal not found or inactive")
            raise Unauthorized(reason="invalid")

        principal_id = payload.get("user_id", principal.id)
        stored = self.state.get(REFRESH_TOKEN_KEY_PREFIX + str(principal_id))
        if stored is None:
            logger.warning("Refresh rejected - no registered token for principal id=%s", principal_id)
            raise Unauthorized(reason="expired")
        if not hmac.compare_digest(stored.encode("utf-8"), refresh_token.encode("utf-8")):
            logger.warning("Refresh rejected - token mismatch for principal id=%s", principal_id)
            raise Unauthorized(reason="invalid")

        access_token = self.codec.issue(principal, self.access_ttl_ms, ACCESS)
        logger.info("Access token refreshed for principal id=%s", principal_id)
        return TokenResult(access_token=access_token, token_type=TOKEN_TYPE, expires_in_ms=self.access_ttl_ms)

    # ------------------------------------------------------------------
    # Logout / revocation
    # ------------------------------------------------------------------

    def logout(self, access_token: str | None, principal_id: int | None) -> None:
        """Revoke the access token (if still valid) and drop the refresh registration.

        An expired but correctly signed token still identifies whose refresh
        registration to drop. Never raises an auth error; repeated calls
        converge on the same state. StoreUnavailable still propagates.
        """
        claims = self.codec.claims_allow_expired(access_token)
        if claims is not None:
            # set() ignores non-positive TTLs, so an expired token produces no entry.
            self.state.set(
                BLACKLIST_TOKEN_KEY_PREFIX + access_token, "1", TokenCodec.remaining_ms(claims)
            )
            if principal_id is None:
                principal_id = claims.user_id

        if principal_id is not None:
            self.state.delete(REFRESH_TOKEN_KEY_PREFIX + str(principal_id))
        logger.info("Logout completed for principal id=%s", principal_id)

    def is_revoked(self, access_token: str) -> bool:
        return self.state.exists(BLACKLIST_TOKEN_KEY_PREFIX + access_token)

    # ------------------------------------------------------------------
    # Credential change
    # ------------------------------------------------------------------

    def change_password(self, login: str, current_password: str, new_password: str) -> None:
        """Replace the principal's password after re-verifying the current one.

        Goes through the same lockout rules as authenticate(). On success the
        refresh registration is dropped, so other sessions cannot be extended.
        """
        principal = self.directory.find_by_login(login)
        if principal is None or principal.id is None:
            burn_password_check(current_password)
            raise InvalidCredentials()
        self._check_not_locked(principal)
        if not principal.is_active:
            raise AccountInactive()
        if not verify_password(current_password, principal.hashed_password):
            self._record_failure(principal.id)
            raise InvalidCredentials()
        self.set_password(principal, new_password)

    def set_password(self, principal: Principal, new_password: str) -> None:
        """Store a new hash without checking the old one (admin path)."""
        principal.hashed_password = hash_password(new_password)
        principal.password_changed_at = _now_iso()
        self.directory.save(principal)
        self.state.delete(LOGIN_ATTEMPTS_KEY_PREFIX + str(principal.id))
        self.state.delete(REFRESH_TOKEN_KEY_PREFIX + str(principal.id))
        logger.info("Password changed for principal id=%s", principal.id)

    # ------------------------------------------------------------------
    # Admin helpers
    # ------------------------------------------------------------------

    def lockout_status(self, principal_id: int) -> LockoutStatus:
        attempts = self.state.get(LOGIN_ATTEMPTS_KEY_PREFIX + str(principal_id))
        lock_key = LOCKED_KEY_PREFIX + str(principal_id)
        locked = self.state.exists(lock_key)
        return LockoutStatus(
            principal_id=principal_id,
            failed_attempts=int(attempts) if attempts else 0,
            locked=locked,
            remaining_lock_ms=self._remaining_lock_ms(lock_key) if locked else 0,
        )

    def unlock(self, principal_id: int) -> None:
        self.state.delete(LOCKED_KEY_PREFIX + str(principal_id))
        self.state.delete(LOGIN_ATTEMPTS_KEY_PREFIX + str(principal_id))
        logger.warning("Lockout cleared by administrator for principal id=%s", principal_id)


def principal_view(principal: Principal) -> PrincipalView:
    """Public projection of a principal: identity, role, permissions. No secrets."""
    return PrincipalView(
        id=principal.id,
        login=principal.login,
        display_name=principal.display_name,
        email=principal.email,
        role=Role(principal.role).value,
        permissions=sorted(permissions_for(principal.role)),
    )
