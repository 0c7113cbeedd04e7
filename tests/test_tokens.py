"""Unit tests for password hashing and the JWT codec in auth/tokens.py.

Covers:
- bcrypt hash/verify, including malformed stored hashes
- issue/verify/claims: subject, user_id, authorities order, typ, issuer
- Expired tokens are rejected and look identical to forged ones
- Expired but correctly signed tokens can still be read for logout
- Degraded codec: missing, non-base64 or too-short secrets verify nothing
- Wrong issuer, wrong key and wrong algorithm are rejected
- Two tokens issued in the same second are still distinct
"""

import base64
import time

import pytest
from jose import jwt

from auth.errors import Unauthorized
from auth.models import Principal
from auth.roles import Role
from auth.tokens import ACCESS, REFRESH, TokenCodec, burn_password_check, hash_password, verify_password


def _principal(**overrides) -> Principal:
    values = dict(login="alice", display_name="Alice", role=Role.PRINCIPAL, hashed_password="x", id=7)
    values.update(overrides)
    return Principal(**values)


class TestPasswordHashing:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False

    def test_burn_password_check_returns_nothing(self) -> None:
        assert burn_password_check("whatever") is None


class TestIssueAndVerify:
    def test_access_token_claims(self, codec: TokenCodec) -> None:
        token = codec.issue(_principal(), ttl_ms=60_000)
        claims = codec.claims(token)
        assert claims.subject == "alice"
        assert claims.user_id == 7
        assert claims.token_type == ACCESS
        assert claims.authorities[0] == "ROLE_PRINCIPAL"
        assert claims.authorities[1:] == sorted(claims.authorities[1:])
        assert "AUDIT_READ" in claims.authorities
        assert claims.expires_at - claims.issued_at == 60

    def test_refresh_token_type(self, codec: TokenCodec) -> None:
        token = codec.issue(_principal(), ttl_ms=60_000, token_type=REFRESH)
        assert codec.verify(token)["typ"] == REFRESH

    def test_issuer_claim(self, codec: TokenCodec, settings) -> None:
        payload = codec.verify(codec.issue(_principal(), ttl_ms=60_000))
        assert payload["iss"] == settings.jwt_issuer

    def test_user_id_omitted_without_id(self, codec: TokenCodec) -> None:
        payload = codec.verify(codec.issue(_principal(id=None), ttl_ms=60_000))
        assert "user_id" not in payload
        assert codec.claims(codec.issue(_principal(id=None), ttl_ms=60_000)).user_id is None

    def test_same_second_tokens_are_distinct(self, codec: TokenCodec) -> None:
        first = codec.issue(_principal(), ttl_ms=60_000)
        second = codec.issue(_principal(), ttl_ms=60_000)
        assert first != second

    def test_remaining_ms(self, codec: TokenCodec) -> None:
        claims = codec.claims(codec.issue(_principal(), ttl_ms=120_000))
        assert 0 < TokenCodec.remaining_ms(claims) <= 120_000

    def test_exp_never_exceeds_requested_lifetime(self, codec: TokenCodec) -> None:
        before = time.time()
        claims = codec.claims(codec.issue(_principal(), ttl_ms=120_000))
        after = time.time()
        assert claims.expires_at <= after + 120
        assert claims.expires_at > before + 120 - 1


class TestExpiredClaims:
    def test_expired_token_still_names_its_principal(self, codec: TokenCodec) -> None:
        token = codec.issue(_principal(id=42), ttl_ms=1)
        time.sleep(0.005)
        assert codec.verify(token) is None
        claims = codec.claims_allow_expired(token)
        assert claims is not None
        assert claims.user_id == 42
        assert TokenCodec.remaining_ms(claims) <= 0

    def test_signature_is_still_checked(self, codec: TokenCodec, settings) -> None:
        other = TokenCodec(base64.b64encode(b"k" * 64).decode("ascii"), settings.jwt_issuer)
        assert codec.claims_allow_expired(other.issue(_principal(), ttl_ms=1)) is None

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_malformed_tokens(self, codec: TokenCodec, token) -> None:
        assert codec.claims_allow_expired(token) is None

    def test_degraded_codec_returns_nothing(self, codec: TokenCodec, settings) -> None:
        token = codec.issue(_principal(), ttl_ms=60_000)
        assert TokenCodec("", settings.jwt_issuer).claims_allow_expired(token) is None


class TestRejection:
    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_malformed_tokens(self, codec: TokenCodec, token) -> None:
        assert codec.verify(token) is None

    def test_expired_token(self, codec: TokenCodec) -> None:
        token = codec.issue(_principal(), ttl_ms=1)
        time.sleep(0.005)
        assert codec.verify(token) is None

    def test_expired_and_forged_raise_the_same_error(self, codec: TokenCodec) -> None:
        expired = codec.issue(_principal(), ttl_ms=1)
        time.sleep(0.005)
        forged = codec.issue(_principal(), ttl_ms=60_000)[:-4] + "AAAA"
        with pytest.raises(Unauthorized) as exc_expired:
            codec.claims(expired)
        with pytest.raises(Unauthorized) as exc_forged:
            codec.claims(forged)
        assert exc_expired.value.message == exc_forged.value.message
        assert exc_expired.value.status_code == exc_forged.value.status_code

    def test_wrong_key(self, codec: TokenCodec, settings) -> None:
        other_secret = base64.b64encode(bytes(range(1, 65))).decode("ascii")
        other = TokenCodec(other_secret, settings.jwt_issuer)
        assert codec.verify(other.issue(_principal(), ttl_ms=60_000)) is None

    def test_wrong_issuer(self, codec: TokenCodec, settings) -> None:
        other = TokenCodec(settings.jwt_secret, "some-other-system")
        assert codec.verify(other.issue(_principal(), ttl_ms=60_000)) is None

    def test_wrong_algorithm(self, codec: TokenCodec, settings) -> None:
        now = int(time.time())
        payload = {"sub": "alice", "iat": now, "exp": now + 60, "iss": settings.jwt_issuer, "typ": ACCESS}
        token = jwt.encode(payload, base64.b64decode(settings.jwt_secret), algorithm="HS256")
        assert codec.verify(token) is None

    def test_claims_raise_unauthorized(self, codec: TokenCodec) -> None:
        with pytest.raises(Unauthorized):
            codec.claims("garbage")


class TestDegradedCodec:
    @pytest.mark.parametrize(
        "secret",
        [
            "",
            "not base64 at all!",
            base64.b64encode(b"k" * 32).decode("ascii"),
        ],
    )
    def test_bad_secret_degrades(self, secret: str) -> None:
        codec = TokenCodec(secret, "school-management-system")
        assert codec.degraded
        token = codec.issue(_principal(), ttl_ms=60_000)
        assert codec.verify(token) is None
        with pytest.raises(Unauthorized):
            codec.claims(token)

    def test_valid_secret_is_not_degraded(self, codec: TokenCodec) -> None:
        assert not codec.degraded
