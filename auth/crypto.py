"""
auth/crypto.py -- Field-level encryption and searchable hashes for PII.

Security design decisions:
  Encryption: AES-256-GCM via cryptography's AESGCM. Every call draws a fresh
       96-bit IV from os.urandom -- an IV is never reused under the key. The
       stored form is IV || ciphertext || 128-bit tag, so one BLOB column holds
       everything decrypt() needs.

  Decryption fails closed: a short blob or a tag mismatch raises
       IntegrityError. Tampered plaintext is never returned.

  Search hash: HMAC-SHA256 over the plaintext under a search key derived once
       from the encryption key (HKDF). Deterministic and unsalted per record,
       so equal plaintexts give equal digests and a column can be matched with
       WHERE mobile_hash = :h without decrypting every row. Without the key, a
       copy of the table does not reveal low-entropy values like phone numbers.

  Key: exactly 32 bytes from Settings.encryption_key, read once. No rotation.

The seal()/open() pair are the persistence-boundary transforms: callers turn
plaintext into an EncryptedField right before writing and back right after
reading. The cipher knows nothing about which entity a field belongs to.

Layer rule: no imports from api/. core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from core.config import Settings

logger = logging.getLogger("schoolgate.crypto")

IV_LENGTH = 12  # 96-bit nonce, the GCM standard size
TAG_LENGTH = 16  # 128-bit authentication tag
KEY_LENGTH = 32  # AES-256


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CryptoError(Exception):
    """Base class for cipher primitive failures."""


class InvalidInput(CryptoError, ValueError):
    """Null or otherwise unusable input."""


class IntegrityError(CryptoError):
    """Ciphertext failed authentication or is structurally too short."""


class InternalCryptoError(CryptoError):
    """The underlying cipher failed for a reason other than bad input."""


# ---------------------------------------------------------------------------
# Stored form
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EncryptedField:
    """One encrypted value: the IV and the ciphertext with its trailing tag."""

    iv: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.iv + self.ciphertext

    @classmethod
    def from_bytes(cls, blob: bytes) -> "EncryptedField":
        if blob is None:
            raise InvalidInput("Ciphertext cannot be None")
        if len(blob) < IV_LENGTH + TAG_LENGTH:
            raise IntegrityError("Ciphertext is shorter than IV + tag")
        return cls(iv=bytes(blob[:IV_LENGTH]), ciphertext=bytes(blob[IV_LENGTH:]))


# ---------------------------------------------------------------------------
# Cipher
# ---------------------------------------------------------------------------


def _derive_search_key(key: bytes) -> bytes:
    """Derive the HMAC key for search hashes so it is never the AES key itself."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"schoolgate-search-hash-v1",
        info=b"pii-equality-lookup",
    )
    return hkdf.derive(key)


class FieldCipher:
    """Stateless AES-256-GCM field cipher plus deterministic search hash.

    Usage:
        cipher = FieldCipher.from_settings(get_settings())
        blob = cipher.encrypt("9876543210")
        cipher.decrypt(blob)          # "9876543210"
        cipher.search_hash("9876543210") == cipher.search_hash("9876543210")

    Instances are safe to share across threads -- the key material is
    read-only after construction.
    """

    def __init__(self, key: bytes) -> None:
        if key is None or len(key) != KEY_LENGTH:
            raise ValueError("Encryption key must be exactly 32 bytes (256 bits).")
        self._aead = AESGCM(key)
        self._search_key = _derive_search_key(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FieldCipher":
        return cls(settings.encryption_key.encode("utf-8"))

    # ------------------------------------------------------------------
    # Raw bytes API
    # ------------------------------------------------------------------

    def encrypt(self, plaintext: str) -> bytes:
        """Encrypt plaintext and return IV || ciphertext || tag."""
        return self.seal(plaintext).to_bytes()

    def decrypt(self, blob: bytes) -> str:
        """Decrypt IV || ciphertext || tag. Raises IntegrityError on any tampering."""
        return self.open(EncryptedField.from_bytes(blob))

    def search_hash(self, plaintext: str) -> str:
        """Return the 64-char hex HMAC-SHA256 digest used for equality lookup."""
        if plaintext is None:
            raise InvalidInput("Plaintext cannot be None")
        return hmac.new(self._search_key, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Persistence-boundary transforms
    # ------------------------------------------------------------------

    def seal(self, plaintext: str) -> EncryptedField:
        if plaintext is None:
            raise InvalidInput("Plaintext cannot be None")
        iv = os.urandom(IV_LENGTH)
        try:
            ciphertext = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        except Exception as exc:
            raise InternalCryptoError("Encryption failed") from exc
        return EncryptedField(iv=iv, ciphertext=ciphertext)

    def open(self, field: EncryptedField) -> str:
        if field is None:
            raise InvalidInput("Encrypted field cannot be None")
        if len(field.iv) != IV_LENGTH or len(field.ciphertext) < TAG_LENGTH:
            raise IntegrityError("Encrypted field has an invalid layout")
        try:
            plaintext = self._aead.decrypt(field.iv, field.ciphertext, None)
        except InvalidTag as exc:
            logger.warning("Field decryption failed authentication")
            raise IntegrityError("Ciphertext failed authentication") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise IntegrityError("Decrypted bytes are not valid UTF-8") from exc

    # Nullable-column helpers: None passes straight through.

    def seal_optional(self, plaintext: str | None) -> bytes | None:
        return None if plaintext is None else self.encrypt(plaintext)

    def open_optional(self, blob: bytes | None) -> str | None:
        return None if blob is None else self.decrypt(blob)

    def search_hash_optional(self, plaintext: str | None) -> str | None:
        return None if plaintext is None else self.search_hash(plaintext)
