"""
auth/store.py -- SQLAlchemy Core persistence for principals.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_principal is the mapper. The orchestrator only sees the
PrincipalDirectory protocol (find_by_login / find_by_id / save).

PII at rest:
  email and mobile are written as AES-GCM blobs (FieldCipher.encrypt) and read
  back through FieldCipher.decrypt. mobile also gets a mobile_hash column
  (FieldCipher.search_hash) so find_by_mobile() is a single indexed equality
  lookup -- no bulk decryption. The dataclass never holds ciphertext.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/schoolgate_auth.db unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from sqlalchemy import Column, Integer, LargeBinary, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.crypto import FieldCipher
from auth.models import Principal
from auth.roles import Role

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'schoolgate_auth.db'}"


class PrincipalDirectory(Protocol):
    def find_by_login(self, login: str) -> Optional[Principal]: ...

    def find_by_id(self, principal_id: int) -> Optional[Principal]: ...

    def save(self, principal: Principal) -> Principal: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(50), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("display_name", String(100), nullable=False),
    Column("role", String(50), nullable=False),
    Column("email_enc", LargeBinary),  # IV || ciphertext || tag
    Column("mobile_enc", LargeBinary),  # IV || ciphertext || tag
    Column("mobile_hash", String(64), index=True),  # HMAC-SHA256 hex, equality lookup
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login_at", String(32)),
    Column("password_changed_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (per connection)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for Principal entities.

    Usage:
        store = UserStore(cipher)
        pid = store.create_user(Principal(login="alice", display_name="Alice",
                                          role=Role.PRINCIPAL,
                                          hashed_password=hash_password("secret")))
        store.find_by_login("alice")
        store.close()
    """

    def __init__(self, cipher: FieldCipher, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.cipher = cipher
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, principal: Principal) -> int:
        """Insert a new principal and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the login already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    login=principal.login,
                    hashed_password=principal.hashed_password,
                    display_name=principal.display_name,
                    role=Role(principal.role).value,
                    is_active=1 if principal.is_active else 0,
                    password_changed_at=principal.password_changed_at,
                    created_at=_now_iso(),
                    **self._pii_columns(principal),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def save(self, principal: Principal) -> Principal:
        """Persist every mutable field of an existing principal.

        Creates the row instead when principal.id is None. Returns the
        principal with its id set.
        """
        if principal.id is None:
            principal.id = self.create_user(principal)
            return principal
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == principal.id)
                .values(
                    hashed_password=principal.hashed_password,
                    display_name=principal.display_name,
                    role=Role(principal.role).value,
                    is_active=1 if principal.is_active else 0,
                    last_login_at=principal.last_login_at,
                    password_changed_at=principal.password_changed_at,
                    **self._pii_columns(principal),
                )
            )
            conn.commit()
        return principal

    def _pii_columns(self, principal: Principal) -> dict:
        return {
            "email_enc": self.cipher.seal_optional(principal.email),
            "mobile_enc": self.cipher.seal_optional(principal.mobile),
            "mobile_hash": self.cipher.search_hash_optional(principal.mobile),
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_login(self, login: str) -> Optional[Principal]:
        """Look up a principal by exact login (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.login == login)).fetchone()
        return self._row_to_principal(row) if row is not None else None

    def find_by_id(self, principal_id: int) -> Optional[Principal]:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == principal_id)).fetchone()
        return self._row_to_principal(row) if row is not None else None

    def find_by_mobile(self, mobile: str) -> Optional[Principal]:
        """Exact-match lookup over the encrypted mobile column via its search hash."""
        digest = self.cipher.search_hash(mobile)
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.mobile_hash == digest)).fetchone()
        return self._row_to_principal(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Row mapper (Data Mapper pattern)
    # ------------------------------------------------------------------

    def _row_to_principal(self, row) -> Principal:
        return Principal(
            id=row.id,
            login=row.login,
            hashed_password=row.hashed_password,
            display_name=row.display_name,
            role=Role(row.role),
            email=self.cipher.open_optional(row.email_enc),
            mobile=self.cipher.open_optional(row.mobile_enc),
            is_active=bool(row.is_active),
            last_login_at=row.last_login_at,
            password_changed_at=row.password_changed_at,
            created_at=row.created_at,
        )
