"""
auth/roles.py -- Closed role set and the static role -> permission table.

Roles are coarse job functions; each maps to a fixed set of Authority names.
The mapping is resolved once at token issuance and flattened into the token's
authorities claim as ROLE_<NAME> followed by the sorted permission strings.

This is a lookup table, not a policy engine: there is no inheritance, no
wildcard, and no runtime editing.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class Authority(str, Enum):
    # Students
    STUDENT_CREATE = "STUDENT_CREATE"
    STUDENT_READ = "STUDENT_READ"
    STUDENT_UPDATE = "STUDENT_UPDATE"
    STUDENT_DELETE = "STUDENT_DELETE"
    STUDENT_MANAGE = "STUDENT_MANAGE"
    # Classes
    CLASS_CREATE = "CLASS_CREATE"
    CLASS_READ = "CLASS_READ"
    CLASS_UPDATE = "CLASS_UPDATE"
    CLASS_DELETE = "CLASS_DELETE"
    CLASS_MANAGE = "CLASS_MANAGE"
    # Fees
    FEE_CREATE = "FEE_CREATE"
    FEE_READ = "FEE_READ"
    FEE_UPDATE = "FEE_UPDATE"
    FEE_DELETE = "FEE_DELETE"
    FEE_MANAGE = "FEE_MANAGE"
    # Payments
    PAYMENT_CREATE = "PAYMENT_CREATE"
    PAYMENT_READ = "PAYMENT_READ"
    PAYMENT_UPDATE = "PAYMENT_UPDATE"
    PAYMENT_DELETE = "PAYMENT_DELETE"
    PAYMENT_MANAGE = "PAYMENT_MANAGE"
    # Users
    USER_CREATE = "USER_CREATE"
    USER_READ = "USER_READ"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    USER_MANAGE = "USER_MANAGE"
    # Reports
    REPORT_STUDENT = "REPORT_STUDENT"
    REPORT_FINANCIAL = "REPORT_FINANCIAL"
    REPORT_AUDIT = "REPORT_AUDIT"
    REPORT_MANAGE = "REPORT_MANAGE"
    # Audit
    AUDIT_READ = "AUDIT_READ"
    AUDIT_MANAGE = "AUDIT_MANAGE"
    # System
    SYSTEM_CONFIG = "SYSTEM_CONFIG"
    SYSTEM_SECURITY = "SYSTEM_SECURITY"


class Role(str, Enum):
    ADMIN = "ADMIN"
    PRINCIPAL = "PRINCIPAL"
    OFFICE_STAFF = "OFFICE_STAFF"
    ACCOUNTS_MANAGER = "ACCOUNTS_MANAGER"
    AUDITOR = "AUDITOR"

    @property
    def authority(self) -> str:
        """Role marker placed first in a token's authorities list."""
        return f"ROLE_{self.value}"


_A = Authority

ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.ADMIN: frozenset(
        a.value
        for a in (
            _A.STUDENT_MANAGE,
            _A.CLASS_MANAGE,
            _A.FEE_MANAGE,
            _A.PAYMENT_MANAGE,
            _A.USER_MANAGE,
            _A.REPORT_MANAGE,
            _A.AUDIT_MANAGE,
            _A.SYSTEM_CONFIG,
            _A.SYSTEM_SECURITY,
        )
    ),
    Role.PRINCIPAL: frozenset(
        a.value
        for a in (
            _A.STUDENT_READ,
            _A.CLASS_READ,
            _A.CLASS_UPDATE,
            _A.FEE_READ,
            _A.PAYMENT_READ,
            _A.REPORT_STUDENT,
            _A.REPORT_FINANCIAL,
            _A.REPORT_AUDIT,
            _A.AUDIT_READ,
        )
    ),
    Role.OFFICE_STAFF: frozenset(
        a.value
        for a in (
            _A.STUDENT_CREATE,
            _A.STUDENT_READ,
            _A.STUDENT_UPDATE,
            _A.CLASS_READ,
            _A.CLASS_UPDATE,
            _A.FEE_READ,
            _A.PAYMENT_CREATE,
            _A.PAYMENT_READ,
            _A.REPORT_STUDENT,
        )
    ),
    Role.ACCOUNTS_MANAGER: frozenset(
        a.value
        for a in (
            _A.FEE_CREATE,
            _A.FEE_READ,
            _A.FEE_UPDATE,
            _A.PAYMENT_CREATE,
            _A.PAYMENT_READ,
            _A.PAYMENT_UPDATE,
            _A.REPORT_FINANCIAL,
        )
    ),
    Role.AUDITOR: frozenset(
        a.value
        for a in (
            _A.STUDENT_READ,
            _A.CLASS_READ,
            _A.FEE_READ,
            _A.PAYMENT_READ,
            _A.REPORT_STUDENT,
            _A.REPORT_FINANCIAL,
            _A.REPORT_AUDIT,
            _A.AUDIT_READ,
        )
    ),
}


def permissions_for(role: Role | str) -> frozenset[str]:
    """Return the permission strings granted to a role.

    Accepts the enum or its string value (as stored in the DB). Raises
    ValueError for a name outside the closed set.
    """
    return ROLE_PERMISSIONS[Role(role)]


def authorities_for(role: Role | str) -> list[str]:
    """Flatten a role into the authorities claim: role marker, then sorted permissions."""
    role = Role(role)
    return [role.authority, *sorted(ROLE_PERMISSIONS[role])]
