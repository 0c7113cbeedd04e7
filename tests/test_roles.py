"""Unit tests for the role -> permission table in auth/roles.py."""

import pytest

from auth.roles import ROLE_PERMISSIONS, Authority, Role, authorities_for, permissions_for


def test_every_role_has_permissions() -> None:
    assert set(ROLE_PERMISSIONS) == set(Role)
    for role in Role:
        assert permissions_for(role), role


def test_permissions_are_known_authorities() -> None:
    known = {a.value for a in Authority}
    for perms in ROLE_PERMISSIONS.values():
        assert perms <= known


def test_only_admin_holds_system_security() -> None:
    holders = [role for role, perms in ROLE_PERMISSIONS.items() if Authority.SYSTEM_SECURITY.value in perms]
    assert holders == [Role.ADMIN]


def test_accounts_manager_cannot_read_students() -> None:
    assert Authority.STUDENT_READ.value not in permissions_for(Role.ACCOUNTS_MANAGER)
    assert Authority.PAYMENT_UPDATE.value in permissions_for(Role.ACCOUNTS_MANAGER)


def test_string_role_accepted() -> None:
    assert permissions_for("AUDITOR") == permissions_for(Role.AUDITOR)


def test_unknown_role_rejected() -> None:
    with pytest.raises(ValueError):
        permissions_for("JANITOR")


def test_authorities_claim_layout() -> None:
    claim = authorities_for(Role.OFFICE_STAFF)
    assert claim[0] == "ROLE_OFFICE_STAFF"
    assert claim[1:] == sorted(permissions_for(Role.OFFICE_STAFF))
