"""
Unit tests for RBAC permission system
"""

import pytest
from fastapi import HTTPException

from classbook.core.permissions import (
    Permission,
    get_permissions_for_role,
    has_permission,
    require_permission
)


def test_get_permissions_for_role():
    """Test permission retrieval for all roles"""
    # Admin has all permissions
    assert get_permissions_for_role("admin") == set(Permission)

    director_perms = get_permissions_for_role("director")
    assert Permission.SCHEDULE_EDIT in director_perms
    assert Permission.SLOTS_GENERATE in director_perms
    assert Permission.PAYMENT_RECORD in director_perms

    trainer_perms = get_permissions_for_role("trainer")
    assert Permission.ENTITLEMENT_VIEW_OTHERS in trainer_perms
    assert Permission.SCHEDULE_EDIT not in trainer_perms

    athlete_perms = get_permissions_for_role("athlete")
    assert athlete_perms == {Permission.SCHEDULE_VIEW, Permission.RESERVATION_BOOK}


def test_role_lookup_ignores_case():
    assert get_permissions_for_role("DIRECTOR") == get_permissions_for_role("director")


def test_unknown_role_has_no_permissions():
    assert get_permissions_for_role("guest") == set()


def test_has_permission():
    athlete_perms = get_permissions_for_role("athlete")

    assert has_permission(Permission.RESERVATION_BOOK, athlete_perms)
    assert not has_permission(Permission.SUSPENSION_MANAGE, athlete_perms)


def test_require_permission_allows_role():
    checker = require_permission(Permission.SLOTS_GENERATE)
    assert checker(role="director") == "director"


def test_require_permission_rejects_role():
    checker = require_permission(Permission.PAYMENT_RECORD)

    with pytest.raises(HTTPException) as exc_info:
        checker(role="athlete")
    assert exc_info.value.status_code == 403
    assert "payment:record" in exc_info.value.detail
