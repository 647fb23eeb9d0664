"""
RBAC (Role-Based Access Control) permission system
"""

from enum import Enum
from typing import Set
from fastapi import Depends, HTTPException, status

from classbook.core.dependencies import get_user_role


class Permission(str, Enum):
    """Permission definitions"""
    # Schedule permissions
    SCHEDULE_VIEW = "schedule:view"
    SCHEDULE_EDIT = "schedule:edit"
    SLOTS_GENERATE = "slots:generate"

    # Booking permissions
    RESERVATION_BOOK = "reservation:book"
    RESERVATION_MANAGE_OTHERS = "reservation:manage_others"

    # Entitlement permissions
    ENTITLEMENT_VIEW_OTHERS = "entitlement:view_others"
    SUSPENSION_MANAGE = "suspension:manage"

    # Payment permissions
    PAYMENT_RECORD = "payment:record"


# Role permission mapping
ROLE_PERMISSIONS = {
    "admin": set(Permission),
    "director": {
        Permission.SCHEDULE_VIEW,
        Permission.SCHEDULE_EDIT,
        Permission.SLOTS_GENERATE,
        Permission.RESERVATION_BOOK,
        Permission.RESERVATION_MANAGE_OTHERS,
        Permission.ENTITLEMENT_VIEW_OTHERS,
        Permission.SUSPENSION_MANAGE,
        Permission.PAYMENT_RECORD,
    },
    "trainer": {
        # Trainers see the schedule and their athletes' entitlements
        Permission.SCHEDULE_VIEW,
        Permission.RESERVATION_BOOK,
        Permission.ENTITLEMENT_VIEW_OTHERS,
    },
    "athlete": {
        Permission.SCHEDULE_VIEW,
        Permission.RESERVATION_BOOK,
    },
}


def get_permissions_for_role(role: str) -> Set[Permission]:
    """Get permissions for a given role"""
    return ROLE_PERMISSIONS.get(role.lower(), set())


def has_permission(required_permission: Permission, user_permissions: Set[Permission]) -> bool:
    """Check if user has required permission"""
    return required_permission in user_permissions


def require_permission(required_permission: Permission):
    """Dependency factory to check permissions"""
    def check_permission(role: str = Depends(get_user_role)) -> str:
        if not has_permission(required_permission, get_permissions_for_role(role)):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission required: {required_permission.value}",
            )
        return role
    return check_permission
