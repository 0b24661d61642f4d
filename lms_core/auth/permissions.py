"""Role-based access control for the LMS.

Hierarchical permission system:
- ADMIN (level 2): Manual enrollment grants, reconciliation
- INSTRUCTOR (level 1): Publishes courses
- STUDENT (level 0): Enrolls in courses and tracks progress
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels."""

    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


# Role hierarchy mapping (role -> permission level)
ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.STUDENT: 0,
    UserRole.INSTRUCTOR: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role (0 for unknown roles)."""
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.INSTRUCTOR)
        True
        >>> has_permission("student", "admin")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)
