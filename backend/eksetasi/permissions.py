"""Role based access control.

Every permission decision goes through this module. Roles map to a
fixed capability table; `authorize` raises instead of returning False so
callers cannot silently degrade a refused request. Ownership (teachers
may only change content they created) is checked separately with
`authorize_ownership` because it needs the content's creator id.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

from .errors import AuthenticationError, AuthorizationError


class Role(str, Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"


class Permission(str, Enum):
    MANAGE_USERS = "can_manage_users"
    MANAGE_QUESTIONS = "can_manage_questions"
    MANAGE_EXAMS = "can_manage_exams"
    VIEW_ANALYTICS = "can_view_analytics"
    DELETE_CONTENT = "can_delete_content"
    MODERATE_CONTENT = "can_moderate_content"


@dataclass(frozen=True)
class RolePermissions:
    can_manage_users: bool = False
    can_manage_questions: bool = False
    can_manage_exams: bool = False
    can_view_analytics: bool = False
    can_delete_content: bool = False
    can_moderate_content: bool = False

    def allows(self, permission: Permission) -> bool:
        return getattr(self, permission.value)

    def to_dict(self) -> dict:
        return asdict(self)


ROLE_PERMISSIONS = {
    Role.ADMIN: RolePermissions(
        can_manage_users=True,
        can_manage_questions=True,
        can_manage_exams=True,
        can_view_analytics=True,
        can_delete_content=True,
        can_moderate_content=True,
    ),
    # teachers may still delete their own content through the ownership rule
    Role.TEACHER: RolePermissions(
        can_manage_questions=True,
        can_manage_exams=True,
        can_view_analytics=True,
    ),
    Role.STUDENT: RolePermissions(),
}

ROLE_DISPLAY_NAMES = {
    Role.ADMIN: "Administrator",
    Role.TEACHER: "Teacher",
    Role.STUDENT: "Student",
}


def permissions_for(role: Role) -> RolePermissions:
    """Return the fixed permission set for `role`."""
    return ROLE_PERMISSIONS[Role(role)]


def has_permission(role: Role, permission: Permission) -> bool:
    return permissions_for(role).allows(Permission(permission))


def authorize(permission: Permission, role: Optional[Role]) -> None:
    """Raise unless `role` holds `permission`.

    A missing role means there is no session at all, which is an
    authentication problem rather than an authorization one.
    """
    if role is None:
        raise AuthenticationError("Authentication required")
    permission = Permission(permission)
    if not has_permission(role, permission):
        raise AuthorizationError(f"Permission denied. Required permission: {permission.value}")


def can_access_admin(role: Role) -> bool:
    return Role(role) in (Role.ADMIN, Role.TEACHER)


def authorize_admin_access(role: Optional[Role]) -> None:
    if role is None:
        raise AuthenticationError("Authentication required")
    if not can_access_admin(role):
        raise AuthorizationError("Admin access required. You must be an admin or teacher.")


def can_manage_content(role: Role, creator_id: Optional[int], user_id: int) -> bool:
    """Admins manage any content; teachers only what they created."""
    role = Role(role)
    if role == Role.ADMIN:
        return True
    return role == Role.TEACHER and creator_id is not None and creator_id == user_id


def authorize_ownership(role: Role, creator_id: Optional[int], user_id: int, what: str = "content") -> None:
    if not can_manage_content(role, creator_id, user_id):
        raise AuthorizationError(f"You can only manage {what} you created")


def role_display_name(role: Role) -> str:
    return ROLE_DISPLAY_NAMES.get(Role(role), "Unknown")
