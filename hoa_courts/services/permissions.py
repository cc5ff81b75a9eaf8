"""
Role-based permission rules.

Every check here is a pure function over a profile dict (as produced by
``user_service._profile_to_dict``) and never raises: missing, inactive or
malformed input is always denied. Callers turn a ``False`` into ``Forbidden``.
"""

import enum
from collections.abc import Mapping
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from hoa_courts.database.models import UserRole


class Permission(str, enum.Enum):
    """Every permission token the application checks."""

    # System tier
    MANAGE_HOAS = "manage_hoas"
    VIEW_ALL_HOAS = "view_all_hoas"
    MANAGE_SYSTEM_USERS = "manage_system_users"
    VIEW_SYSTEM_REPORTS = "view_system_reports"
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"

    # HOA admin tier
    MANAGE_HOA_SETTINGS = "manage_hoa_settings"
    MANAGE_HOA_USERS = "manage_hoa_users"
    ASSIGN_USER_ROLES = "assign_user_roles"
    VIEW_HOA_REPORTS = "view_hoa_reports"
    MANAGE_HOA_COURTS = "manage_hoa_courts"
    MANAGE_HOA_HOURS = "manage_hoa_hours"
    RESET_USER_HOURS = "reset_user_hours"
    MANAGE_ALL_BOOKINGS = "manage_all_bookings"
    VIEW_ALL_BOOKINGS = "view_all_bookings"
    APPROVE_BOOKINGS = "approve_bookings"
    VIEW_HOA_MEMBERS = "view_hoa_members"
    INVITE_MEMBERS = "invite_members"
    DEACTIVATE_MEMBERS = "deactivate_members"
    VIEW_MEMBER_DETAILS = "view_member_details"

    # Self-service tier
    CREATE_BOOKINGS = "create_bookings"
    MANAGE_OWN_BOOKINGS = "manage_own_bookings"
    MANAGE_OWN_PROFILE = "manage_own_profile"
    VIEW_OWN_PROFILE = "view_own_profile"


class PermissionTier(str, enum.Enum):
    SYSTEM = "system"
    HOA_ADMIN = "hoa_admin"
    SELF_SERVICE = "self_service"


TIER_ROLES: Dict[PermissionTier, FrozenSet[UserRole]] = {
    PermissionTier.SYSTEM: frozenset({UserRole.SUPER_ADMIN}),
    PermissionTier.HOA_ADMIN: frozenset({UserRole.HOA_ADMIN, UserRole.SUPER_ADMIN}),
    PermissionTier.SELF_SERVICE: frozenset(
        {UserRole.MEMBER, UserRole.HOA_ADMIN, UserRole.SUPER_ADMIN}
    ),
}

PERMISSION_TIERS: Dict[Permission, PermissionTier] = {
    Permission.MANAGE_HOAS: PermissionTier.SYSTEM,
    Permission.VIEW_ALL_HOAS: PermissionTier.SYSTEM,
    Permission.MANAGE_SYSTEM_USERS: PermissionTier.SYSTEM,
    Permission.VIEW_SYSTEM_REPORTS: PermissionTier.SYSTEM,
    Permission.MANAGE_SYSTEM_SETTINGS: PermissionTier.SYSTEM,
    Permission.MANAGE_HOA_SETTINGS: PermissionTier.HOA_ADMIN,
    Permission.MANAGE_HOA_USERS: PermissionTier.HOA_ADMIN,
    Permission.ASSIGN_USER_ROLES: PermissionTier.HOA_ADMIN,
    Permission.VIEW_HOA_REPORTS: PermissionTier.HOA_ADMIN,
    Permission.MANAGE_HOA_COURTS: PermissionTier.HOA_ADMIN,
    Permission.MANAGE_HOA_HOURS: PermissionTier.HOA_ADMIN,
    Permission.RESET_USER_HOURS: PermissionTier.HOA_ADMIN,
    Permission.MANAGE_ALL_BOOKINGS: PermissionTier.HOA_ADMIN,
    Permission.VIEW_ALL_BOOKINGS: PermissionTier.HOA_ADMIN,
    Permission.APPROVE_BOOKINGS: PermissionTier.HOA_ADMIN,
    Permission.VIEW_HOA_MEMBERS: PermissionTier.HOA_ADMIN,
    Permission.INVITE_MEMBERS: PermissionTier.HOA_ADMIN,
    Permission.DEACTIVATE_MEMBERS: PermissionTier.HOA_ADMIN,
    Permission.VIEW_MEMBER_DETAILS: PermissionTier.HOA_ADMIN,
    Permission.CREATE_BOOKINGS: PermissionTier.SELF_SERVICE,
    Permission.MANAGE_OWN_BOOKINGS: PermissionTier.SELF_SERVICE,
    Permission.MANAGE_OWN_PROFILE: PermissionTier.SELF_SERVICE,
    Permission.VIEW_OWN_PROFILE: PermissionTier.SELF_SERVICE,
}

_untiered = set(Permission) - set(PERMISSION_TIERS)
if _untiered:
    raise RuntimeError(
        f"Permissions without a tier: {sorted(p.value for p in _untiered)}"
    )

ROLE_LEVELS: Dict[UserRole, int] = {
    UserRole.MEMBER: 1,
    UserRole.HOA_ADMIN: 2,
    UserRole.SUPER_ADMIN: 3,
}

ASSIGNABLE_ROLES: Dict[UserRole, List[UserRole]] = {
    UserRole.SUPER_ADMIN: [UserRole.SUPER_ADMIN, UserRole.HOA_ADMIN, UserRole.MEMBER],
    UserRole.HOA_ADMIN: [UserRole.HOA_ADMIN, UserRole.MEMBER],
    UserRole.MEMBER: [],
}

ROLE_DISPLAY_NAMES: Dict[UserRole, str] = {
    UserRole.MEMBER: "Member",
    UserRole.HOA_ADMIN: "HOA Administrator",
    UserRole.SUPER_ADMIN: "Super Administrator",
}

ROLE_DESCRIPTIONS: Dict[UserRole, str] = {
    UserRole.MEMBER: "Can book courts and manage their own bookings and profile",
    UserRole.HOA_ADMIN: "Can manage members, courts, hours and bookings within their HOA",
    UserRole.SUPER_ADMIN: "Can manage every HOA and all users across the system",
}


def _coerce(enum_cls, value):
    """Enum member for value, or None if it is not one."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return None


def _active_role(profile: Any) -> Optional[UserRole]:
    """Role of an active, well-formed profile; None means deny."""
    if not isinstance(profile, Mapping):
        return None
    if profile.get("is_active") is not True:
        return None
    return _coerce(UserRole, profile.get("role"))


def has_permission(profile: Any, permission: Any) -> bool:
    """
    Check whether a profile holds a permission.

    Args:
        profile: Profile dict with at least ``role`` and ``is_active``
        permission: Permission member or its string value

    Returns:
        False for a missing or inactive profile, an unknown role, or an
        unknown permission; otherwise whether the role is in the permission's tier
    """
    role = _active_role(profile)
    if role is None:
        return False
    perm = _coerce(Permission, permission)
    if perm is None:
        return False
    tier = PERMISSION_TIERS.get(perm)
    if tier is None:
        return False
    return role in TIER_ROLES[tier]


def has_any_permission(profile: Any, permissions: Iterable[Any]) -> bool:
    return any(has_permission(profile, p) for p in permissions)


def has_all_permissions(profile: Any, permissions: Iterable[Any]) -> bool:
    perms = list(permissions)
    if not perms:
        return False
    return all(has_permission(profile, p) for p in perms)


def can_manage_user(actor: Any, target: Any) -> bool:
    """
    Whether ``actor`` may manage ``target``.

    Super admins manage anyone; HOA admins manage non-super-admins in their
    own HOA; everyone else manages only themselves.
    """
    if not isinstance(target, Mapping):
        return False

    if is_super_admin(actor):
        return True

    if is_hoa_admin(actor):
        target_role = _coerce(UserRole, target.get("role"))
        if target_role is None or target_role == UserRole.SUPER_ADMIN:
            return False
        actor_hoa = actor.get("hoa_id")
        return actor_hoa is not None and actor_hoa == target.get("hoa_id")

    if not is_member(actor):
        return False
    actor_user = actor.get("user_id")
    return actor_user is not None and actor_user == target.get("user_id")


def can_access_hoa(actor: Any, hoa_id: Any) -> bool:
    role = _active_role(actor)
    if role is None:
        return False
    if role == UserRole.SUPER_ADMIN:
        return True
    actor_hoa = actor.get("hoa_id")
    return actor_hoa is not None and hoa_id is not None and actor_hoa == hoa_id


def get_accessible_hoa_ids(actor: Any) -> Optional[List[int]]:
    """
    HOA ids the actor can see.

    Returns:
        None for super admins (all HOAs), the actor's own HOA otherwise,
        or an empty list when access is denied
    """
    role = _active_role(actor)
    if role is None:
        return []
    if role == UserRole.SUPER_ADMIN:
        return None
    hoa_id = actor.get("hoa_id")
    return [hoa_id] if hoa_id is not None else []


def get_assignable_roles(actor: Any) -> List[UserRole]:
    role = _active_role(actor)
    if role is None:
        return []
    return list(ASSIGNABLE_ROLES.get(role, []))


def can_assign_role(actor: Any, role: Any) -> bool:
    target_role = _coerce(UserRole, role)
    if target_role is None:
        return False
    return target_role in get_assignable_roles(actor)


def get_role_level(role: Any) -> int:
    """Privilege rank for display and sorting; 0 for unknown roles."""
    parsed = _coerce(UserRole, role)
    if parsed is None:
        return 0
    return ROLE_LEVELS[parsed]


def get_role_permissions(role: Any) -> List[Permission]:
    parsed = _coerce(UserRole, role)
    if parsed is None:
        return []
    return [p for p, tier in PERMISSION_TIERS.items() if parsed in TIER_ROLES[tier]]


def get_role_display_name(role: Any) -> str:
    parsed = _coerce(UserRole, role)
    if parsed is None:
        return "Unknown"
    return ROLE_DISPLAY_NAMES[parsed]


def get_role_description(role: Any) -> str:
    parsed = _coerce(UserRole, role)
    if parsed is None:
        return ""
    return ROLE_DESCRIPTIONS[parsed]


def is_super_admin(profile: Any) -> bool:
    return _active_role(profile) == UserRole.SUPER_ADMIN


def is_hoa_admin(profile: Any) -> bool:
    return _active_role(profile) == UserRole.HOA_ADMIN


def is_admin(profile: Any) -> bool:
    return _active_role(profile) in (UserRole.HOA_ADMIN, UserRole.SUPER_ADMIN)


def is_member(profile: Any) -> bool:
    return _active_role(profile) == UserRole.MEMBER
