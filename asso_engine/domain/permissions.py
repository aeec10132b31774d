# SPDX-License-Identifier: Apache-2.0

"""
Permission model for role-based access control.

This module contains pure functions resolving a member's effective permission
set from role assignments, member type and per-member overrides. Nothing here
touches shared state, so every function is safe to call per-render.
"""

from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Union

from ..models.entities import Association, Member, PermissionOverrides
from ..models.enums import Permission, SystemRole
from .results import AuthorizationResult


PermissionLike = Union[Permission, str]


SYSTEM_ROLE_PERMISSIONS: Dict[SystemRole, FrozenSet[Permission]] = {
    SystemRole.ADMIN_ASSOCIATION: frozenset(Permission),
    SystemRole.PRESIDENT: frozenset({
        Permission.MODIFY_SETTINGS,
        Permission.MANAGE_MEMBERS,
        Permission.APPROVE_MEMBERS,
        Permission.VIEW_MEMBERS,
        Permission.VIEW_MEMBER_DETAILS,
        Permission.VALIDATE_EXPENSES,
        Permission.VIEW_TREASURY,
        Permission.VIEW_REPORTS,
        Permission.CREATE_EVENTS,
        Permission.MANAGE_DOCUMENTS,
    }),
    SystemRole.TRESORIER: frozenset({
        Permission.VALIDATE_EXPENSES,
        Permission.VIEW_TREASURY,
        Permission.MANAGE_BUDGETS,
        Permission.CREATE_INCOME,
        Permission.EXPORT_FINANCIAL_DATA,
        Permission.VIEW_MEMBERS,
    }),
    SystemRole.SECRETAIRE: frozenset({
        Permission.MANAGE_DOCUMENTS,
        Permission.UPLOAD_DOCUMENTS,
        Permission.CREATE_EVENTS,
        Permission.VIEW_MEMBERS,
        Permission.VIEW_MEMBER_DETAILS,
    }),
    SystemRole.RESPONSABLE_SECTION: frozenset({
        Permission.VIEW_MEMBERS,
        Permission.MANAGE_MEMBERS,
        Permission.VIEW_TREASURY,
        Permission.VALIDATE_EXPENSES,
        Permission.CREATE_EVENTS,
    }),
    SystemRole.TRESORIER_SECTION: frozenset({
        Permission.VIEW_TREASURY,
        Permission.VALIDATE_EXPENSES,
        Permission.CREATE_INCOME,
        Permission.VIEW_MEMBERS,
    }),
    SystemRole.SECRETAIRE_SECTION: frozenset({
        Permission.VIEW_MEMBERS,
        Permission.UPLOAD_DOCUMENTS,
        Permission.CREATE_EVENTS,
    }),
}


PERMISSION_DESCRIPTIONS: Dict[Permission, str] = {
    Permission.VIEW_TREASURY: "View the balance and transaction history",
    Permission.MANAGE_BUDGETS: "Create and edit the association budgets",
    Permission.VALIDATE_EXPENSES: "Approve or reject expense requests",
    Permission.CREATE_INCOME: "Record association income",
    Permission.EXPORT_FINANCIAL_DATA: "Download financial reports",
    Permission.VIEW_MEMBERS: "Access the member list",
    Permission.MANAGE_MEMBERS: "Add, edit or remove members",
    Permission.APPROVE_MEMBERS: "Approve membership applications",
    Permission.VIEW_MEMBER_DETAILS: "Access members' personal information",
    Permission.EXPORT_MEMBERS: "Export the member list",
    Permission.MANAGE_ROLES: "Create and edit roles and permissions",
    Permission.MODIFY_SETTINGS: "Change association settings",
    Permission.VIEW_REPORTS: "Access activity reports",
    Permission.MANAGE_SECTIONS: "Create and administer geographic sections",
    Permission.UPLOAD_DOCUMENTS: "Add documents to the association",
    Permission.MANAGE_DOCUMENTS: "Edit or delete documents",
    Permission.VALIDATE_DOCUMENTS: "Approve official documents",
    Permission.CREATE_EVENTS: "Organise association events",
    Permission.MANAGE_EVENTS: "Edit or cancel events",
    Permission.VIEW_ATTENDANCE: "View event attendance lists",
}


def to_permission(value: PermissionLike) -> Optional[Permission]:
    """
    Coerce a permission identifier into the closed Permission enum.

    Returns:
        The Permission, or None when the identifier is not in the catalog
    """
    if isinstance(value, Permission):
        return value
    try:
        return Permission(value)
    except ValueError:
        return None


def to_system_role(role_id: str) -> Optional[SystemRole]:
    """Return the SystemRole for a role id, or None for custom roles."""
    try:
        return SystemRole(role_id)
    except ValueError:
        return None


def role_permissions(role_id: str, association: Association) -> FrozenSet[Permission]:
    """
    Permissions carried by one role id.

    The association catalog wins; built-in tables are the fallback for system
    roles the association never customised. Unknown ids carry nothing.

    Args:
        role_id: Role identifier assigned to a member
        association: Association owning the role catalog

    Returns:
        Frozen set of permissions
    """
    role = association.get_role(role_id)
    if role is not None:
        return frozenset(role.permissions)

    system_role = to_system_role(role_id)
    if system_role is not None:
        return SYSTEM_ROLE_PERMISSIONS[system_role]

    return frozenset()


def aggregate_permissions_from_roles(role_ids: Iterable[str], association: Association) -> FrozenSet[Permission]:
    """
    Aggregate unique permissions from a list of role ids.

    Args:
        role_ids: Role identifiers
        association: Association owning the role catalog

    Returns:
        Union of the roles' permissions
    """
    permissions = set()
    for role_id in role_ids:
        permissions.update(role_permissions(role_id, association))
    return frozenset(permissions)


def resolve_permissions(member: Member, association: Association) -> FrozenSet[Permission]:
    """
    Resolve a member's effective permission set.

    Union of role permissions and member type permissions, plus explicit
    grants, minus explicit revokes. A revoke always beats a grant. Members of
    another association, or whose membership is not active, resolve to the
    empty set.

    Args:
        member: Member whose permissions are resolved
        association: Association the member belongs to

    Returns:
        Frozen set of effective permissions
    """
    if member.association_id != association.id or not member.is_active():
        return frozenset()

    permissions = set(aggregate_permissions_from_roles(member.roles, association))

    member_type = association.get_member_type(member.member_type)
    if member_type is not None:
        permissions.update(member_type.permissions)

    overrides = member.permission_overrides
    permissions.update(overrides.grant)
    permissions.difference_update(overrides.revoke)

    return frozenset(permissions)


def has_permission(member: Member, association: Association, permission: PermissionLike) -> bool:
    """Check if a member holds a permission."""
    target = to_permission(permission)
    if target is None:
        return False
    return target in resolve_permissions(member, association)


def has_any_permission(member: Member, association: Association, permissions: Iterable[PermissionLike]) -> bool:
    """Check if a member holds at least one of the permissions."""
    effective = resolve_permissions(member, association)
    return any(to_permission(p) in effective for p in permissions)


def has_all_permissions(member: Member, association: Association, permissions: Iterable[PermissionLike]) -> bool:
    """Check if a member holds every one of the permissions."""
    effective = resolve_permissions(member, association)
    return all(to_permission(p) in effective for p in permissions)


def check_permission(member: Member, association: Association, required_permission: PermissionLike) -> AuthorizationResult:
    """
    Check if member has a specific permission.

    Args:
        member: Acting member
        association: Association the member acts in
        required_permission: Permission to check

    Returns:
        AuthorizationResult indicating if permission is granted
    """
    if has_permission(member, association, required_permission):
        return AuthorizationResult(allowed=True)

    name = required_permission.value if isinstance(required_permission, Permission) else str(required_permission)
    return AuthorizationResult(
        allowed=False,
        reason=f"Missing required permission: {name}",
        missing_permissions=[name]
    )


def check_permissions(member: Member, association: Association, required_permissions: List[PermissionLike],
                      require_all: bool = True) -> AuthorizationResult:
    """
    Check if member has required permissions.

    Args:
        member: Acting member
        association: Association the member acts in
        required_permissions: Permissions to check
        require_all: If True, member must have all permissions. If False, any permission is sufficient.

    Returns:
        AuthorizationResult indicating if permissions are granted
    """
    effective = {p.value for p in resolve_permissions(member, association)}
    required = {p.value if isinstance(p, Permission) else str(p) for p in required_permissions}

    if require_all:
        missing = required - effective
        if not missing:
            return AuthorizationResult(allowed=True)

        return AuthorizationResult(
            allowed=False,
            reason=f"Missing required permissions: {', '.join(sorted(missing))}",
            missing_permissions=sorted(missing)
        )

    if effective & required:
        return AuthorizationResult(allowed=True)

    return AuthorizationResult(
        allowed=False,
        reason=f"Missing any of required permissions: {', '.join(sorted(required))}",
        missing_permissions=sorted(required)
    )


def permissions_by_category(member: Member, association: Association) -> Dict[str, List[str]]:
    """Group a member's effective permissions by category, sorted."""
    grouped: Dict[str, List[str]] = {
        "finances": [],
        "membres": [],
        "administration": [],
        "documents": [],
        "evenements": [],
    }
    for permission in resolve_permissions(member, association):
        grouped.setdefault(permission.category, []).append(permission.value)
    for values in grouped.values():
        values.sort()
    return grouped


def grant_permission(member: Member, permission: Permission, now: datetime) -> Member:
    """
    Return a copy of the member with an explicit grant.

    The permission is dropped from the revoke list, otherwise the revoke would
    keep winning.
    """
    overrides = member.permission_overrides
    updated = PermissionOverrides(
        grant=set(overrides.grant) | {permission},
        revoke=set(overrides.revoke) - {permission}
    )
    return member.evolve(now, permission_overrides=updated)


def revoke_permission(member: Member, permission: Permission, now: datetime) -> Member:
    """Return a copy of the member with an explicit revoke."""
    overrides = member.permission_overrides
    updated = PermissionOverrides(
        grant=set(overrides.grant) - {permission},
        revoke=set(overrides.revoke) | {permission}
    )
    return member.evolve(now, permission_overrides=updated)


def get_permission_description(permission: PermissionLike) -> str:
    """
    Get human-readable description for a permission.

    Args:
        permission: Permission (e.g., "finances.validate_expenses")

    Returns:
        Human-readable description
    """
    target = to_permission(permission)
    if target is None:
        return f"Permission: {permission}"
    return PERMISSION_DESCRIPTIONS[target]
