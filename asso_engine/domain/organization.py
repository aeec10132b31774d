# SPDX-License-Identifier: Apache-2.0

"""
Organizational model: associations, sections, member types and roles.

Pure functions validating the association structure, applying membership
changes, and resolving the approval authority topology the cotisation,
approval and repayment engines rely on.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..models.entities import Association, DomainEvent, Member, Section
from ..models.enums import AuthorityTier, EventType, Permission, SystemRole, VisibilityLevel
from .permissions import has_permission, to_system_role
from .results import OperationResult, ValidationResult


CENTRAL_APPROVER_ROLES = (SystemRole.TRESORIER, SystemRole.PRESIDENT)
SECTION_APPROVER_ROLES = (SystemRole.TRESORIER_SECTION, SystemRole.RESPONSABLE_SECTION)
SECTION_SCOPED_ROLES = frozenset({
    SystemRole.RESPONSABLE_SECTION,
    SystemRole.SECRETAIRE_SECTION,
    SystemRole.TRESORIER_SECTION,
})
BUREAU_ROLES = frozenset({
    SystemRole.PRESIDENT,
    SystemRole.SECRETAIRE,
    SystemRole.TRESORIER,
}) | SECTION_SCOPED_ROLES


@dataclass
class Authority:
    """Approval authority a member holds over a given scope."""
    tier: AuthorityTier
    role: str


@dataclass
class RoleDeletion:
    """Write set of a role deletion."""
    association: Association
    members: List[Member] = field(default_factory=list)


@dataclass
class SectionDeletion:
    """Write set of a section deletion: the members moved to the central pool."""
    section_id: str
    members: List[Member] = field(default_factory=list)


@dataclass
class AdminTransfer:
    """Write set of an admin transfer."""
    previous_admin: Member
    new_admin: Member


def _event(event_type: EventType, association_id: str, aggregate_id: str, now: datetime, **payload) -> DomainEvent:
    return DomainEvent(
        type=event_type,
        association_id=association_id,
        aggregate_id=aggregate_id,
        occurred_at=now,
        payload=payload
    )


def is_admin(member: Member) -> bool:
    """Check if a member holds the association admin role."""
    return member.has_role(SystemRole.ADMIN_ASSOCIATION.value)


def active_admins(roster: Iterable[Member], association_id: str) -> List[Member]:
    """Active admin_association holders of an association."""
    return [
        m for m in roster
        if m.association_id == association_id and m.is_active() and is_admin(m)
    ]


# ============================================================
# AUTHORITY TOPOLOGY
# ============================================================

def central_authority(member: Member, association: Association) -> Optional[Authority]:
    """
    Central approval authority of a member.

    Args:
        member: Candidate validator
        association: Association the member belongs to

    Returns:
        Authority with the role it is exercised under, or None
    """
    if member.association_id != association.id or not member.is_active():
        return None
    if not has_permission(member, association, Permission.VALIDATE_EXPENSES):
        return None

    for role in CENTRAL_APPROVER_ROLES:
        if member.has_role(role.value):
            return Authority(tier=AuthorityTier.CENTRAL, role=role.value)
    return None


def section_authority(member: Member, association: Association, section_id: Optional[str],
                      section: Optional[Section] = None) -> Optional[Authority]:
    """
    Section approval authority of a member over one section.

    A member qualifies by holding a section approver role while attached to
    that section, or by sitting on the section bureau as responsable or
    tresorier.

    Args:
        member: Candidate validator
        association: Association the member belongs to
        section_id: Section the request or member is scoped to
        section: Section record, used for its bureau when given

    Returns:
        Authority with the role it is exercised under, or None
    """
    if section_id is None or not association.is_multi_section:
        return None
    if member.association_id != association.id or not member.is_active():
        return None
    if not has_permission(member, association, Permission.VALIDATE_EXPENSES):
        return None

    if member.section_id == section_id:
        for role in SECTION_APPROVER_ROLES:
            if member.has_role(role.value):
                return Authority(tier=AuthorityTier.SECTION, role=role.value)

    if section is not None and section.id == section_id:
        if section.bureau.tresorier_id == member.id:
            return Authority(tier=AuthorityTier.SECTION, role=SystemRole.TRESORIER_SECTION.value)
        if section.bureau.responsable_id == member.id:
            return Authority(tier=AuthorityTier.SECTION, role=SystemRole.RESPONSABLE_SECTION.value)

    return None


def authority_tier(member: Member, association: Association, section_id: Optional[str],
                   section: Optional[Section] = None, central_only: bool = False) -> Optional[Authority]:
    """
    Strongest authority a member holds over a scope.

    Central authority always applies, including over section-scoped items.
    Section authority only applies to multi-section associations, for the
    member's own section, and never when central_only is set.
    """
    central = central_authority(member, association)
    if central is not None:
        return central
    if central_only:
        return None
    return section_authority(member, association, section_id, section)


# ============================================================
# VALIDATION
# ============================================================

def validate_association(association: Association, sections: Iterable[Section] = ()) -> ValidationResult:
    """
    Validate association structure beyond field constraints.

    Args:
        association: Association to validate
        sections: Sections declared for the association

    Returns:
        ValidationResult with errors and warnings
    """
    errors = []
    warnings = []
    sections = list(sections)

    if not association.member_types:
        errors.append("At least one member type is required")

    if sections and not association.is_multi_section:
        errors.append("Single-section associations cannot declare sections")

    seen_names = set()
    for section in sections:
        if section.association_id != association.id:
            errors.append(f"Section {section.id} belongs to another association")
        name = section.name.lower()
        if name in seen_names:
            errors.append(f"Duplicate section name '{section.name}'")
        seen_names.add(name)

    role_names = set()
    for role in association.roles:
        name = role.name.lower()
        if name in role_names:
            errors.append(f"Duplicate role name '{role.name}'")
        role_names.add(name)
        if not role.permissions:
            warnings.append(f"Role '{role.name}' grants no permission")

    if association.is_multi_section and not sections:
        warnings.append("Multi-section association has no section yet")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)


def validate_roster(association: Association, roster: Iterable[Member],
                    sections: Iterable[Section] = ()) -> ValidationResult:
    """
    Validate members against the association catalogs.

    Every member type must exist in the catalog, every section reference must
    point at a section of the association, and at least one active admin must
    remain.
    """
    errors = []
    warnings = []
    section_ids = {s.id for s in sections}
    roster = list(roster)

    for member in roster:
        if member.association_id != association.id:
            errors.append(f"Member {member.id} belongs to another association")
            continue
        if not member_type_exists(association, member.member_type):
            errors.append(f"Member {member.id} references unknown member type '{member.member_type}'")
        if member.section_id is not None and member.section_id not in section_ids:
            errors.append(f"Member {member.id} references unknown section {member.section_id}")

    if roster and not active_admins(roster, association.id):
        errors.append("Association has no active admin_association")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)


def member_type_exists(association: Association, member_type: str) -> bool:
    """Check if a member type exists in the association catalog."""
    return association.get_member_type(member_type) is not None


# ============================================================
# MEMBERSHIP CHANGES
# ============================================================

def assign_member_type(member: Member, association: Association, member_type: str, now: datetime) -> OperationResult:
    """
    Assign a member type, snapshotting its cotisation amount.

    Later catalog edits do not change the snapshot; default roles of the type
    are added to the member's roles.
    """
    config = association.get_member_type(member_type)
    if config is None:
        return OperationResult.invalid(f"Unknown member type '{member_type}'")
    if member.association_id != association.id:
        return OperationResult.violation("Member belongs to another association")

    try:
        updated = member.evolve(
            now,
            member_type=config.name,
            cotisation_amount=config.cotisation_amount,
            roles=set(member.roles) | set(config.default_roles)
        )
    except PydanticValidationError as e:
        return OperationResult.from_pydantic(e, "Invalid member type assignment")

    return OperationResult.ok(updated)


def _require_role_manager(actor: Member, association: Association) -> Optional[OperationResult]:
    if actor.association_id != association.id or not has_permission(actor, association, Permission.MANAGE_ROLES):
        return OperationResult.forbidden(
            f"Missing required permission: {Permission.MANAGE_ROLES.value}",
            [Permission.MANAGE_ROLES.value]
        )
    return None


def role_exists(association: Association, role_id: str) -> bool:
    """Check if a role id is known, either in the catalog or built-in."""
    return association.get_role(role_id) is not None or to_system_role(role_id) is not None


def assign_role(member: Member, association: Association, role_id: str, actor: Member,
                now: datetime) -> OperationResult:
    """
    Assign a role to a member.

    Args:
        member: Member receiving the role
        association: Association owning the role catalog
        role_id: Role to assign
        actor: Member performing the assignment
        now: Injected engine time

    Returns:
        OperationResult with the updated member and a role_assigned event
    """
    denied = _require_role_manager(actor, association)
    if denied:
        return denied

    if member.association_id != association.id:
        return OperationResult.violation("Member belongs to another association")
    if not role_exists(association, role_id):
        return OperationResult.invalid(f"Unknown role '{role_id}'")

    system_role = to_system_role(role_id)
    if system_role == SystemRole.ADMIN_ASSOCIATION and not is_admin(actor):
        return OperationResult.forbidden("Only an admin can grant the admin_association role")
    if system_role in SECTION_SCOPED_ROLES:
        if not association.is_multi_section:
            return OperationResult.invalid("Section roles require a multi-section association")
        if member.section_id is None:
            return OperationResult.invalid("Section roles require the member to belong to a section")

    if member.has_role(role_id):
        return OperationResult.ok(member)

    updated = member.evolve(now, roles=set(member.roles) | {role_id})
    event = _event(EventType.ROLE_ASSIGNED, association.id, member.id, now,
                   role_id=role_id, changed_by=actor.id)
    return OperationResult.ok(updated, [event])


def remove_role(member: Member, association: Association, role_id: str, actor: Member,
                roster: Iterable[Member], now: datetime) -> OperationResult:
    """
    Remove a role from a member.

    Removing admin_association from the last active admin is refused so the
    association can never be locked out.
    """
    denied = _require_role_manager(actor, association)
    if denied:
        return denied

    if member.association_id != association.id:
        return OperationResult.violation("Member belongs to another association")
    if not member.has_role(role_id):
        return OperationResult.invalid(f"Member does not hold role '{role_id}'")

    if role_id == SystemRole.ADMIN_ASSOCIATION.value:
        others = [m for m in active_admins(roster, association.id) if m.id != member.id]
        if not others:
            return OperationResult.violation(
                "Cannot remove the last admin_association of the association",
                ["Transfer the admin role to another member first"]
            )

    updated = member.evolve(now, roles=set(member.roles) - {role_id})
    event = _event(EventType.ROLE_REMOVED, association.id, member.id, now,
                   role_id=role_id, changed_by=actor.id)
    return OperationResult.ok(updated, [event])


def transfer_admin(current_admin: Member, new_admin: Member, association: Association,
                   reason: str, now: datetime) -> OperationResult:
    """
    Hand the admin_association role over to another active member.

    The previous admin keeps their membership and other roles.
    """
    if not is_admin(current_admin) or current_admin.association_id != association.id:
        return OperationResult.forbidden("Only the current admin can transfer the admin role")
    if new_admin.association_id != association.id:
        return OperationResult.violation("New admin belongs to another association")
    if new_admin.id == current_admin.id:
        return OperationResult.invalid("Cannot transfer the admin role to oneself")
    if not new_admin.is_active():
        return OperationResult.invalid("New admin must be an active member")
    if not reason or not reason.strip():
        return OperationResult.invalid("A reason is required to transfer the admin role")

    admin_role = SystemRole.ADMIN_ASSOCIATION.value
    transfer = AdminTransfer(
        previous_admin=current_admin.evolve(now, roles=set(current_admin.roles) - {admin_role}),
        new_admin=new_admin.evolve(now, roles=set(new_admin.roles) | {admin_role})
    )
    event = _event(EventType.ADMIN_TRANSFERRED, association.id, new_admin.id, now,
                   previous_admin_id=current_admin.id, reason=reason.strip())
    return OperationResult.ok(transfer, [event])


def delete_role(association: Association, role_id: str, actor: Member, roster: Iterable[Member],
                now: datetime) -> OperationResult:
    """
    Delete a custom role and strip it from every holder.

    System roles can never be deleted, only customised.
    """
    denied = _require_role_manager(actor, association)
    if denied:
        return denied

    if to_system_role(role_id) is not None:
        return OperationResult.violation(f"System role '{role_id}' cannot be deleted")
    if association.get_role(role_id) is None:
        return OperationResult.invalid(f"Unknown role '{role_id}'")

    updated_association = association.evolve(
        now, roles=[r for r in association.roles if r.id != role_id]
    )
    members = [
        m.evolve(now, roles=set(m.roles) - {role_id})
        for m in roster
        if m.association_id == association.id and m.has_role(role_id)
    ]
    events = [
        _event(EventType.ROLE_REMOVED, association.id, m.id, now, role_id=role_id, changed_by=actor.id)
        for m in members
    ]
    return OperationResult.ok(RoleDeletion(association=updated_association, members=members), events)


def add_section(association: Association, section: Section, actor: Member,
                existing_sections: Iterable[Section] = ()) -> OperationResult:
    """Validate a new section for a multi-section association."""
    if actor.association_id != association.id or not has_permission(actor, association, Permission.MANAGE_SECTIONS):
        return OperationResult.forbidden(
            f"Missing required permission: {Permission.MANAGE_SECTIONS.value}",
            [Permission.MANAGE_SECTIONS.value]
        )
    if not association.is_multi_section:
        return OperationResult.violation("Sections require a multi-section association")
    if section.association_id != association.id:
        return OperationResult.violation("Section belongs to another association")

    names = {s.name.lower() for s in existing_sections if s.id != section.id}
    if section.name.lower() in names:
        return OperationResult.invalid(f"Duplicate section name '{section.name}'")

    return OperationResult.ok(section)


def delete_section(association: Association, section: Section, actor: Member,
                   roster: Iterable[Member], now: datetime) -> OperationResult:
    """
    Delete a section, moving its members to the central pool.

    Members are never deleted. Section-scoped roles are dropped since they
    have no meaning for a central member.
    """
    if actor.association_id != association.id or not has_permission(actor, association, Permission.MANAGE_SECTIONS):
        return OperationResult.forbidden(
            f"Missing required permission: {Permission.MANAGE_SECTIONS.value}",
            [Permission.MANAGE_SECTIONS.value]
        )
    if section.association_id != association.id:
        return OperationResult.violation("Section belongs to another association")

    section_roles = {role.value for role in SECTION_SCOPED_ROLES}
    members = []
    events = []
    for member in roster:
        if member.association_id != association.id or member.section_id != section.id:
            continue
        members.append(member.evolve(now, section_id=None, roles=set(member.roles) - section_roles))
        events.append(_event(
            EventType.MEMBER_SECTION_REASSIGNED, association.id, member.id, now,
            previous_section_id=section.id, section_id=None
        ))

    return OperationResult.ok(SectionDeletion(section_id=section.id, members=members), events)


# ============================================================
# FEATURE ACCESS
# ============================================================

def visibility_level(member: Optional[Member], association: Association) -> VisibilityLevel:
    """Visibility level a member reaches in an association."""
    if member is None or member.association_id != association.id or not member.is_active():
        return VisibilityLevel.PUBLIC
    if is_admin(member):
        return VisibilityLevel.ADMIN
    if any(member.has_role(role.value) for role in BUREAU_ROLES):
        return VisibilityLevel.BUREAU
    return VisibilityLevel.MEMBERS


def can_access_feature(member: Optional[Member], association: Association, feature: str) -> bool:
    """
    Check a feature against the association access rights.

    Features without an explicit entry require plain membership.
    """
    required = association.access_rights.get(feature, VisibilityLevel.MEMBERS)
    return visibility_level(member, association) >= required


def find_member(roster: Iterable[Member], member_id: str) -> Optional[Member]:
    """Find a member by id in a roster snapshot."""
    for member in roster:
        if member.id == member_id:
            return member
    return None
