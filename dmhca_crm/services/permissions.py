"""
DMHCA CRM - Permission System
Role presets + permission evaluator + lead visibility filter + FastAPI dependencies.
Permissions are the source of truth. Roles are presets only.

Every check here is pure and fails closed: no user, an unknown role or a
missing grant all mean "no".
"""

import logging
from typing import Optional, List, Sequence, Iterable, Dict
from fastapi import Depends, HTTPException

from dmhca_crm.models.auth import (
    User,
    UserRole,
    Resource,
    Permission,
    PermissionAction,
    PermissionScope,
)

logger = logging.getLogger("permissions")


class PermissionDenied(Exception):
    """Raised when a write falls outside the caller's scope."""


# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS (backfill for users the backend sends without permissions)
# ════════════════════════════════════════════════════════════════════════

def _grant(resource: Resource, actions: str, scope: PermissionScope) -> Permission:
    return Permission(
        resource=resource.value,
        actions=[PermissionAction(a) for a in actions.split(",")],
        scope=scope,
    )


ALL, TEAM, OWN = PermissionScope.ALL, PermissionScope.TEAM, PermissionScope.OWN

ROLE_PRESETS: Dict[UserRole, List[Permission]] = {
    UserRole.MANAGER: [
        _grant(Resource.LEADS, "create,read,update,delete,manage", ALL),
        _grant(Resource.ANALYTICS, "read", ALL),
        _grant(Resource.SALES, "read,manage", ALL),
        _grant(Resource.COMMUNICATIONS, "create,read,update,delete", ALL),
        _grant(Resource.USERS, "create,read,update,delete,manage", ALL),
        _grant(Resource.SETTINGS, "read,update,manage", ALL),
        _grant(Resource.HOSPITALS, "read,update", ALL),
        _grant(Resource.COURSES, "read,update", ALL),
    ],

    UserRole.TEAM_LEAD: [
        _grant(Resource.LEADS, "create,read,update,delete", TEAM),
        _grant(Resource.ANALYTICS, "read", TEAM),
        _grant(Resource.SALES, "read", TEAM),
        _grant(Resource.COMMUNICATIONS, "create,read,update", TEAM),
        _grant(Resource.USERS, "read", TEAM),
        _grant(Resource.SETTINGS, "read", OWN),
        _grant(Resource.HOSPITALS, "read", ALL),
        _grant(Resource.COURSES, "read", ALL),
    ],

    UserRole.COUNSELOR: [
        _grant(Resource.LEADS, "create,read,update", OWN),
        _grant(Resource.ANALYTICS, "read", OWN),
        _grant(Resource.SALES, "read", OWN),
        _grant(Resource.COMMUNICATIONS, "create,read,update", OWN),
        _grant(Resource.SETTINGS, "read", OWN),
        _grant(Resource.HOSPITALS, "read", ALL),
        _grant(Resource.COURSES, "read", ALL),
    ],
}


def get_preset_permissions(role) -> List[Permission]:
    """Returns the default permissions for a role (empty for unknown roles)."""
    return list(ROLE_PRESETS.get(role, []))


def hydrate_user(user: User) -> User:
    """
    Session-load step: a user without explicit permissions gets the preset
    of its role. Returns a new User, the input is left untouched.
    """
    if user.permissions:
        return user
    return user.model_copy(update={"permissions": get_preset_permissions(user.role)})


# ════════════════════════════════════════════════════════════════════════
# ROLE HELPERS
# ════════════════════════════════════════════════════════════════════════

def _role(user: Optional[User]):
    return getattr(user, "role", None) if user else None


def is_manager(user: Optional[User]) -> bool:
    return _role(user) == UserRole.MANAGER


def is_team_lead(user: Optional[User]) -> bool:
    return _role(user) == UserRole.TEAM_LEAD


def is_counselor(user: Optional[User]) -> bool:
    return _role(user) == UserRole.COUNSELOR


# ════════════════════════════════════════════════════════════════════════
# PERMISSION EVALUATOR
# ════════════════════════════════════════════════════════════════════════

def find_permission(user: Optional[User], resource: str) -> Optional[Permission]:
    """First grant for the resource; users carry at most one per resource."""
    if not user:
        return None
    for permission in user.permissions or []:
        if permission.resource == resource:
            return permission
    return None


def has_permission(
    user: Optional[User],
    resource: str,
    action: str,
    scope: Optional[str] = None,
) -> bool:
    """
    True when the user's grant on `resource` covers `action`.
    `manage` covers every action. When `scope` is given, a grant whose
    scope is neither `all` nor `scope` does not match.
    """
    permission = find_permission(user, resource)
    if permission is None:
        return False

    actions = permission.actions
    if action not in actions and PermissionAction.MANAGE not in actions:
        return False

    if scope and permission.scope != PermissionScope.ALL and permission.scope != scope:
        return False

    return True


def can_access_resource(user: Optional[User], resource: str) -> bool:
    return find_permission(user, resource) is not None


# ════════════════════════════════════════════════════════════════════════
# LEAD VISIBILITY
# ════════════════════════════════════════════════════════════════════════

def is_lead_visible(user: Optional[User], lead) -> bool:
    """
    manager   -> every lead
    team_lead -> own branch, assigned to self or to a team member
    counselor -> own branch, assigned to self
    Unassigned leads are only visible to managers.
    """
    if not user:
        return False

    role = _role(user)
    if role == UserRole.MANAGER:
        return True

    if lead.branch != user.branch:
        return False

    assigned = lead.assigned_counselor
    if not assigned:
        return False

    if role == UserRole.TEAM_LEAD:
        return assigned == user.id or assigned in (user.team_members or [])
    if role == UserRole.COUNSELOR:
        return assigned == user.id

    return False


def get_accessible_leads(user: Optional[User], leads: Iterable) -> list:
    """Subset of `leads` visible to `user`, in the original order."""
    if not user:
        return []
    if is_manager(user):
        return list(leads)
    return [lead for lead in leads if is_lead_visible(user, lead)]


# ════════════════════════════════════════════════════════════════════════
# WRITE SCOPE
# ════════════════════════════════════════════════════════════════════════

def can_assign_to(user: Optional[User], counselor_id: Optional[str]) -> bool:
    """
    manager   -> anyone
    team_lead -> self or a team member
    counselor -> nobody
    """
    if not counselor_id:
        return False
    if is_manager(user):
        return True
    if is_team_lead(user):
        return counselor_id == user.id or counselor_id in (user.team_members or [])
    return False


def enforce_lead_write_scope(user: Optional[User], payload: dict) -> dict:
    """
    Determine branch + assignment for a lead written by `user`.
    - manager: payload as given
    - team_lead: branch forced to own branch, assignee self (default) or team member
    - counselor: branch forced to own branch, assignee forced to self
    Returns a new dict (camelCase keys, backend shape).
    """
    if is_manager(user):
        return dict(payload)

    if not (is_team_lead(user) or is_counselor(user)):
        raise PermissionDenied("Unknown role, writes are not allowed")

    scoped = dict(payload)
    scoped["branch"] = user.branch.value

    assignee = scoped.get("assignedCounselor") or user.id
    if is_counselor(user) and assignee != user.id:
        raise PermissionDenied("Counselors can only assign leads to themselves")
    if is_team_lead(user) and not can_assign_to(user, assignee):
        raise PermissionDenied(f"Counselor {assignee} is not in your team")

    scoped["assignedCounselor"] = assignee
    return scoped


# ════════════════════════════════════════════════════════════════════════
# TEAM LINKS
# ════════════════════════════════════════════════════════════════════════

def validate_team_links(
    role,
    team_lead_id: Optional[str],
    team_members: Optional[Sequence[str]],
    directory: Iterable[User],
) -> List[str]:
    """
    Check the back-references of a user being written against the
    directory: teamLeadId must name a team_lead, teamMembers must name
    counselors. Returns the list of problems (empty when valid).
    """
    by_id = {u.id: u for u in directory}
    errors = []

    if team_lead_id:
        if role != UserRole.COUNSELOR:
            errors.append("teamLeadId is only allowed for counselors")
        lead = by_id.get(team_lead_id)
        if lead is None:
            errors.append(f"Team lead {team_lead_id} not found")
        elif lead.role != UserRole.TEAM_LEAD:
            errors.append(f"User {team_lead_id} is not a team lead")

    if team_members:
        if role != UserRole.TEAM_LEAD:
            errors.append("teamMembers is only allowed for team leads")
        for member_id in team_members:
            member = by_id.get(member_id)
            if member is None:
                errors.append(f"Team member {member_id} not found")
            elif member.role != UserRole.COUNSELOR:
                errors.append(f"User {member_id} is not a counselor")

    return errors


def find_back_references(user_id: str, new_role, directory: Iterable[User]) -> List[str]:
    """
    Links held by OTHER users that a role change of `user_id` would break:
    team leads listing it as a team member once it is no longer a counselor,
    counselors pointing at it as team lead once it is no longer a team lead.
    """
    errors = []
    for other in directory:
        if other.id == user_id:
            continue
        if new_role != UserRole.COUNSELOR and user_id in (other.team_members or []):
            errors.append(f"Team lead {other.id} lists {user_id} as a team member")
        if new_role != UserRole.TEAM_LEAD and other.team_lead_id == user_id:
            errors.append(f"Counselor {other.id} has {user_id} as team lead")
    return errors


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(resource: str, action: str, scope: Optional[str] = None):
    """
    FastAPI dependency factory.
    Usage: session = Depends(require_permission("leads", "read"))
    """
    from dmhca_crm.routes.auth import get_current_session

    async def _check(session=Depends(get_current_session)):
        if not session.has_permission(resource, action, scope):
            logger.warning(
                f"[PERMISSION_DENIED] user={session.user.email} "
                f"key={resource}.{action} scope={scope} role={session.user.role.value}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission required: {resource}.{action}"
            )
        return session

    return _check

