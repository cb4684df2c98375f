"""
DMHCA CRM - Routes Users
User administration proxied to the backend, with team links validated.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, HTTPException, Depends, Request
from pydantic import ValidationError

from dmhca_crm.models.auth import User, UserCreate, UserUpdate, UserRole
from dmhca_crm.routes.auth import client_ip, dump_user
from dmhca_crm.services.activity_logger import log_activity
from dmhca_crm.services.api_client import CRMApiClient
from dmhca_crm.services.permissions import (
    require_permission,
    validate_team_links,
    find_back_references,
    get_preset_permissions,
)
from dmhca_crm.services.session import CRMSession

logger = logging.getLogger("users")

router = APIRouter(prefix="/users", tags=["Users"])

DIRECTORY_LIMIT = 1000


# ==================== HELPERS ====================

def parse_users(docs: List[dict]) -> List[User]:
    users = []
    for doc in docs:
        try:
            users.append(User.model_validate(doc))
        except ValidationError as e:
            logger.warning(f"[INVALID_USER] id={doc.get('id')} dropped: {e.error_count()} errors")
    return users


async def load_directory(api_client: CRMApiClient) -> List[User]:
    result = await api_client.get_users(limit=DIRECTORY_LIMIT)
    return parse_users(result["data"])


def check_team_links(role, team_lead_id, team_members, directory):
    errors = validate_team_links(role, team_lead_id, team_members, directory)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))


# ==================== LIST ====================

@router.get("")
async def list_users(
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    role: Optional[str] = None,
    branch: Optional[str] = None,
    session: CRMSession = Depends(require_permission("users", "read"))
):
    """
    Users visible to the caller. A team-scoped grant only shows the caller
    and the counselors of its team.
    """
    result = await session.api_client.get_users(
        page=page, limit=limit, search=search, role=role, branch=branch
    )
    users = parse_users(result["data"])

    if not session.has_permission("users", "read", "all"):
        me = session.user
        team = set(me.team_members or [])
        users = [u for u in users if u.id == me.id or u.id in team]

    return {
        "users": [dump_user(u) for u in users],
        "count": len(users),
        "pagination": result.get("pagination"),
    }


# ==================== CREATE / UPDATE / DEACTIVATE ====================

@router.post("")
async def create_user(
    data: UserCreate,
    request: Request,
    session: CRMSession = Depends(require_permission("users", "create"))
):
    if data.role == UserRole.MANAGER and not session.has_permission("users", "manage"):
        raise HTTPException(status_code=403, detail="Only user managers can create managers")

    directory = await load_directory(session.api_client)
    if any(u.email.lower() == data.email.lower() for u in directory):
        raise HTTPException(status_code=400, detail="This email already exists")

    check_team_links(data.role, data.team_lead_id, data.team_members, directory)

    payload = data.model_dump(mode="json", by_alias=True, exclude_none=True)
    payload["permissions"] = [
        p.model_dump(mode="json") for p in get_preset_permissions(data.role)
    ]
    payload["createdBy"] = session.user.id

    created = await session.api_client.create_user(payload)

    await log_activity(
        user=session.user,
        action="create",
        entity_type="user",
        entity_id=(created or {}).get("id"),
        entity_name=data.email,
        details={"role": data.role.value, "branch": data.branch.value},
        ip_address=client_ip(request)
    )

    (created or {}).pop("password", None)
    return {"success": True, "user": created}


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    session: CRMSession = Depends(require_permission("users", "update"))
):
    directory = await load_directory(session.api_client)
    target = next((u for u in directory if u.id == user_id), None)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    if data.role == UserRole.MANAGER and target.role != UserRole.MANAGER \
            and not session.has_permission("users", "manage"):
        raise HTTPException(status_code=403, detail="Cannot grant the manager role")

    # Links are checked against the resulting user, not the patch alone
    role = data.role or target.role
    team_lead_id = data.team_lead_id if data.team_lead_id is not None else target.team_lead_id
    team_members = data.team_members if data.team_members is not None else target.team_members
    if role != target.role:
        if data.team_lead_id is None and role != UserRole.COUNSELOR:
            team_lead_id = None
        if data.team_members is None and role != UserRole.TEAM_LEAD:
            team_members = None
    check_team_links(role, team_lead_id, team_members, directory)

    if role != target.role:
        dangling = find_back_references(user_id, role, directory)
        if dangling:
            logger.warning(f"[ROLE_CHANGE_BLOCKED] user={user_id} role={role.value}: {dangling}")
            raise HTTPException(
                status_code=400,
                detail="Remove team links first: " + "; ".join(dangling)
            )

    update_data = data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if data.role is not None and data.role != target.role:
        update_data["teamLeadId"] = team_lead_id
        update_data["teamMembers"] = team_members
        if data.permissions is None:
            update_data["permissions"] = [
                p.model_dump(mode="json") for p in get_preset_permissions(data.role)
            ]

    if not update_data:
        raise HTTPException(status_code=400, detail="Nothing to update")

    updated = await session.api_client.update_user(user_id, update_data)

    await log_activity(
        user=session.user,
        action="update",
        entity_type="user",
        entity_id=user_id,
        entity_name=target.email,
        details={k: v for k, v in update_data.items() if k != "permissions"},
        ip_address=client_ip(request)
    )

    (updated or {}).pop("password", None)
    return {"success": True, "user": updated}


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    request: Request,
    session: CRMSession = Depends(require_permission("users", "delete"))
):
    if user_id == session.user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    await session.api_client.delete_user(user_id)

    await log_activity(
        user=session.user,
        action="delete",
        entity_type="user",
        entity_id=user_id,
        ip_address=client_ip(request)
    )

    return {"success": True}
