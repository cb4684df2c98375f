"""
DMHCA CRM - Routes Leads

Every lead the gateway returns has gone through the visibility filter.
Writes are gated by the permission evaluator and by the lead's visibility.
"""

import logging
from typing import Optional, List

from fastapi import APIRouter, HTTPException, Depends, Query, Request, Response
from pydantic import ValidationError

from dmhca_crm.models.branch import get_branch_or_raise
from dmhca_crm.models.lead import (
    Lead,
    LeadCreate,
    LeadUpdate,
    LeadAssign,
    LeadNoteCreate,
    LeadStatusUpdate,
)
from dmhca_crm.routes.auth import client_ip
from dmhca_crm.services.activity_logger import log_activity
from dmhca_crm.services.csv_export import generate_csv_content, generate_csv_filename
from dmhca_crm.services.permissions import (
    require_permission,
    is_lead_visible,
    can_assign_to,
    enforce_lead_write_scope,
    PermissionDenied,
)
from dmhca_crm.services.session import CRMSession

logger = logging.getLogger("leads")

router = APIRouter(prefix="/leads", tags=["Leads"])


# ==================== HELPERS ====================

def parse_leads(docs: List[dict]) -> List[Lead]:
    """Backend rows -> Lead. Rows that do not validate (no known branch) are dropped."""
    leads = []
    for doc in docs:
        try:
            leads.append(Lead.model_validate(doc))
        except ValidationError as e:
            logger.warning(f"[INVALID_LEAD] id={doc.get('id')} dropped: {e.error_count()} errors")
    return leads


def dump_lead(lead: Lead) -> dict:
    return lead.model_dump(mode="json", by_alias=True)


async def get_visible_lead(session: CRMSession, lead_id: str) -> Lead:
    """Fetch one lead; invisible leads are reported as missing."""
    doc = await session.api_client.get_lead(lead_id)
    try:
        lead = Lead.model_validate(doc or {})
    except ValidationError:
        raise HTTPException(status_code=502, detail="Invalid lead payload from backend")

    if not is_lead_visible(session.user, lead):
        logger.warning(
            f"[LEAD_HIDDEN] user={session.user.email} lead={lead_id} "
            f"role={session.user.role.value}"
        )
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


def check_branch_filter(branches: Optional[List[str]]):
    for branch in branches or []:
        try:
            get_branch_or_raise(branch)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))


async def fetch_visible_leads(session: CRMSession, **filters) -> tuple:
    check_branch_filter(filters.get("branch"))
    result = await session.api_client.get_leads(**filters)
    return visible_only(session, result["data"]), result.get("pagination")


def visible_only(session: CRMSession, docs) -> List[Lead]:
    return session.get_accessible_leads(parse_leads(docs or []))


# ==================== LIST / EXPORT ====================

@router.get("")
async def list_leads(
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    source: Optional[List[str]] = Query(None),
    qualification: Optional[List[str]] = Query(None),
    branch: Optional[List[str]] = Query(None),
    assigned_to: Optional[List[str]] = Query(None, alias="assignedTo"),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    session: CRMSession = Depends(require_permission("leads", "read"))
):
    """
    Leads visible to the caller.

    The backend filters by the query parameters, the gateway then narrows
    the page to the caller's branch/team/own scope.
    """
    leads, pagination = await fetch_visible_leads(
        session,
        page=page,
        limit=min(limit, 1000),
        search=search,
        status=status,
        source=source,
        qualification=qualification,
        branch=branch,
        assigned_to=assigned_to,
        date_from=date_from,
        date_to=date_to,
    )
    return {
        "leads": [dump_lead(lead) for lead in leads],
        "count": len(leads),
        "pagination": pagination,
    }


@router.get("/export")
async def export_leads(
    request: Request,
    search: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    branch: Optional[List[str]] = Query(None),
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    limit: int = 1000,
    session: CRMSession = Depends(require_permission("leads", "read"))
):
    """CSV of the caller's visible leads."""
    leads, _ = await fetch_visible_leads(
        session,
        page=1,
        limit=min(limit, 5000),
        search=search,
        status=status,
        branch=branch,
        date_from=date_from,
        date_to=date_to,
    )

    user = session.user
    label = "all" if session.is_manager() else f"{user.branch.value}_{user.username or user.id}"
    filename = generate_csv_filename(label)

    await log_activity(
        user=user,
        action="export",
        entity_type="lead",
        entity_name=filename,
        details={"count": len(leads)},
        ip_address=client_ip(request)
    )

    return Response(
        content=generate_csv_content(leads),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/follow-ups/today")
async def todays_follow_ups(session: CRMSession = Depends(require_permission("leads", "read"))):
    """Today's follow-ups, narrowed like the lead list."""
    docs = await session.api_client.get_todays_follow_ups()
    leads = visible_only(session, docs)
    return {"leads": [dump_lead(lead) for lead in leads], "count": len(leads)}


# ==================== DETAIL ====================

@router.get("/{lead_id}")
async def get_lead(lead_id: str, session: CRMSession = Depends(require_permission("leads", "read"))):
    lead = await get_visible_lead(session, lead_id)
    return dump_lead(lead)


# ==================== WRITES ====================

@router.post("")
async def create_lead(
    data: LeadCreate,
    request: Request,
    session: CRMSession = Depends(require_permission("leads", "create"))
):
    payload = data.model_dump(mode="json", by_alias=True, exclude_none=True)
    try:
        payload = enforce_lead_write_scope(session.user, payload)
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))

    if not payload.get("branch"):
        raise HTTPException(status_code=400, detail="branch is required")

    created = await session.api_client.create_lead(payload)

    await log_activity(
        user=session.user,
        action="create",
        entity_type="lead",
        entity_id=(created or {}).get("id"),
        entity_name=payload.get("name"),
        details={"branch": payload["branch"], "assignedCounselor": payload.get("assignedCounselor")},
        ip_address=client_ip(request)
    )

    return {"success": True, "lead": created}


@router.put("/{lead_id}")
async def update_lead(
    lead_id: str,
    data: LeadUpdate,
    request: Request,
    session: CRMSession = Depends(require_permission("leads", "update"))
):
    await get_visible_lead(session, lead_id)

    update_data = data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if not update_data:
        raise HTTPException(status_code=400, detail="Nothing to update")

    updated = await session.api_client.update_lead(lead_id, update_data)

    await log_activity(
        user=session.user,
        action="update",
        entity_type="lead",
        entity_id=lead_id,
        details=update_data,
        ip_address=client_ip(request)
    )

    return {"success": True, "lead": updated}


@router.delete("/{lead_id}")
async def delete_lead(
    lead_id: str,
    request: Request,
    session: CRMSession = Depends(require_permission("leads", "delete"))
):
    lead = await get_visible_lead(session, lead_id)
    await session.api_client.delete_lead(lead_id)

    await log_activity(
        user=session.user,
        action="delete",
        entity_type="lead",
        entity_id=lead_id,
        entity_name=lead.name,
        ip_address=client_ip(request)
    )

    return {"success": True}


@router.patch("/{lead_id}/assign")
async def assign_lead(
    lead_id: str,
    data: LeadAssign,
    request: Request,
    session: CRMSession = Depends(require_permission("leads", "update", "team"))
):
    """Reassignment: managers to anyone, team leads within their team."""
    lead = await get_visible_lead(session, lead_id)

    if not can_assign_to(session.user, data.assigned_to):
        raise HTTPException(status_code=403, detail=f"Cannot assign to {data.assigned_to}")

    await session.api_client.assign_lead(lead_id, data.assigned_to, data.reason)

    await log_activity(
        user=session.user,
        action="assign",
        entity_type="lead",
        entity_id=lead_id,
        details={"from": lead.assigned_counselor, "to": data.assigned_to, "reason": data.reason},
        ip_address=client_ip(request)
    )

    return {"success": True}


@router.post("/{lead_id}/notes")
async def add_lead_note(
    lead_id: str,
    data: LeadNoteCreate,
    session: CRMSession = Depends(require_permission("leads", "update"))
):
    await get_visible_lead(session, lead_id)
    await session.api_client.add_lead_note(lead_id, data.note)
    return {"success": True}


@router.patch("/{lead_id}/status")
async def update_lead_status(
    lead_id: str,
    data: LeadStatusUpdate,
    request: Request,
    session: CRMSession = Depends(require_permission("leads", "update"))
):
    lead = await get_visible_lead(session, lead_id)
    updated = await session.api_client.update_lead_status(lead_id, data.status.value, data.note)

    await log_activity(
        user=session.user,
        action="status",
        entity_type="lead",
        entity_id=lead_id,
        details={"old_status": lead.status, "new_status": data.status.value},
        ip_address=client_ip(request)
    )

    return {"success": True, "lead": updated}
