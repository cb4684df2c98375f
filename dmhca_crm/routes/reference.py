"""
DMHCA CRM - Reference data (branches, courses) + health
"""

from fastapi import APIRouter, HTTPException, Depends

from dmhca_crm.models.branch import BRANCHES
from dmhca_crm.routes.auth import get_current_session, get_api_client
from dmhca_crm.services.api_client import CRMApiClient, ApiClientError
from dmhca_crm.services.permissions import require_permission
from dmhca_crm.services.session import CRMSession
from dmhca_crm.config import now_iso

router = APIRouter(tags=["Reference"])


@router.get("/branches")
async def list_branches(session: CRMSession = Depends(get_current_session)):
    return {"branches": [b.model_dump(mode="json") for b in BRANCHES.values()]}


@router.get("/courses")
async def list_courses(session: CRMSession = Depends(require_permission("courses", "read"))):
    courses = await session.api_client.get_courses()
    return {"courses": courses or []}


@router.get("/health")
async def health(api_client: CRMApiClient = Depends(get_api_client)):
    try:
        backend = await api_client.health_check()
    except ApiClientError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return {"status": "ok", "backend": backend, "timestamp": now_iso()}
