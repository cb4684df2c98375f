"""
DMHCA CRM - Routes Auth
Login / Logout / Session / permission introspection.
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from dmhca_crm.models.auth import UserLogin, RefreshRequest, Resource, VALID_ROLES
from dmhca_crm.services.activity_logger import log_activity
from dmhca_crm.services.api_client import CRMApiClient
from dmhca_crm.services.permissions import ROLE_PRESETS, require_permission
from dmhca_crm.services.session import CRMSession

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

def get_api_client() -> CRMApiClient:
    """Fresh backend client per request (carries that request's token)."""
    return CRMApiClient()


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    api_client: CRMApiClient = Depends(get_api_client),
) -> CRMSession:
    """Builds the request's session from the bearer token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = CRMSession(api_client)
    if not await session.restore(credentials.credentials):
        raise HTTPException(status_code=401, detail="Session expired")

    if not session.user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled")

    return session


def dump_user(user) -> dict:
    return user.model_dump(mode="json", by_alias=True)


def client_ip(request: Request):
    return request.client.host if request.client else None


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(
    data: UserLogin,
    request: Request,
    api_client: CRMApiClient = Depends(get_api_client),
):
    """Credential exchange with the CRM backend."""
    session = CRMSession(api_client)
    if not await session.login(data.email, data.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user = session.user
    if not user.is_active:
        await session.logout()
        raise HTTPException(status_code=403, detail="Account disabled")

    await log_activity(
        user=user,
        action="login",
        entity_type="session",
        entity_id=user.id,
        ip_address=client_ip(request)
    )

    return {
        "token": api_client.token,
        "refreshToken": api_client.refresh_token,
        "user": dump_user(user),
    }


@router.post("/logout")
async def logout(request: Request, session: CRMSession = Depends(get_current_session)):
    user = session.user
    await session.logout()
    await log_activity(
        user=user,
        action="logout",
        entity_type="session",
        entity_id=user.id,
        ip_address=client_ip(request)
    )
    return {"success": True}


@router.post("/refresh")
async def refresh(data: RefreshRequest, api_client: CRMApiClient = Depends(get_api_client)):
    result = await api_client.refresh(data.refresh_token)
    return {"token": result.get("token"), "refreshToken": result.get("refreshToken")}


@router.get("/me")
async def get_me(session: CRMSession = Depends(get_current_session)):
    """Hydrated user + the resources the UI may show."""
    user = dump_user(session.user)
    user["accessibleResources"] = [
        r.value for r in Resource if session.can_access_resource(r.value)
    ]
    return user


# ==================== PERMISSION INTROSPECTION ====================

@router.get("/permission-presets")
async def list_permission_presets(session: CRMSession = Depends(require_permission("users", "read"))):
    """Role presets and resources (for the user management UI)."""
    return {
        "roles": VALID_ROLES,
        "resources": [r.value for r in Resource],
        "presets": {
            role.value: [p.model_dump(mode="json") for p in grants]
            for role, grants in ROLE_PRESETS.items()
        },
    }


# ==================== ACTIVITY LOG ====================

@router.get("/activity-logs")
async def get_activity_logs(
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    branch: str = None,
    since: str = None,
    limit: int = 100,
    skip: int = 0,
    session: CRMSession = Depends(require_permission("users", "manage"))
):
    from dmhca_crm.services.activity_logger import get_activity_logs as get_logs
    return await get_logs(
        user_id=user_id,
        entity_type=entity_type,
        action=action,
        branch=branch,
        since=since,
        limit=min(limit, 500),
        skip=skip,
    )
