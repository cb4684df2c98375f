"""
DMHCA CRM - Gateway API
Role-aware gateway between the CRM UI and the DMHCA backend.

Start with:
    uvicorn dmhca_crm.server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
import logging

from dmhca_crm.config import CORS_ORIGINS, client
from dmhca_crm.services.api_client import ApiClientError
from dmhca_crm.services.permissions import PermissionDenied

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("dmhca_crm")

app = FastAPI(
    title="DMHCA CRM Gateway",
    description="Lead management gateway: sessions, permissions, lead visibility",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERROR MAPPING ====================

@app.exception_handler(ApiClientError)
async def api_client_error_handler(request: Request, exc: ApiClientError):
    """Backend client errors keep their status, everything else is a bad gateway."""
    status = exc.status if exc.is_client_error() else 502
    if status == 502:
        logger.error(f"[BACKEND_ERROR] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status, content={"detail": exc.message})


@app.exception_handler(PermissionDenied)
async def permission_denied_handler(request: Request, exc: PermissionDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


# ==================== ROUTES ====================

from dmhca_crm.routes import auth, leads, users, reference

app.include_router(auth.router, prefix="/api")
app.include_router(leads.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(reference.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "DMHCA CRM Gateway",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    from dmhca_crm.config import db

    await db.activity_logs.create_index("created_at")
    await db.activity_logs.create_index("user_id")
    await db.activity_logs.create_index([("entity_type", 1), ("action", 1)])
    logger.info("DMHCA CRM gateway started")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
