"""
Lead CRM - API Backend

Start with:
    uvicorn leadcrm.server:app --host 0.0.0.0 --port 8001 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .errors import CRMError, ValidationError
from .routes import audit_log, auth, leads, users
from .services.audit import AuditChannel
from .services.permissions import AccessControl
from .services.tenant_store import ensure_indexes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("leadcrm")


async def crm_error_handler(request: Request, exc: CRMError):
    body = {"detail": exc.detail}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


# ==================== STARTUP / SHUTDOWN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.db is None:
        app.state.db = config.get_database()
    indexes = await ensure_indexes(app.state.db)
    logger.info(f"[STARTUP] indexes ready: {sorted(indexes)}")

    app.state.audit = AuditChannel(app.state.db, config.AUDIT_QUEUE_SIZE)
    app.state.audit.start()
    logger.info("[STARTUP] Lead CRM ready")

    yield

    await app.state.audit.stop()
    config.close_client()


def create_app(db=None, access_control: AccessControl = None) -> FastAPI:
    """Build the app. `db` defaults to the configured Mongo database at startup."""
    app = FastAPI(
        title="Lead CRM",
        description="Multi-tenant lead management for real-estate teams",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.db = db
    app.state.access_control = access_control or AccessControl()
    app.state.audit = None

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CRMError, crm_error_handler)

    # ==================== ROUTES ====================

    api_router = APIRouter(prefix="/api")
    api_router.include_router(auth.router)
    api_router.include_router(leads.router)
    api_router.include_router(users.router)
    api_router.include_router(audit_log.router)

    @api_router.get("/health")
    async def health():
        audit = app.state.audit
        return {
            "status": "ok",
            "audit": {
                "pending": audit.pending if audit else 0,
                "written": audit.written if audit else 0,
                "dropped": audit.dropped if audit else 0,
            },
        }

    app.include_router(api_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
