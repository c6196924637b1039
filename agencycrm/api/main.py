import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agencycrm import __version__
from agencycrm.api.routers import assignments, branches, checks, health, permissions, roles
from agencycrm.api.schemas.common import ErrorResponse
from agencycrm.core.config import get_settings
from agencycrm.core.logger import setup_logger
from agencycrm.core.rbac.errors import RBACError

settings = get_settings()
setup_logger("agencycrm", log_dir=settings.log_dir, level=settings.log_level)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Access control for multi-tenant study-abroad agencies",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RBACError)
async def rbac_error_handler(request: Request, exc: RBACError):
    """Translate typed RBAC failures into 4xx JSON responses."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    body = ErrorResponse(error=exc.message, code=exc.code, detail=exc.detail or None)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# Include routers
RBAC_PREFIX = "/api/{subdomain}/rbac"

app.include_router(health.router)
app.include_router(checks.router, prefix=RBAC_PREFIX)
app.include_router(permissions.router, prefix=RBAC_PREFIX)
app.include_router(roles.router, prefix=RBAC_PREFIX)
app.include_router(assignments.router, prefix=RBAC_PREFIX)
app.include_router(branches.router, prefix=RBAC_PREFIX)
