"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from party_admin.core.config import settings
from party_admin.core.middleware import setup_middleware
from party_admin.core.exceptions import PartyAdminError

from party_admin.api.auth import router as auth_router
from party_admin.api.admin import router as admin_router
from party_admin.api.roles import router as roles_router
from party_admin.api.permissions import router as permissions_router
from party_admin.api.functions import router as functions_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("party_admin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting %s (identity backend: %s)", settings.APP_NAME, settings.IDENTITY_BACKEND)

    from party_admin.services.cache_service import cache_service
    if not cache_service.enabled:
        logger.info("Role cache disabled")
    elif cache_service.health_check():
        logger.info("Redis connected")
    else:
        logger.warning("Redis not available, role cache falls back to the database")

    yield

    logger.info("Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="Party Admin API",
    description="Role-based admin account management",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(PartyAdminError)
async def party_admin_exception_handler(request: Request, exc: PartyAdminError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )

# Register routers
app.include_router(functions_router)
app.include_router(auth_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(roles_router, prefix="/api")
app.include_router(permissions_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
