"""Route handlers for the admission service."""

from fastapi import APIRouter

from admission.routes import admin, health

# Create main router
router = APIRouter()
router.include_router(health.router, tags=["Health"])

admin_router = APIRouter()
admin_router.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

__all__ = ["router", "admin_router"]
