from __future__ import annotations

from fastapi import APIRouter

from .health import router as health_router
from .routes.generations import router as generations_router
from .routes.profile import router as profile_router
from .routes.webhooks import router as webhooks_router


def build_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health_router, prefix="/health", tags=["health"])
    router.include_router(generations_router, prefix="/api/vton", tags=["vton"])
    router.include_router(webhooks_router, prefix="/api/vton", tags=["vton-webhooks"])
    router.include_router(profile_router, prefix="/api/profile", tags=["profile"])
    return router
