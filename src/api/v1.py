"""Centralized v1 API router: all module routers are included here."""

from fastapi import APIRouter

from src.modules.authority.router import router as provider_router
from src.modules.delivery.router import router as delivery_router
from src.modules.status_sync.router import router as status_sync_router
from src.modules.submission.router import router as submission_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(submission_router)
v1_router.include_router(delivery_router)
v1_router.include_router(status_sync_router)
v1_router.include_router(provider_router)
