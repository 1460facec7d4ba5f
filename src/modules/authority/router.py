"""Provider token monitor: inspect and force-refresh the Authority bearer token."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from src.modules.authority.schemas import TokenRefreshResponse, TokenStatusResponse
from src.modules.authority.token_manager import get_token_manager

router = APIRouter(prefix="/provider/token", tags=["provider"])


@router.get("/status", response_model=TokenStatusResponse)
async def get_token_status():
    status = await get_token_manager().status()
    return TokenStatusResponse(**asdict(status))


@router.post("/refresh", response_model=TokenRefreshResponse)
async def refresh_token():
    token = await get_token_manager().force_refresh()
    return TokenRefreshResponse(expires_at=token.expires_at, refreshed=token.refreshed)
