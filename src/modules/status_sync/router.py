"""Status sync API router: on-demand sync and Authority webhooks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.app import limiter
from src.database.session import get_db
from src.modules.status_sync.schemas import (
    BulkSyncResult,
    DocumentSyncResult,
    SyncRequest,
    WebhookEvent,
    WebhookResult,
)
from src.modules.status_sync.service import StatusSyncService

router = APIRouter(tags=["status-sync"])


@router.post("/sync-status", response_model=DocumentSyncResult | BulkSyncResult)
@limiter.limit("10/minute")
async def sync_status(
    request: Request,
    body: SyncRequest | None = None,
    session: AsyncSession = Depends(get_db),
):
    service = StatusSyncService(session)
    if body is not None and body.document_id is not None:
        return await service.sync_document(body.document_id)
    return await service.sync_all()


@router.post("/webhooks/authority", response_model=WebhookResult)
async def receive_authority_webhook(
    event: WebhookEvent,
    session: AsyncSession = Depends(get_db),
):
    service = StatusSyncService(session)
    return await service.apply_webhook_event(event)


@router.get("/webhooks/authority")
async def verify_authority_webhook(challenge: str | None = Query(None)) -> dict:
    """Echo the verification challenge the Authority sends when registering the hook."""
    if challenge:
        return {"challenge": challenge}
    return {"message": "Authority webhook endpoint"}
