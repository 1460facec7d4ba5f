"""Celery tasks for Authority status synchronization: targeted sync and scheduled poll."""

from __future__ import annotations

import asyncio
import logging
import uuid

from celery_app import celery
from src.database.engine import engine
from src.database.session import session_scope
from src.modules.authority.client import close_all_clients
from src.modules.authority.token_manager import get_token_manager

logger = logging.getLogger(__name__)


async def _release_loop_resources() -> None:
    """Drop everything bound to the event loop that ``asyncio.run`` is about to close."""
    await close_all_clients()
    get_token_manager().reset()
    await engine.dispose()


async def _sync_document_async(document_id: str) -> dict:
    from src.modules.status_sync.service import StatusSyncService

    try:
        async with session_scope() as session:
            result = await StatusSyncService(session).sync_document(uuid.UUID(document_id))
    finally:
        await _release_loop_resources()

    return result.model_dump()


async def _poll_statuses_async() -> dict:
    from src.modules.status_sync.service import StatusSyncService

    try:
        async with session_scope() as session:
            result = await StatusSyncService(session).sync_all()
    finally:
        await _release_loop_resources()

    return result.model_dump()


@celery.task(name="src.modules.status_sync.tasks.sync_document_status", bind=True, max_retries=3)
def sync_document_status(self, document_id: str):
    """Refresh one document's Authority status (queued after delivery)."""
    try:
        result = asyncio.run(_sync_document_async(document_id))
    except Exception as exc:
        logger.exception("sync_document_status failed for %s", document_id)
        raise self.retry(exc=exc, countdown=30)

    logger.info("sync_document_status complete for %s: %s", document_id, result)
    return result


@celery.task(name="src.modules.status_sync.tasks.poll_authority_statuses")
def poll_authority_statuses():
    """Poll the Authority for every status change since the stored cursor."""
    result = asyncio.run(_poll_statuses_async())
    logger.info(
        "poll_authority_statuses complete: %d processed, %d changed, %d error(s)",
        result["total_processed"], result["changed_count"], len(result["errors"]),
    )
    return result
