"""Status synchronization: reconcile local documents with the Authority.

Three entry points feed the same status update:

* ``sync_document``: targeted refresh of one document (after delivery, on demand)
* ``sync_all``: bulk poll of every change since the stored cursor
* ``apply_webhook_event``: push notifications from the Authority
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import AppException, AuthorityTransportException, NotFoundException, ValidationException
from src.models.document import EInvoiceDocument
from src.models.enums import AuditAction, AuthorityStatus, DeliveryStatus
from src.modules.audit.service import AuditService
from src.modules.authority.client import AuthorityClient, get_authority_client
from src.modules.authority.constants import DELIVERED_AUTHORITY_STATUSES, TERMINAL_AUTHORITY_STATUSES
from src.modules.authority.schemas import DocumentDetail
from src.modules.authority.token_manager import ProviderToken, TokenManager, get_token_manager
from src.modules.documents.repository import DocumentRepository
from src.modules.status_sync.constants import (
    BULK_SYNC_CURSOR,
    EVENT_DOCUMENT_DELIVERED,
    EVENT_DOCUMENT_RECEIVED,
    EVENT_DOCUMENT_STATUS_UPDATED,
    EVENT_ENTITY_REVOKED,
    LOCAL_STATUS_FOR_AUTHORITY,
)
from src.modules.status_sync.schemas import (
    BulkSyncResult,
    DocumentSyncResult,
    WebhookEvent,
    WebhookResult,
)

logger = logging.getLogger(__name__)


def parse_authority_status(value: str | None) -> AuthorityStatus | None:
    if not value:
        return None
    try:
        return AuthorityStatus(value.strip().upper())
    except ValueError:
        return None


def project_delivery_status(status: AuthorityStatus | str | None) -> DeliveryStatus:
    """Delivery sub-state implied by an Authority status.

    Every status from DELIVERED onwards means the customer has the document;
    VALID and anything unrecognized leave delivery pending.
    """
    if not isinstance(status, AuthorityStatus):
        status = parse_authority_status(status)
    if status in DELIVERED_AUTHORITY_STATUSES:
        return DeliveryStatus.DELIVERED
    return DeliveryStatus.PENDING


def _is_terminal(document: EInvoiceDocument) -> bool:
    return document.authority_status in TERMINAL_AUTHORITY_STATUSES


class StatusSyncService:
    def __init__(
        self,
        db: AsyncSession,
        token_manager: TokenManager | None = None,
        client_factory: Callable[[str], AuthorityClient] | None = None,
        event_pause_seconds: float | None = None,
    ):
        self.db = db
        self.repo = DocumentRepository(db)
        self.audit = AuditService(db)
        self.token_manager = token_manager or get_token_manager()
        self.client_factory = client_factory or get_authority_client
        self.event_pause_seconds = (
            settings.status_sync_event_pause_seconds if event_pause_seconds is None else event_pause_seconds
        )

    # ------------------------------------------------------------------
    # Shared update
    # ------------------------------------------------------------------

    async def _apply_status(self, document: EInvoiceDocument, new_status: AuthorityStatus) -> bool:
        """Write ``new_status`` and its projections; return True if anything changed."""
        previous = document.authority_status
        if previous == new_status:
            return False

        values: dict = {
            "authority_status": new_status,
            "authority_status_updated_at": datetime.now(UTC),
        }
        projected = project_delivery_status(new_status)
        # Never downgrade a recorded delivery outcome back to pending
        if projected == DeliveryStatus.DELIVERED or document.delivery_status is None:
            values["delivery_status"] = projected
        local_status = LOCAL_STATUS_FOR_AUTHORITY.get(new_status)
        if local_status is not None:
            values["status"] = local_status

        await self.repo.update_document(document.id, **values)
        logger.info(
            "Authority status of %s changed: %s -> %s",
            document.document_number,
            previous.value if previous else None,
            new_status.value,
        )
        return True

    async def _fetch_detail(self, token: ProviderToken, authority_uuid: str) -> DocumentDetail | None:
        """Detail lookup retried on transport errors; None when not visible yet."""
        client = self.client_factory(token.base_url)
        attempts = settings.status_sync_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await client.get_document_detail(token.access_token, authority_uuid)
            except AuthorityTransportException as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Detail lookup for %s failed (attempt %d/%d): %s",
                    authority_uuid, attempt, attempts, exc.message,
                )
        return None

    # ------------------------------------------------------------------
    # Targeted
    # ------------------------------------------------------------------

    async def sync_document(self, document_id: uuid.UUID) -> DocumentSyncResult:
        document = await self.repo.find_document(document_id)
        if document is None:
            return DocumentSyncResult(success=False, error="Document not found")
        if not document.authority_uuid:
            return DocumentSyncResult(success=False, error="Document has not been submitted to the Authority")

        old_status = document.authority_status.value if document.authority_status else None
        if _is_terminal(document):
            return DocumentSyncResult(success=True, old_status=old_status, new_status=old_status)

        try:
            token = await self.token_manager.ensure()
            detail = await self._fetch_detail(token, document.authority_uuid)
        except Exception as exc:
            logger.exception("Status sync for document %s failed", document_id)
            return DocumentSyncResult(success=False, old_status=old_status, error=str(exc))

        if detail is None:
            logger.info("Document %s not visible at the Authority yet", document.authority_uuid)
            return DocumentSyncResult(
                success=True, old_status=old_status, error="Document not found at the Authority",
            )

        new_status = parse_authority_status(detail.status)
        if new_status is None:
            logger.warning("Unrecognized Authority status %r for %s", detail.status, document.authority_uuid)
            return DocumentSyncResult(
                success=True, old_status=old_status, new_status=detail.status,
                error=f"Unrecognized Authority status {detail.status}",
            )

        changed = await self._apply_status(document, new_status)
        if changed:
            await self.audit.record(
                action=AuditAction.SYNC_STATUS,
                entity_type=document.kind.value.lower(),
                entity_id=document.id,
                tenant_id=document.tenant_id,
                description=f"Authority status {old_status} -> {new_status.value}",
                metadata={"authority_uuid": document.authority_uuid, "source": "targeted"},
            )
        return DocumentSyncResult(
            success=True, status_changed=changed, old_status=old_status, new_status=new_status.value,
        )

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def _sync_event(self, token: ProviderToken, authority_uuid: str) -> bool:
        """Process one polled change; return True if the local status changed."""
        document = await self.repo.find_by_authority_uuid(authority_uuid)
        if document is None:
            raise NotFoundException(f"Document {authority_uuid} not found locally")
        if _is_terminal(document):
            return False

        detail = await self.client_factory(token.base_url).get_document_detail(
            token.access_token, authority_uuid,
        )
        if detail is None:
            return False
        new_status = parse_authority_status(detail.status)
        if new_status is None:
            raise ValidationException(f"Unrecognized Authority status {detail.status}")

        old_status = document.authority_status
        changed = await self._apply_status(document, new_status)
        if changed:
            await self.audit.record(
                action=AuditAction.SYNC_STATUS,
                entity_type=document.kind.value.lower(),
                entity_id=document.id,
                tenant_id=document.tenant_id,
                description=(
                    f"Authority status {old_status.value if old_status else None} -> {new_status.value}"
                ),
                metadata={"authority_uuid": authority_uuid, "source": "poll"},
            )
        return changed

    async def sync_all(self) -> BulkSyncResult:
        """Poll every change since the cursor; per-document failures never stop the batch."""
        result = BulkSyncResult()
        poll_started = datetime.now(UTC)
        since = await self.repo.get_sync_cursor(BULK_SYNC_CURSOR)
        if since is None:
            since = poll_started - timedelta(hours=settings.status_sync_default_lookback_hours)

        try:
            token = await self.token_manager.ensure()
            poll = await self.client_factory(token.base_url).poll_documents(token.access_token, since)
        except Exception as exc:
            logger.exception("Polling the Authority for status changes failed")
            result.errors.append(f"Polling failed: {exc}")
            return result

        logger.info("Authority poll since %s returned %d event(s)", since.isoformat(), len(poll.documents))
        for index, event in enumerate(poll.documents):
            result.total_processed += 1
            try:
                # One savepoint per event: a failure rolls back only that document's writes
                async with self.db.begin_nested():
                    changed = await self._sync_event(token, event.document_id)
                if changed:
                    result.changed_count += 1
                result.success_count += 1
            except NotFoundException as exc:
                logger.warning("Authority document %s has no local counterpart", event.document_id)
                result.errors.append(exc.message)
            except Exception as exc:
                message = exc.message if isinstance(exc, AppException) else str(exc)
                logger.exception("Failed to sync Authority document %s", event.document_id)
                result.errors.append(f"{event.document_id}: {message}")
            if self.event_pause_seconds and index < len(poll.documents) - 1:
                await asyncio.sleep(self.event_pause_seconds)

        await self.repo.set_sync_cursor(BULK_SYNC_CURSOR, poll_started)
        return result

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def apply_webhook_event(self, event: WebhookEvent) -> WebhookResult:
        if event.type == EVENT_ENTITY_REVOKED:
            logger.warning("Authority revoked entity %s", event.endpoint_id)
            return WebhookResult(message="Entity revocation noted")
        if event.type not in (EVENT_DOCUMENT_DELIVERED, EVENT_DOCUMENT_RECEIVED, EVENT_DOCUMENT_STATUS_UPDATED):
            logger.warning("Ignoring unknown Authority webhook type %s", event.type)
            return WebhookResult(message="Event type not handled")

        if not event.document_id:
            raise ValidationException(
                "Webhook payload is missing document_id",
                details=[{"field": "document_id", "message": "Field required"}],
            )
        document = await self.repo.find_by_authority_uuid(event.document_id)
        if document is None:
            raise NotFoundException(f"Document {event.document_id} not found")

        old_status = document.authority_status.value if document.authority_status else None
        new_status: AuthorityStatus | None = None
        if event.type == EVENT_DOCUMENT_DELIVERED:
            new_status = AuthorityStatus.DELIVERED
        elif event.type == EVENT_DOCUMENT_STATUS_UPDATED:
            if not event.status:
                raise ValidationException(
                    "Status required for DOCUMENT.STATUS_UPDATED event",
                    details=[{"field": "status", "message": "Field required"}],
                )
            new_status = parse_authority_status(event.status)
            if new_status is None:
                raise ValidationException(
                    f"Invalid status {event.status}",
                    details=[{"field": "status", "message": f"Unknown Authority status {event.status}"}],
                )

        if new_status is None:
            logger.info("Document %s was received by the customer", event.document_id)
            return WebhookResult(message="Event processed, no update needed", document_id=document.id)

        await self._apply_status(document, new_status)
        await self.audit.record(
            action=AuditAction.WEBHOOK_RECEIVED,
            entity_type=document.kind.value.lower(),
            entity_id=document.id,
            tenant_id=document.tenant_id,
            description=f"Authority webhook {event.type} for {event.document_id} (status: {new_status.value})",
            metadata={
                "authority_uuid": event.document_id,
                "event_type": event.type,
                "old_status": old_status,
                "new_status": new_status.value,
            },
        )
        return WebhookResult(
            message="Status updated successfully",
            document_id=document.id,
            old_status=old_status,
            new_status=new_status.value,
        )
