"""DocumentRepository: reads and updates documents for the lifecycle engine."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import NotFoundException
from src.models.customer import Customer
from src.models.document import EInvoiceDocument
from src.models.document_line_item import DocumentLineItem
from src.models.provider import Provider
from src.models.sync_cursor import SyncCursor
from src.models.tenant import Tenant

logger = logging.getLogger(__name__)


class DocumentRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: uuid.UUID) -> EInvoiceDocument:
        result = await self.db.execute(
            select(EInvoiceDocument).where(EInvoiceDocument.id == document_id)
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise NotFoundException(f"Document {document_id} not found")
        return document

    async def find_document(self, document_id: uuid.UUID) -> EInvoiceDocument | None:
        result = await self.db.execute(
            select(EInvoiceDocument).where(EInvoiceDocument.id == document_id)
        )
        return result.scalar_one_or_none()

    async def find_by_authority_uuid(self, authority_uuid: str) -> EInvoiceDocument | None:
        result = await self.db.execute(
            select(EInvoiceDocument).where(EInvoiceDocument.authority_uuid == authority_uuid)
        )
        return result.scalar_one_or_none()

    async def get_line_items(self, document_id: uuid.UUID) -> list[DocumentLineItem]:
        result = await self.db.execute(
            select(DocumentLineItem)
            .where(DocumentLineItem.document_id == document_id)
            .order_by(DocumentLineItem.position.asc())
        )
        return list(result.scalars().all())

    async def update_document(self, document_id: uuid.UUID, **values: Any) -> None:
        await self.db.execute(
            update(EInvoiceDocument)
            .where(EInvoiceDocument.id == document_id)
            .values(**values)
        )
        await self.db.flush()

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------

    async def get_tenant(self, tenant_id: uuid.UUID) -> Tenant:
        result = await self.db.execute(select(Tenant).where(Tenant.id == tenant_id))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundException(f"Tenant {tenant_id} not found")
        return tenant

    async def get_customer(self, customer_id: uuid.UUID) -> Customer:
        result = await self.db.execute(select(Customer).where(Customer.id == customer_id))
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFoundException(f"Customer {customer_id} not found")
        return customer

    async def get_active_provider(self) -> Provider | None:
        result = await self.db.execute(
            select(Provider)
            .where(Provider.is_active.is_(True))
            .order_by(Provider.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Sync cursor
    # ------------------------------------------------------------------

    async def get_sync_cursor(self, name: str) -> datetime | None:
        result = await self.db.execute(select(SyncCursor).where(SyncCursor.name == name))
        cursor = result.scalar_one_or_none()
        return cursor.last_synced_at if cursor else None

    async def set_sync_cursor(self, name: str, last_synced_at: datetime) -> None:
        cursor = await self.db.get(SyncCursor, name)
        if cursor is None:
            self.db.add(SyncCursor(name=name, last_synced_at=last_synced_at))
        else:
            cursor.last_synced_at = last_synced_at
        await self.db.flush()
        logger.debug("Sync cursor %s advanced to %s", name, last_synced_at.isoformat())
