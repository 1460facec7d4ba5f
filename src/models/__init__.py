# Import all models so SQLAlchemy metadata is populated for Alembic autogenerate
from src.models.audit import AuditLog
from src.models.customer import Customer
from src.models.document import EInvoiceDocument
from src.models.document_line_item import DocumentLineItem
from src.models.enums import (
    AuditAction,
    AuthorityStatus,
    DeliveryMethod,
    DeliveryStatus,
    DocumentKind,
    DocumentStatus,
    DocumentTypeCode,
    TaxCategoryId,
    TaxSchemeId,
)
from src.models.provider import Provider
from src.models.sync_cursor import SyncCursor
from src.models.tenant import Tenant

__all__ = [
    "AuditAction",
    "AuditLog",
    "AuthorityStatus",
    "Customer",
    "DeliveryMethod",
    "DeliveryStatus",
    "DocumentKind",
    "DocumentLineItem",
    "DocumentStatus",
    "DocumentTypeCode",
    "EInvoiceDocument",
    "Provider",
    "SyncCursor",
    "TaxCategoryId",
    "TaxSchemeId",
    "Tenant",
]
