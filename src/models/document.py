"""EInvoiceDocument model: invoices, credit notes and debit notes in one table."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, TenantScopedMixin, TimestampMixin, UUIDPrimaryKeyMixin
from src.models.enums import (
    AuthorityStatus,
    DeliveryMethod,
    DeliveryStatus,
    DocumentKind,
    DocumentStatus,
)

if TYPE_CHECKING:
    from src.models.customer import Customer
    from src.models.document_line_item import DocumentLineItem
    from src.models.tenant import Tenant


class EInvoiceDocument(UUIDPrimaryKeyMixin, TenantScopedMixin, TimestampMixin, Base):
    __tablename__ = "einvoice_documents"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Identity
    kind: Mapped[DocumentKind] = mapped_column(
        SQLAlchemyEnum(DocumentKind, name="documentkind", create_type=False),
        nullable=False,
    )
    document_number: Mapped[str] = mapped_column(String(50), nullable=False)
    type_code: Mapped[str] = mapped_column(String(3), nullable=False)

    # Credit/debit notes only
    original_invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("einvoice_documents.id", ondelete="SET NULL"),
    )
    note: Mapped[str | None] = mapped_column(Text)

    # Dates
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date)

    # Amounts
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, server_default="USD"
    )
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, server_default="0"
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, server_default="0"
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, server_default="0"
    )

    # Local lifecycle
    status: Mapped[DocumentStatus] = mapped_column(
        SQLAlchemyEnum(DocumentStatus, name="documentstatus", create_type=False),
        nullable=False,
        server_default="DRAFT",
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    xml_content: Mapped[str | None] = mapped_column(Text)

    # Authority side
    authority_uuid: Mapped[str | None] = mapped_column(String(100), unique=True)
    authority_status: Mapped[AuthorityStatus | None] = mapped_column(
        SQLAlchemyEnum(AuthorityStatus, name="authoritystatus", create_type=False),
    )
    authority_status_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    verification_url: Mapped[str | None] = mapped_column(Text)

    # Delivery
    delivery_status: Mapped[DeliveryStatus | None] = mapped_column(
        SQLAlchemyEnum(DeliveryStatus, name="deliverystatus", create_type=False),
    )
    delivery_method: Mapped[DeliveryMethod | None] = mapped_column(
        SQLAlchemyEnum(DeliveryMethod, name="deliverymethod", create_type=False),
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    delivery_error: Mapped[str | None] = mapped_column(Text)

    # Relationships
    tenant: Mapped[Tenant] = relationship("Tenant", lazy="noload")
    customer: Mapped[Customer] = relationship("Customer", lazy="noload")
    original_invoice: Mapped[EInvoiceDocument | None] = relationship(
        "EInvoiceDocument", remote_side="EInvoiceDocument.id", lazy="noload"
    )
    line_items: Mapped[list[DocumentLineItem]] = relationship(
        "DocumentLineItem",
        back_populates="document",
        lazy="noload",
        cascade="all, delete-orphan",
        order_by="DocumentLineItem.position",
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "kind", "document_number",
            name="uq_einvoice_documents_tenant_kind_number",
        ),
        Index("ix_einvoice_documents_tenant_id", "tenant_id"),
        Index("ix_einvoice_documents_customer_id", "customer_id"),
        Index("ix_einvoice_documents_status", "status"),
        Index(
            "ix_einvoice_documents_authority_status",
            "authority_status",
            postgresql_where="authority_uuid IS NOT NULL",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<EInvoiceDocument id={self.id} kind={self.kind} "
            f"number={self.document_number} status={self.status}>"
        )
