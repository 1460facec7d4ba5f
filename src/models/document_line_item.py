"""DocumentLineItem model: ordered lines of an e-invoicing document."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.base import Base, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from src.models.document import EInvoiceDocument


class DocumentLineItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "einvoice_line_items"

    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("einvoice_documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")

    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 6), nullable=False)
    unit_code: Mapped[str] = mapped_column(String(20), nullable=False, server_default="none")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)
    # Fraction, e.g. 0.10 for 10 %
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 4), nullable=False, server_default="0"
    )

    # Per-line adjustments
    allowance_reason: Mapped[str | None] = mapped_column(String(255))
    allowance_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))
    charge_reason: Mapped[str | None] = mapped_column(String(255))
    charge_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))

    # Computed
    line_total: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, server_default="0"
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, server_default="0"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped[EInvoiceDocument] = relationship(
        "EInvoiceDocument", back_populates="line_items", lazy="noload"
    )

    __table_args__ = (
        Index("ix_einvoice_line_items_document_id", "document_id", "position"),
    )
