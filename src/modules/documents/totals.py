"""Line and document total arithmetic."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from src.exceptions import BusinessRuleException
from src.models.document import EInvoiceDocument
from src.models.document_line_item import DocumentLineItem
from src.models.enums import DocumentStatus

_CENT = Decimal("0.01")
_ZERO = Decimal("0")


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def compute_line_totals(
    quantity: Decimal,
    unit_price: Decimal,
    tax_rate: Decimal,
    allowance_amount: Decimal | None = None,
    charge_amount: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """Return ``(line_total, tax_amount)`` for one line.

    ``line_total = round2(quantity * unit_price - allowance + charge)`` and
    the tax is ``round2(line_total * tax_rate)`` with ``tax_rate`` a fraction.
    """
    gross = Decimal(quantity) * Decimal(unit_price)
    line_total = round2(gross - (allowance_amount or _ZERO) + (charge_amount or _ZERO))
    tax_amount = round2(line_total * Decimal(tax_rate))
    return line_total, tax_amount


def apply_line_totals(line: DocumentLineItem) -> DocumentLineItem:
    line.line_total, line.tax_amount = compute_line_totals(
        line.quantity,
        line.unit_price,
        line.tax_rate,
        line.allowance_amount,
        line.charge_amount,
    )
    return line


def recalculate_totals(document: EInvoiceDocument, lines: Iterable[DocumentLineItem]) -> EInvoiceDocument:
    """Recompute every line, then the document subtotal, tax and total."""
    subtotal = _ZERO
    tax = _ZERO
    for line in lines:
        apply_line_totals(line)
        subtotal += line.line_total
        tax += line.tax_amount
    document.subtotal = round2(subtotal)
    document.tax_amount = round2(tax)
    document.total_amount = document.subtotal + document.tax_amount
    return document


def ensure_mutable(document: EInvoiceDocument) -> None:
    """Only local drafts that never reached the Authority may change."""
    if document.status != DocumentStatus.DRAFT or document.authority_uuid is not None:
        raise BusinessRuleException(
            f"Document {document.document_number} can no longer be modified "
            f"(status '{document.status.value}')"
        )
