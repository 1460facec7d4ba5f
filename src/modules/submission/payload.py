"""Assemble a UBL payload from stored documents, lines and parties."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from src.models.customer import Customer
from src.models.document import EInvoiceDocument
from src.models.document_line_item import DocumentLineItem
from src.models.enums import DocumentKind, DocumentTypeCode, TaxCategoryId, TaxSchemeId
from src.models.tenant import Tenant
from src.modules.ubl.constants import DEFAULT_UNIT_CODE
from src.modules.ubl.schemas import normalize_country_code

_HUNDRED = Decimal("100")


def _tax_category(tax_rate: Decimal) -> dict[str, Any]:
    percent = (Decimal(tax_rate) * _HUNDRED).normalize()
    category = TaxCategoryId.STANDARD if percent > 0 else TaxCategoryId.ZERO_RATED
    return {
        "id": category,
        "percent": percent,
        "tax_scheme": {"id": TaxSchemeId.VAT},
    }


def _address(address: str | None, city: str | None, postal_code: str | None, country: str | None) -> dict[str, Any]:
    return {
        "street_name": address or "",
        "city_name": city or "",
        "postal_zone": postal_code or None,
        "country_code": normalize_country_code(country),
    }


def supplier_party(tenant: Tenant, endpoint_id: str) -> dict[str, Any]:
    company_id = tenant.tax_id or ""
    return {
        "endpoint_id": endpoint_id,
        "party_name": tenant.name,
        "postal_address": _address(tenant.address, tenant.city, tenant.postal_code, tenant.country),
        "party_tax_scheme": {"company_id": company_id, "tax_scheme": {"id": TaxSchemeId.VAT}},
        "party_legal_entity": {
            "registration_name": tenant.name,
            "company_id": tenant.authority_moc_id or company_id,
        },
    }


def customer_party(customer: Customer) -> dict[str, Any]:
    endpoint_id = customer.authority_endpoint_id or customer.tax_id or ""
    party: dict[str, Any] = {
        "endpoint_id": endpoint_id,
        "party_name": customer.business_name or customer.name,
        "postal_address": _address(customer.address, customer.city, customer.postal_code, customer.country),
        "party_tax_scheme": {"company_id": customer.tax_id or "", "tax_scheme": {"id": TaxSchemeId.VAT}},
        "party_legal_entity": {
            "registration_name": customer.business_name or customer.name,
            "company_id": customer.registration_number or customer.tax_id or endpoint_id,
        },
    }
    if customer.email or customer.phone:
        party["contact"] = {
            "telephone": customer.phone or None,
            "electronic_mail": customer.email or None,
        }
    return party


def line_payload(line: DocumentLineItem, index: int) -> dict[str, Any]:
    allowance_charges = []
    if line.allowance_amount:
        allowance_charges.append({
            "charge_indicator": False,
            "reason": line.allowance_reason,
            "amount": line.allowance_amount,
        })
    if line.charge_amount:
        allowance_charges.append({
            "charge_indicator": True,
            "reason": line.charge_reason,
            "amount": line.charge_amount,
        })
    category = _tax_category(line.tax_rate)
    return {
        "id": str(index),
        "quantity": line.quantity,
        "unit_code": line.unit_code or DEFAULT_UNIT_CODE,
        "line_extension_amount": line.line_total,
        "allowance_charges": allowance_charges,
        "tax_total": {
            "tax_amount": line.tax_amount,
            "tax_subtotals": [{
                "taxable_amount": line.line_total,
                "tax_amount": line.tax_amount,
                "tax_category": category,
            }],
        },
        "item": {"name": line.description, "description": line.description},
        "price_amount": line.unit_price,
    }


def document_tax_total(document: EInvoiceDocument, lines: list[DocumentLineItem]) -> dict[str, Any]:
    """Aggregate line taxes per (scheme, category, percent) in first-seen order."""
    groups: dict[tuple, dict[str, Any]] = {}
    for line in lines:
        category = _tax_category(line.tax_rate)
        key = (category["tax_scheme"]["id"], category["id"], category["percent"])
        group = groups.setdefault(key, {
            "taxable_amount": Decimal("0"),
            "tax_amount": Decimal("0"),
            "tax_category": category,
        })
        group["taxable_amount"] += line.line_total
        group["tax_amount"] += line.tax_amount
    return {"tax_amount": document.tax_amount, "tax_subtotals": list(groups.values())}


def assemble_payload(
    document: EInvoiceDocument,
    lines: list[DocumentLineItem],
    tenant: Tenant,
    customer: Customer,
    supplier_endpoint_id: str,
    original_invoice: EInvoiceDocument | None = None,
) -> dict[str, Any]:
    """Build the raw payload dict handed to ``validate_document_payload``."""
    payload: dict[str, Any] = {
        "kind": document.kind,
        "id": document.document_number,
        "issue_date": document.issue_date,
        "currency_code": document.currency,
        "supplier": supplier_party(tenant, supplier_endpoint_id),
        "customer": customer_party(customer),
        "tax_total": document_tax_total(document, lines),
        "monetary_total": {
            "line_extension_amount": document.subtotal,
            "tax_exclusive_amount": document.subtotal,
            "tax_inclusive_amount": document.total_amount,
            "payable_amount": document.total_amount,
        },
        "lines": [line_payload(line, index) for index, line in enumerate(lines, start=1)],
    }

    match document.kind:
        case DocumentKind.INVOICE:
            payload["type_code"] = document.type_code or DocumentTypeCode.TAX_INVOICE.value
            payload["due_date"] = document.due_date
        case DocumentKind.CREDIT_NOTE | DocumentKind.DEBIT_NOTE:
            payload["note"] = document.note
            if original_invoice is not None and original_invoice.document_number:
                payload["billing_reference"] = {
                    "invoice_id": original_invoice.document_number,
                    "invoice_uuid": original_invoice.authority_uuid,
                }
    return payload
