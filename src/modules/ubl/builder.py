"""UBL 2.1 XML builders for invoices, credit notes and debit notes.

All builders are pure: the same payload always renders to the same bytes.
Output follows the Authority's published element order, so elements are
emitted by hand rather than through a generic serializer.
"""

from __future__ import annotations

from decimal import Decimal
from xml.sax.saxutils import escape

from src.models.enums import DocumentKind
from src.modules.ubl.constants import (
    LINE_ELEMENT,
    MONETARY_TOTAL_ELEMENT,
    NS_CAC,
    NS_CBC,
    QUANTITY_ELEMENT,
    ROOT_NAMESPACES,
    TYPE_CODE_LIST_ID,
    UBL_VERSION,
    XML_DECLARATION,
)
from src.modules.ubl.schemas import (
    AdditionalDocumentReference,
    AllowanceCharge,
    BillingReference,
    CreditNotePayload,
    DebitNotePayload,
    DocumentPayload,
    InvoicePayload,
    LineItem,
    MonetaryTotal,
    Party,
    TaxCategory,
    TaxTotal,
)

_CENT = Decimal("0.01")
_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def _escape(value: object) -> str:
    if value is None:
        return ""
    return escape(str(value), _QUOTE_ENTITIES)


def _amount(value: Decimal) -> str:
    return format(Decimal(value).quantize(_CENT), "f")


def _number(value: Decimal) -> str:
    """Fixed-point rendering with trailing zeros dropped (``10.0000`` -> ``10``)."""
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


def _money(tag: str, value: Decimal, currency: str) -> str:
    return f'<cbc:{tag} currencyID="{_escape(currency)}">{_amount(value)}</cbc:{tag}>'


def _text(tag: str, value: object) -> str:
    return f"<cbc:{tag}>{_escape(value)}</cbc:{tag}>"


def _optional(tag: str, value: object) -> str:
    return _text(tag, value) if value else ""


def _open_root(kind: DocumentKind) -> str:
    root = _root_name(kind)
    return (
        f'<{root} xmlns:cac="{NS_CAC}" xmlns:cbc="{NS_CBC}" '
        f'xmlns="{ROOT_NAMESPACES[kind]}">'
    )


def _root_name(kind: DocumentKind) -> str:
    return {
        DocumentKind.INVOICE: "Invoice",
        DocumentKind.CREDIT_NOTE: "CreditNote",
        DocumentKind.DEBIT_NOTE: "DebitNote",
    }[kind]


# ---------------------------------------------------------------------------
# Shared renderers
# ---------------------------------------------------------------------------


def render_party(party: Party) -> str:
    address = party.postal_address
    parts = [
        "<cac:Party>",
        _text("EndpointID", party.endpoint_id),
        f"<cac:PartyName>{_text('Name', party.party_name)}</cac:PartyName>",
        "<cac:PostalAddress>",
        _optional("Floor", address.floor),
        _optional("Room", address.room),
        _text("StreetName", address.street_name),
        _optional("AdditionalStreetName", address.additional_street_name),
        _optional("BuildingName", address.building_name),
        _text("CityName", address.city_name),
        _optional("PostalZone", address.postal_zone),
        f"<cac:Country>{_text('IdentificationCode', address.country_code)}</cac:Country>",
        "</cac:PostalAddress>",
        "<cac:PartyTaxScheme>",
        _text("CompanyID", party.party_tax_scheme.company_id),
        f"<cac:TaxScheme>{_text('ID', party.party_tax_scheme.tax_scheme.id.value)}</cac:TaxScheme>",
        "</cac:PartyTaxScheme>",
        "<cac:PartyLegalEntity>",
        _text("RegistrationName", party.party_legal_entity.registration_name),
        _text("CompanyID", party.party_legal_entity.company_id),
        "</cac:PartyLegalEntity>",
    ]
    if party.contact is not None:
        parts += [
            "<cac:Contact>",
            _optional("Telephone", party.contact.telephone),
            _optional("ElectronicMail", party.contact.electronic_mail),
            "</cac:Contact>",
        ]
    parts.append("</cac:Party>")
    return "".join(parts)


def _render_tax_category(category: TaxCategory, tag: str = "TaxCategory") -> str:
    return (
        f"<cac:{tag}>"
        + _text("ID", category.id.value)
        + _text("Percent", _number(category.percent))
        + f"<cac:TaxScheme>{_text('ID', category.tax_scheme.id.value)}</cac:TaxScheme>"
        + f"</cac:{tag}>"
    )


def render_tax_total(tax_total: TaxTotal, currency: str, max_subtotals: int | None = None) -> str:
    subtotals = tax_total.tax_subtotals
    if max_subtotals is not None:
        subtotals = subtotals[:max_subtotals]
    parts = ["<cac:TaxTotal>", _money("TaxAmount", tax_total.tax_amount, currency)]
    for subtotal in subtotals:
        parts += [
            "<cac:TaxSubtotal>",
            _money("TaxableAmount", subtotal.taxable_amount, currency),
            _money("TaxAmount", subtotal.tax_amount, currency),
            _render_tax_category(subtotal.tax_category),
            "</cac:TaxSubtotal>",
        ]
    parts.append("</cac:TaxTotal>")
    return "".join(parts)


def render_allowance_charge(allowance_charge: AllowanceCharge, currency: str) -> str:
    indicator = "true" if allowance_charge.charge_indicator else "false"
    return (
        "<cac:AllowanceCharge>"
        + _text("ChargeIndicator", indicator)
        + _optional("AllowanceChargeReason", allowance_charge.reason)
        + _money("Amount", allowance_charge.amount, currency)
        + "</cac:AllowanceCharge>"
    )


def render_line(line: LineItem, currency: str, kind: DocumentKind) -> str:
    element = LINE_ELEMENT[kind]
    quantity_tag = QUANTITY_ELEMENT[kind]
    # Lines carry a single tax subtotal; it also classifies the item.
    first_subtotal = line.tax_total.tax_subtotals[0] if line.tax_total and line.tax_total.tax_subtotals else None

    parts = [
        f"<cac:{element}>",
        _text("ID", line.id),
        f'<cbc:{quantity_tag} unitCode="{_escape(line.unit_code)}">'
        f"{_number(line.quantity)}</cbc:{quantity_tag}>",
        _money("LineExtensionAmount", line.line_extension_amount, currency),
    ]
    parts += [render_allowance_charge(ac, currency) for ac in line.allowance_charges]
    if line.tax_total is not None:
        parts.append(render_tax_total(line.tax_total, currency, max_subtotals=1))
    parts += [
        "<cac:Item>",
        _optional("Description", line.item.description),
        _text("Name", line.item.name),
    ]
    if first_subtotal is not None:
        parts.append(_render_tax_category(first_subtotal.tax_category, tag="ClassifiedTaxCategory"))
    parts += [
        "</cac:Item>",
        f"<cac:Price>{_money('PriceAmount', line.price_amount, currency)}</cac:Price>",
        f"</cac:{element}>",
    ]
    return "".join(parts)


def render_monetary_total(total: MonetaryTotal, currency: str, kind: DocumentKind) -> str:
    element = MONETARY_TOTAL_ELEMENT[kind]
    parts = [
        f"<cac:{element}>",
        _money("LineExtensionAmount", total.line_extension_amount, currency),
        _money("TaxExclusiveAmount", total.tax_exclusive_amount, currency),
        _money("TaxInclusiveAmount", total.tax_inclusive_amount, currency),
    ]
    if total.allowance_total_amount is not None:
        parts.append(_money("AllowanceTotalAmount", total.allowance_total_amount, currency))
    if total.charge_total_amount is not None:
        parts.append(_money("ChargeTotalAmount", total.charge_total_amount, currency))
    if total.prepaid_amount is not None:
        parts.append(_money("PrepaidAmount", total.prepaid_amount, currency))
    parts += [_money("PayableAmount", total.payable_amount, currency), f"</cac:{element}>"]
    return "".join(parts)


def _render_billing_reference(reference: BillingReference) -> str:
    return (
        "<cac:BillingReference><cac:InvoiceDocumentReference>"
        + _text("ID", reference.invoice_id)
        + _optional("UUID", reference.invoice_uuid)
        + "</cac:InvoiceDocumentReference></cac:BillingReference>"
    )


def _render_additional_reference(reference: AdditionalDocumentReference) -> str:
    parts = [
        "<cac:AdditionalDocumentReference>",
        _text("ID", reference.id),
        _optional("DocumentDescription", reference.document_description),
    ]
    if reference.embedded_document_binary_object or reference.external_reference_uri:
        parts += [
            "<cac:Attachment>",
            _optional("EmbeddedDocumentBinaryObject", reference.embedded_document_binary_object),
        ]
        if reference.external_reference_uri:
            parts.append(
                f"<cac:ExternalReference>{_text('URI', reference.external_reference_uri)}</cac:ExternalReference>"
            )
        parts.append("</cac:Attachment>")
    parts.append("</cac:AdditionalDocumentReference>")
    return "".join(parts)


def _render_parties_and_totals(payload: DocumentPayload, kind: DocumentKind) -> str:
    currency = payload.currency_code
    return "".join([
        f"<cac:AccountingSupplierParty>{render_party(payload.supplier)}</cac:AccountingSupplierParty>",
        f"<cac:AccountingCustomerParty>{render_party(payload.customer)}</cac:AccountingCustomerParty>",
        render_tax_total(payload.tax_total, currency),
        render_monetary_total(payload.monetary_total, currency, kind),
        *(render_line(line, currency, kind) for line in payload.lines),
    ])


def _render_note_references(payload: CreditNotePayload | DebitNotePayload) -> str:
    return _render_billing_reference(payload.billing_reference) + "".join(
        _render_additional_reference(ref) for ref in payload.additional_document_references
    )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_invoice_xml(payload: InvoicePayload) -> str:
    """Invoice (380/388): optional due date, no note or billing reference."""
    kind = DocumentKind.INVOICE
    return "".join([
        _open_root(kind),
        _text("UBLVersionID", UBL_VERSION),
        _text("ID", payload.id),
        _text("IssueDate", payload.issue_date.isoformat()),
        _optional("DueDate", payload.due_date.isoformat() if payload.due_date else None),
        f'<cbc:InvoiceTypeCode listID="{TYPE_CODE_LIST_ID}">{_escape(payload.type_code)}</cbc:InvoiceTypeCode>',
        _text("DocumentCurrencyCode", payload.currency_code),
        _render_parties_and_totals(payload, kind),
        f"</{_root_name(kind)}>",
    ])


def build_credit_note_xml(payload: CreditNotePayload) -> str:
    """Credit note (381): optional note, mandatory billing reference."""
    kind = DocumentKind.CREDIT_NOTE
    return "".join([
        XML_DECLARATION,
        _open_root(kind),
        _text("UBLVersionID", UBL_VERSION),
        _text("ID", payload.id),
        _text("IssueDate", payload.issue_date.isoformat()),
        f'<cbc:CreditNoteTypeCode listID="{TYPE_CODE_LIST_ID}">{_escape(payload.type_code)}</cbc:CreditNoteTypeCode>',
        _optional("Note", payload.note),
        _text("DocumentCurrencyCode", payload.currency_code),
        _render_note_references(payload),
        _render_parties_and_totals(payload, kind),
        f"</{_root_name(kind)}>",
    ])


def build_debit_note_xml(payload: DebitNotePayload) -> str:
    """Debit note (383): the note element is always present, totals use RequestedMonetaryTotal."""
    kind = DocumentKind.DEBIT_NOTE
    return "".join([
        XML_DECLARATION,
        _open_root(kind),
        _text("UBLVersionID", UBL_VERSION),
        _text("ID", payload.id),
        _text("IssueDate", payload.issue_date.isoformat()),
        _text("Note", payload.note or ""),
        _text("DocumentCurrencyCode", payload.currency_code),
        _render_note_references(payload),
        _render_parties_and_totals(payload, kind),
        f"</{_root_name(kind)}>",
    ])


def build_document_xml(payload: DocumentPayload) -> str:
    match payload.kind:
        case DocumentKind.INVOICE:
            return build_invoice_xml(payload)
        case DocumentKind.CREDIT_NOTE:
            return build_credit_note_xml(payload)
        case DocumentKind.DEBIT_NOTE:
            return build_debit_note_xml(payload)
    raise ValueError(f"Unsupported document kind: {payload.kind!r}")
