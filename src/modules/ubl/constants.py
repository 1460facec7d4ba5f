"""UBL wire-format constants: namespaces and per-kind element names."""

from src.models.enums import DocumentKind, DocumentTypeCode, TaxSchemeId

UBL_VERSION = "2.1"
TYPE_CODE_LIST_ID = "UN/ECE 1001 Subset"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

NS_CAC = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
NS_CBC = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"

ROOT_NAMESPACES: dict[DocumentKind, str] = {
    DocumentKind.INVOICE: "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2",
    DocumentKind.CREDIT_NOTE: "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2",
    DocumentKind.DEBIT_NOTE: "urn:oasis:names:specification:ubl:schema:xsd:DebitNote-2",
}

# The debit note totals aggregate is named differently by the Authority format.
MONETARY_TOTAL_ELEMENT: dict[DocumentKind, str] = {
    DocumentKind.INVOICE: "LegalMonetaryTotal",
    DocumentKind.CREDIT_NOTE: "LegalMonetaryTotal",
    DocumentKind.DEBIT_NOTE: "RequestedMonetaryTotal",
}

LINE_ELEMENT: dict[DocumentKind, str] = {
    DocumentKind.INVOICE: "InvoiceLine",
    DocumentKind.CREDIT_NOTE: "CreditNoteLine",
    DocumentKind.DEBIT_NOTE: "DebitNoteLine",
}

QUANTITY_ELEMENT: dict[DocumentKind, str] = {
    DocumentKind.INVOICE: "InvoicedQuantity",
    DocumentKind.CREDIT_NOTE: "CreditedQuantity",
    DocumentKind.DEBIT_NOTE: "DebitedQuantity",
}

# Authority submit envelope ``document_type`` values
SUBMIT_DOCUMENT_TYPES: dict[DocumentKind, str] = {
    DocumentKind.INVOICE: "INVOICE",
    DocumentKind.CREDIT_NOTE: "CREDIT_NOTE",
    DocumentKind.DEBIT_NOTE: "DEBIT_NOTE",
}

ALLOWED_TYPE_CODES: dict[DocumentKind, set[str]] = {
    DocumentKind.INVOICE: {
        DocumentTypeCode.COMMERCIAL_INVOICE.value,
        DocumentTypeCode.TAX_INVOICE.value,
    },
    DocumentKind.CREDIT_NOTE: {DocumentTypeCode.CREDIT_NOTE.value},
    DocumentKind.DEBIT_NOTE: {DocumentTypeCode.DEBIT_NOTE.value},
}

TAX_SCHEME_NAMES: dict[TaxSchemeId, str] = {
    TaxSchemeId.VAT: "Value Added Tax",
    TaxSchemeId.SP: "Specific Tax",
    TaxSchemeId.PLT: "Public Lighting Tax",
    TaxSchemeId.AT: "Accommodation Tax",
}

DEFAULT_UNIT_CODE = "none"
