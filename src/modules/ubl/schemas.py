"""Pydantic v2 schemas for the UBL document payload handed to the XML builder."""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator

from src.config import settings
from src.models.enums import DocumentKind, TaxCategoryId, TaxSchemeId
from src.modules.ubl.constants import DEFAULT_UNIT_CODE

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Amount = Annotated[Decimal, Field(ge=0)]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Tax
# ---------------------------------------------------------------------------


class TaxScheme(_Payload):
    id: TaxSchemeId


class TaxCategory(_Payload):
    id: TaxCategoryId
    percent: Amount
    tax_scheme: TaxScheme

    @model_validator(mode="after")
    def _check_rate_matches_category(self) -> TaxCategory:
        if self.id == TaxCategoryId.STANDARD and self.percent <= 0:
            raise ValueError("standard-rated category 'S' requires a percent greater than 0")
        if self.id == TaxCategoryId.ZERO_RATED and self.percent != 0:
            raise ValueError("zero-rated category 'Z' requires a percent of 0")
        return self


class TaxSubtotal(_Payload):
    taxable_amount: Amount
    tax_amount: Amount
    tax_category: TaxCategory


class TaxTotal(_Payload):
    tax_amount: Amount
    tax_subtotals: list[TaxSubtotal] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Parties
# ---------------------------------------------------------------------------


def normalize_country_code(value: str | None) -> str:
    """Normalize to a 2-letter code, defaulting to the local jurisdiction."""
    default = settings.jurisdiction_country_code
    if value is None:
        return default
    code = str(value).strip().upper()
    if not code or code in (default, settings.jurisdiction_country_name):
        return default
    return code[:2]


class PostalAddress(_Payload):
    floor: str | None = None
    room: str | None = None
    street_name: NonEmptyStr
    additional_street_name: str | None = None
    building_name: str | None = None
    city_name: NonEmptyStr
    postal_zone: str | None = None
    country_code: str = Field(default_factory=lambda: settings.jurisdiction_country_code)

    @field_validator("country_code", mode="before")
    @classmethod
    def _normalize_country(cls, value: str | None) -> str:
        return normalize_country_code(value)


class PartyTaxScheme(_Payload):
    company_id: NonEmptyStr
    tax_scheme: TaxScheme


class PartyLegalEntity(_Payload):
    registration_name: NonEmptyStr
    company_id: NonEmptyStr


class PartyContact(_Payload):
    telephone: str | None = None
    electronic_mail: str | None = None

    @field_validator("electronic_mail")
    @classmethod
    def _check_email(cls, value: str | None) -> str | None:
        if value is not None and not _EMAIL_RE.match(value):
            raise ValueError("must be a valid email address")
        return value


class Party(_Payload):
    endpoint_id: NonEmptyStr
    party_name: NonEmptyStr
    postal_address: PostalAddress
    party_tax_scheme: PartyTaxScheme
    party_legal_entity: PartyLegalEntity
    contact: PartyContact | None = None


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------


class AllowanceCharge(_Payload):
    """``charge_indicator`` is False for an allowance (discount), True for a charge."""

    charge_indicator: bool
    reason: str | None = None
    amount: Amount


class Item(_Payload):
    name: NonEmptyStr
    description: str = ""


class LineItem(_Payload):
    id: NonEmptyStr
    quantity: Decimal = Field(gt=0)
    unit_code: NonEmptyStr = DEFAULT_UNIT_CODE
    line_extension_amount: Amount
    allowance_charges: list[AllowanceCharge] = Field(default_factory=list)
    tax_total: TaxTotal | None = None
    item: Item
    price_amount: Amount


class MonetaryTotal(_Payload):
    line_extension_amount: Amount
    tax_exclusive_amount: Amount
    tax_inclusive_amount: Amount
    allowance_total_amount: Amount | None = None
    charge_total_amount: Amount | None = None
    prepaid_amount: Amount | None = None
    payable_amount: Amount


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------


class BillingReference(_Payload):
    invoice_id: NonEmptyStr
    invoice_uuid: str | None = None


class AdditionalDocumentReference(_Payload):
    id: NonEmptyStr
    document_description: str | None = None
    embedded_document_binary_object: str | None = None
    external_reference_uri: str | None = None


# ---------------------------------------------------------------------------
# Documents, tagged by ``kind``
# ---------------------------------------------------------------------------


class _DocumentPayload(_Payload):
    id: NonEmptyStr
    issue_date: date
    currency_code: Annotated[str, StringConstraints(strip_whitespace=True, to_upper=True, min_length=3, max_length=3)]
    supplier: Party
    customer: Party
    tax_total: TaxTotal
    monetary_total: MonetaryTotal
    lines: list[LineItem] = Field(min_length=1)


class InvoicePayload(_DocumentPayload):
    kind: Literal[DocumentKind.INVOICE] = DocumentKind.INVOICE
    type_code: Literal["380", "388"] = "388"
    due_date: date | None = None


class CreditNotePayload(_DocumentPayload):
    kind: Literal[DocumentKind.CREDIT_NOTE] = DocumentKind.CREDIT_NOTE
    type_code: Literal["381"] = "381"
    note: str | None = None
    billing_reference: BillingReference
    additional_document_references: list[AdditionalDocumentReference] = Field(default_factory=list)


class DebitNotePayload(_DocumentPayload):
    kind: Literal[DocumentKind.DEBIT_NOTE] = DocumentKind.DEBIT_NOTE
    type_code: Literal["383"] = "383"
    note: str | None = None
    billing_reference: BillingReference
    additional_document_references: list[AdditionalDocumentReference] = Field(default_factory=list)


DocumentPayload = InvoicePayload | CreditNotePayload | DebitNotePayload
