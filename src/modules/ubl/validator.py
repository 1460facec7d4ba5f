"""Payload validation ahead of XML rendering.

Collects every violated field into a single ``ValidationException`` so the
caller can show all problems at once. Missing or invalid billing references
on credit/debit notes surface as ``DocumentReferenceException``.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ValidationError

from src.exceptions import DocumentReferenceException, ValidationException
from src.models.enums import DocumentKind
from src.modules.ubl.schemas import (
    CreditNotePayload,
    DebitNotePayload,
    DocumentPayload,
    InvoicePayload,
)

logger = logging.getLogger(__name__)

_PAYLOAD_MODELS: dict[DocumentKind, type[BaseModel]] = {
    DocumentKind.INVOICE: InvoicePayload,
    DocumentKind.CREDIT_NOTE: CreditNotePayload,
    DocumentKind.DEBIT_NOTE: DebitNotePayload,
}


def _format_errors(exc: ValidationError) -> list[dict]:
    details = []
    for error in exc.errors(include_url=False):
        field = ".".join(str(part) for part in error["loc"])
        details.append({"field": field, "message": error["msg"]})
    return details


def validate_document_payload(data: dict[str, Any] | DocumentPayload) -> DocumentPayload:
    """Validate an assembled payload and return its typed model.

    ``data`` must carry a ``kind`` key. Raises ``ValidationException`` listing
    every violation, or ``DocumentReferenceException`` when any violation sits
    under ``billing_reference``.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump()

    raw_kind = data.get("kind")
    try:
        kind = DocumentKind(raw_kind)
    except ValueError:
        raise ValidationException(
            "Unsupported document kind",
            details=[{"field": "kind", "message": f"Unsupported document kind: {raw_kind!r}"}],
        )

    model = _PAYLOAD_MODELS[kind]
    try:
        return model.model_validate({**data, "kind": kind})
    except ValidationError as exc:
        details = _format_errors(exc)
        logger.info(
            "Payload for %s %s failed validation with %d error(s)",
            kind.value, data.get("id"), len(details),
        )
        if any(d["field"].split(".")[0] == "billing_reference" for d in details):
            raise DocumentReferenceException(
                "Original invoice reference is missing or invalid",
                details=details,
            ) from exc
        raise ValidationException("Document payload failed validation", details=details) from exc
