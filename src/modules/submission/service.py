"""Submission orchestrator: validate, build, size-check, submit, then deliver."""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import (
    AuthorityPayloadTooLargeException,
    AuthorityRejectionException,
    DocumentReferenceException,
    ProviderNotConfiguredException,
    SizeLimitException,
)
from src.models.document import EInvoiceDocument
from src.models.enums import AuditAction, AuthorityStatus, DocumentKind, DocumentStatus
from src.modules.audit.service import AuditService
from src.modules.authority.client import AuthorityClient, build_submit_envelope, get_authority_client
from src.modules.authority.constants import LOCALHOST_URL_PATTERN
from src.modules.authority.token_manager import TokenManager, get_token_manager
from src.modules.delivery.schemas import DeliveryResult
from src.modules.delivery.service import DeliveryService
from src.modules.documents.locks import DocumentLockRegistry, document_locks
from src.modules.documents.repository import DocumentRepository
from src.modules.documents.totals import ensure_mutable, recalculate_totals
from src.modules.submission.payload import assemble_payload
from src.modules.submission.schemas import SubmissionResult, XmlPreviewResponse
from src.modules.ubl.builder import build_document_xml
from src.modules.ubl.constants import SUBMIT_DOCUMENT_TYPES
from src.modules.ubl.schemas import DocumentPayload
from src.modules.ubl.validator import validate_document_payload

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024


def rewrite_verification_url(url: str | None) -> str | None:
    """Point sandbox ``localhost`` verification links at the public verification host."""
    if not url:
        return url
    host = settings.authority_verification_host.rstrip("/")
    return re.sub(LOCALHOST_URL_PATTERN, host, url)


def _mib(size: int) -> str:
    return f"{size / _MIB:.2f}MB"


class SubmissionService:
    def __init__(
        self,
        db: AsyncSession,
        token_manager: TokenManager | None = None,
        client_factory: Callable[[str], AuthorityClient] | None = None,
        delivery_service: DeliveryService | None = None,
        locks: DocumentLockRegistry | None = None,
    ):
        self.db = db
        self.repo = DocumentRepository(db)
        self.audit = AuditService(db)
        self.token_manager = token_manager or get_token_manager()
        self.client_factory = client_factory or get_authority_client
        self.locks = locks or document_locks
        self.delivery = delivery_service or DeliveryService(
            db,
            token_manager=self.token_manager,
            client_factory=self.client_factory,
            locks=self.locks,
        )

    # ------------------------------------------------------------------
    # Payload
    # ------------------------------------------------------------------

    async def _resolve_original_invoice(self, document: EInvoiceDocument) -> EInvoiceDocument:
        label = "Credit note" if document.kind == DocumentKind.CREDIT_NOTE else "Debit note"
        if document.original_invoice_id is None:
            raise DocumentReferenceException(
                f"{label} {document.document_number} must reference an original invoice",
                details=[{"field": "billing_reference.invoice_id", "message": "Original invoice is required"}],
            )
        original = await self.repo.find_document(document.original_invoice_id)
        if (
            original is None
            or original.tenant_id != document.tenant_id
            or original.kind != DocumentKind.INVOICE
            or not original.document_number
        ):
            raise DocumentReferenceException(
                f"Original invoice for {label.lower()} {document.document_number} was not found",
                details=[{
                    "field": "billing_reference.invoice_id",
                    "message": f"Invoice {document.original_invoice_id} not found for this tenant",
                }],
            )
        return original

    async def build_payload(self, document: EInvoiceDocument, recalculate: bool = False) -> DocumentPayload:
        """Resolve references and parties, then return the validated payload.

        With ``recalculate`` the document and line totals are recomputed from
        the line items first; the preview leaves stored figures untouched.
        """
        original = None
        if document.kind in (DocumentKind.CREDIT_NOTE, DocumentKind.DEBIT_NOTE):
            original = await self._resolve_original_invoice(document)

        provider = await self.repo.get_active_provider()
        if provider is None or not provider.endpoint_id:
            raise ProviderNotConfiguredException(
                "The Authority provider has no registered endpoint id; cannot identify the supplier"
            )

        lines = await self.repo.get_line_items(document.id)
        if recalculate:
            recalculate_totals(document, lines)
        tenant = await self.repo.get_tenant(document.tenant_id)
        customer = await self.repo.get_customer(document.customer_id)
        raw = assemble_payload(document, lines, tenant, customer, provider.endpoint_id, original)
        return validate_document_payload(raw)

    def check_size(self, payload: DocumentPayload, xml: str) -> tuple[int, int]:
        """Enforce both local ceilings; return ``(xml_size, payload_size)`` in bytes."""
        line_count = len(payload.lines)
        xml_size = len(xml.encode("utf-8"))
        if xml_size > settings.max_xml_size_bytes:
            raise SizeLimitException(
                f"Generated XML file size ({_mib(xml_size)}) exceeds the maximum allowed size of "
                f"{_mib(settings.max_xml_size_bytes)}. This document has {line_count} line items; "
                "reduce the number of line items or split the document.",
                details=[{"line_items": line_count, "xml_size_bytes": xml_size}],
                code="XML_FILE_TOO_LARGE",
            )

        envelope = build_submit_envelope(SUBMIT_DOCUMENT_TYPES[payload.kind], xml)
        payload_size = len(json.dumps(envelope).encode("utf-8"))
        if payload_size > settings.max_payload_size_bytes:
            raise SizeLimitException(
                f"Request payload size ({_mib(payload_size)}) exceeds the Authority API limit. "
                f"This document has {line_count} line items; consider splitting it into "
                "multiple smaller documents.",
                details=[{
                    "line_items": line_count,
                    "xml_size_bytes": xml_size,
                    "payload_size_bytes": payload_size,
                }],
                code="PAYLOAD_TOO_LARGE",
            )
        return xml_size, payload_size

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    async def preview_xml(self, document_id: uuid.UUID) -> XmlPreviewResponse:
        """The XML that was (or would be) submitted. Writes nothing."""
        document = await self.repo.get_document(document_id)
        if document.xml_content:
            xml = document.xml_content
        else:
            xml = build_document_xml(await self.build_payload(document))
        return XmlPreviewResponse(
            document_id=document.id,
            kind=document.kind,
            document_number=document.document_number,
            submitted=document.xml_content is not None,
            xml=xml,
            xml_size_bytes=len(xml.encode("utf-8")),
        )

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(self, document_id: uuid.UUID) -> SubmissionResult:
        async with self.locks.hold(document_id):
            result = await self._submit(document_id)

        try:
            result.delivery = await self.delivery.deliver(document_id)
        except Exception as exc:
            logger.exception("Delivery after submission of document %s failed", document_id)
            result.delivery = DeliveryResult(success=False, message="Delivery failed", error=str(exc))
        return result

    async def _submit(self, document_id: uuid.UUID) -> SubmissionResult:
        document = await self.repo.get_document(document_id)
        ensure_mutable(document)

        payload = await self.build_payload(document, recalculate=True)
        xml = build_document_xml(payload)
        xml_size, payload_size = self.check_size(payload, xml)
        line_count = len(payload.lines)

        token = await self.token_manager.ensure()
        client = self.client_factory(token.base_url)
        try:
            response = await client.submit_document(
                token.access_token, SUBMIT_DOCUMENT_TYPES[document.kind], xml,
            )
        except AuthorityPayloadTooLargeException as exc:
            raise AuthorityPayloadTooLargeException(
                f"The Authority rejected the request as too large ({_mib(payload_size)} payload, "
                f"{line_count} line items) although it is within the advertised limit. "
                "Split the document into smaller documents or reduce the number of line items.",
                details=[{
                    "line_items": line_count,
                    "xml_size_bytes": xml_size,
                    "payload_size_bytes": payload_size,
                    **(exc.details[0] if exc.details else {}),
                }],
                http_status=413,
            ) from exc

        if not response.valid_documents:
            logger.warning(
                "Authority rejected %s %s: %s",
                document.kind.value, document.document_number, response.failure_message,
            )
            raise AuthorityRejectionException(
                response.failure_message,
                details=[{
                    "failed_documents": [f.model_dump() for f in response.failed_documents],
                    "payload": payload.model_dump(mode="json"),
                }],
            )

        accepted = response.valid_documents[0]
        now = datetime.now(UTC)
        verification_url = rewrite_verification_url(accepted.verification_link)
        await self.repo.update_document(
            document_id,
            xml_content=xml,
            authority_uuid=accepted.document_id,
            authority_status=AuthorityStatus.VALID,
            authority_status_updated_at=now,
            verification_url=verification_url,
            status=DocumentStatus.SUBMITTED,
            submitted_at=now,
        )
        await self.audit.record(
            action=AuditAction.SUBMIT_DOCUMENT,
            entity_type=document.kind.value.lower(),
            entity_id=document_id,
            tenant_id=document.tenant_id,
            description=f"Submitted {document.document_number} to the Authority",
            metadata={
                "authority_uuid": accepted.document_id,
                "xml_size_bytes": xml_size,
                "payload_size_bytes": payload_size,
            },
        )
        # Durable before delivery starts; delivery outcomes never roll it back
        await self.db.commit()
        logger.info(
            "Submitted %s %s as %s",
            document.kind.value, document.document_number, accepted.document_id,
        )

        return SubmissionResult(
            document_id=document_id,
            kind=document.kind,
            document_number=document.document_number,
            status=DocumentStatus.SUBMITTED,
            authority_uuid=accepted.document_id,
            authority_status=AuthorityStatus.VALID,
            verification_url=verification_url,
            submitted_at=now,
            xml_size_bytes=xml_size,
            payload_size_bytes=payload_size,
        )
