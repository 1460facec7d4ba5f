"""Delivery engine: Authority network first, email as the fallback."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.exceptions import DeliveryException
from src.models.customer import Customer
from src.models.document import EInvoiceDocument
from src.models.enums import AuditAction, DeliveryMethod, DeliveryStatus
from src.modules.audit.service import AuditService
from src.modules.authority.client import AuthorityClient, get_authority_client
from src.modules.authority.token_manager import TokenManager, get_token_manager
from src.modules.delivery.email import DocumentEmail, EmailResult, EmailService
from src.modules.delivery.schemas import DeliveryResult
from src.modules.documents.locks import DocumentLockRegistry, document_locks
from src.modules.documents.repository import DocumentRepository

logger = logging.getLogger(__name__)


def schedule_status_sync(document_id: uuid.UUID) -> None:
    """Queue a delayed targeted status sync; failures are logged, never raised."""
    from src.modules.status_sync.tasks import sync_document_status

    try:
        sync_document_status.apply_async(
            args=[str(document_id)], countdown=settings.status_sync_delay_seconds,
        )
    except Exception:
        logger.exception("Could not schedule status sync for document %s", document_id)


class DeliveryService:
    def __init__(
        self,
        db: AsyncSession,
        token_manager: TokenManager | None = None,
        client_factory: Callable[[str], AuthorityClient] | None = None,
        email_service: EmailService | None = None,
        locks: DocumentLockRegistry | None = None,
        scheduler: Callable[[uuid.UUID], None] | None = None,
    ):
        self.db = db
        self.repo = DocumentRepository(db)
        self.audit = AuditService(db)
        self.token_manager = token_manager or get_token_manager()
        self.client_factory = client_factory or get_authority_client
        self.email_service = email_service or EmailService()
        self.locks = locks or document_locks
        self.scheduler = scheduler or schedule_status_sync

    async def deliver(self, document_id: uuid.UUID, force_email: bool = False) -> DeliveryResult:
        """Deliver a submitted document and record the outcome on it.

        Never raises for delivery problems: every outcome, including
        unexpected errors, ends up in ``delivery_status``/``delivery_error``
        and in the returned result.
        """
        async with self.locks.hold(document_id):
            document = await self.repo.get_document(document_id)
            try:
                result = await self._deliver(document, force_email)
            except DeliveryException as exc:
                logger.warning("Delivery of %s failed: %s", document.document_number, exc.error)
                result = DeliveryResult(success=False, message=exc.message, error=exc.error, error_code=exc.code)
            except Exception as exc:
                logger.exception("Delivery of document %s failed unexpectedly", document_id)
                result = DeliveryResult(
                    success=False, message="Delivery service error", error=str(exc), error_code="INTERNAL_ERROR",
                )

            await self._record(document, result, force_email)

        if result.success:
            self.scheduler(document_id)
        return result

    async def _deliver(self, document: EInvoiceDocument, force_email: bool) -> DeliveryResult:
        if not document.authority_uuid:
            raise DeliveryException(
                "Delivery not attempted", "Document has not been submitted to the Authority yet",
            )

        customer = await self.repo.get_customer(document.customer_id)
        if not customer.authority_endpoint_id and not customer.email:
            raise DeliveryException(
                "Delivery not attempted", "Customer has neither an Authority endpoint id nor an email address",
            )

        network_error = None
        if not force_email and customer.authority_endpoint_id:
            sent, network_error = await self._send_via_network(document.authority_uuid)
            if sent:
                logger.info("Delivered %s via the Authority network", document.document_number)
                return DeliveryResult(
                    success=True,
                    method=DeliveryMethod.AUTHORITY_NETWORK,
                    message="Document delivered via the Authority network",
                )
            logger.warning(
                "Network delivery of %s failed, falling back to email: %s",
                document.document_number, network_error,
            )

        if not customer.email:
            raise DeliveryException(
                "All delivery methods failed", network_error or "Customer has no email address for delivery",
            )

        email_result = await self._send_via_email(document, customer)
        if email_result.success:
            return DeliveryResult(
                success=True,
                method=DeliveryMethod.EMAIL,
                message="Document delivered via email"
                + (" (simulated)" if email_result.simulated else ""),
            )
        raise DeliveryException("All delivery methods failed", email_result.error or "Email delivery failed")

    async def _send_via_network(self, authority_uuid: str) -> tuple[bool, str | None]:
        try:
            token = await self.token_manager.ensure()
            response = await self.client_factory(token.base_url).send_documents(
                token.access_token, [authority_uuid],
            )
        except Exception as exc:
            return False, str(exc)

        if authority_uuid in response.sent_documents:
            return True, None
        for failed in response.failed_documents:
            if failed.document_id == authority_uuid:
                return False, failed.message or "Document failed to send via the Authority network"
        return False, "Document failed to send via the Authority network"

    async def _download_pdf(self, authority_uuid: str) -> bytes | None:
        try:
            token = await self.token_manager.ensure()
            return await self.client_factory(token.base_url).download_pdf(token.access_token, authority_uuid)
        except Exception as exc:
            logger.warning("Could not download PDF for %s, emailing without attachment: %s", authority_uuid, exc)
            return None

    async def _send_via_email(self, document: EInvoiceDocument, customer: Customer) -> EmailResult:
        tenant = await self.repo.get_tenant(document.tenant_id)
        pdf = await self._download_pdf(document.authority_uuid)
        email = DocumentEmail(
            customer_email=customer.email,
            customer_name=customer.business_name or customer.name,
            kind=document.kind.value,
            document_number=document.document_number,
            amount=f"{document.total_amount:,.2f}",
            currency=document.currency,
            issue_date=document.issue_date.isoformat(),
            tenant_name=tenant.name,
            verification_url=document.verification_url,
            pdf=pdf,
        )
        return await self.email_service.send_document_email(email)

    async def _record(self, document: EInvoiceDocument, result: DeliveryResult, force_email: bool) -> None:
        now = datetime.now(UTC)
        if result.success:
            values = {
                "delivery_status": DeliveryStatus.DELIVERED,
                "delivery_method": result.method,
                "delivered_at": now,
                "delivery_error": None,
            }
        else:
            values = {
                "delivery_status": DeliveryStatus.FAILED,
                "delivery_method": None,
                "delivered_at": None,
                "delivery_error": result.error or result.message,
            }
        await self.repo.update_document(document.id, **values)
        await self.audit.record(
            action=AuditAction.DELIVER_DOCUMENT,
            entity_type=document.kind.value.lower(),
            entity_id=document.id,
            tenant_id=document.tenant_id,
            description=(
                f"Delivered {document.document_number} via {result.method.value}"
                if result.success
                else f"Delivery of {document.document_number} failed: {values['delivery_error']}"
            ),
            metadata={
                "success": result.success,
                "force_email": force_email,
                "error": result.error,
                "error_code": result.error_code,
            },
        )

