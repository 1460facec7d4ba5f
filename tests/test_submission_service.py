"""Unit tests for SubmissionService: payload assembly, size ceilings, submit classification."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.exceptions import (
    AuthorityPayloadTooLargeException,
    AuthorityRejectionException,
    BusinessRuleException,
    DocumentReferenceException,
    ProviderNotConfiguredException,
    SizeLimitException,
)
from src.models.enums import AuthorityStatus, DocumentKind, DocumentStatus
from src.modules.authority.schemas import FailedDocument, SubmitResponse, ValidDocument
from src.modules.authority.token_manager import ProviderToken
from src.modules.delivery.schemas import DeliveryResult
from src.modules.documents.locks import DocumentLockRegistry
from src.modules.submission.service import SubmissionService, rewrite_verification_url

TENANT_ID = uuid.uuid4()

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_document(kind=DocumentKind.INVOICE, **overrides):
    number = {"INVOICE": "INV-0001", "CREDIT_NOTE": "CN-0001", "DEBIT_NOTE": "DN-0001"}[kind.value]
    type_code = {"INVOICE": "388", "CREDIT_NOTE": "381", "DEBIT_NOTE": "383"}[kind.value]
    values = {
        "id": uuid.uuid4(),
        "tenant_id": TENANT_ID,
        "customer_id": uuid.uuid4(),
        "kind": kind,
        "document_number": number,
        "type_code": type_code,
        "original_invoice_id": None,
        "note": None,
        "issue_date": date(2026, 3, 1),
        "due_date": None,
        "currency": "USD",
        "subtotal": Decimal("0"),
        "tax_amount": Decimal("0"),
        "total_amount": Decimal("0"),
        "status": DocumentStatus.DRAFT,
        "authority_uuid": None,
        "xml_content": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _make_line(description="Rice, 50kg bag", quantity="2", unit_price="100", tax_rate="0.10"):
    return SimpleNamespace(
        description=description,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        unit_code="EA",
        tax_rate=Decimal(tax_rate),
        allowance_reason=None,
        allowance_amount=None,
        charge_reason=None,
        charge_amount=None,
        line_total=Decimal("0"),
        tax_amount=Decimal("0"),
    )


def _make_tenant():
    return SimpleNamespace(
        id=TENANT_ID,
        name="Mekong Trading Co., Ltd.",
        address="Street 271",
        city="Phnom Penh",
        postal_code="12000",
        country="Cambodia",
        tax_id="K001-901234567",
        authority_moc_id="MOC-00012345",
    )


def _make_customer(**overrides):
    values = {
        "name": "Angkor Retail",
        "business_name": "Angkor Retail Plc",
        "address": "Norodom Blvd 12",
        "city": "Phnom Penh",
        "postal_code": None,
        "country": "KH",
        "tax_id": "K002-000111222",
        "registration_number": None,
        "authority_endpoint_id": "KHUID00009876",
        "email": "ap@angkor-retail.example",
        "phone": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def repo():
    repo = AsyncMock()
    repo.get_active_provider.return_value = SimpleNamespace(endpoint_id="KHUID00001234")
    repo.get_line_items.return_value = [_make_line()]
    repo.get_tenant.return_value = _make_tenant()
    repo.get_customer.return_value = _make_customer()
    repo.find_document.return_value = None
    return repo


@pytest.fixture
def token_manager():
    manager = AsyncMock()
    manager.ensure.return_value = ProviderToken(
        access_token="tok",
        base_url="https://authority.test",
        expires_at=datetime.now(UTC) + timedelta(minutes=10),
    )
    return manager


@pytest.fixture
def authority_client():
    client = MagicMock()
    client.submit_document = AsyncMock(return_value=SubmitResponse(
        valid_documents=[ValidDocument(document_id="auth-uuid-1", verification_link="http://localhost:3000/verify/abc")],
    ))
    return client


@pytest.fixture
def delivery():
    service = AsyncMock()
    service.deliver.return_value = DeliveryResult(success=True, message="Document delivered via email")
    return service


@pytest.fixture
def submission_service(mock_db, repo, token_manager, authority_client, delivery):
    service = SubmissionService(
        mock_db,
        token_manager=token_manager,
        client_factory=lambda base_url: authority_client,
        delivery_service=delivery,
        locks=DocumentLockRegistry(),
    )
    service.repo = repo
    service.audit = AsyncMock()
    return service


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


class TestSubmit:
    @pytest.mark.asyncio
    async def test_successful_submission_records_authority_state(
        self, submission_service, repo, authority_client, delivery, mock_db
    ):
        document = _make_document()
        repo.get_document.return_value = document

        result = await submission_service.submit(document.id)

        assert result.status == DocumentStatus.SUBMITTED
        assert result.authority_uuid == "auth-uuid-1"
        assert result.authority_status == AuthorityStatus.VALID
        assert result.verification_url == "https://sandbox.e-invoice.gov.kh/verify/abc"
        assert result.delivery.success is True

        authority_client.submit_document.assert_awaited_once()
        assert authority_client.submit_document.await_args.args[1] == "INVOICE"
        update = repo.update_document.await_args.kwargs
        assert update["status"] == DocumentStatus.SUBMITTED
        assert update["authority_uuid"] == "auth-uuid-1"
        assert update["xml_content"].startswith("<Invoice")
        mock_db.commit.assert_awaited_once()
        delivery.deliver.assert_awaited_once_with(document.id)

    @pytest.mark.asyncio
    async def test_totals_recomputed_from_lines_before_submit(self, submission_service, repo):
        document = _make_document()
        repo.get_document.return_value = document

        await submission_service.submit(document.id)

        assert document.subtotal == Decimal("200.00")
        assert document.tax_amount == Decimal("20.00")
        assert document.total_amount == Decimal("220.00")

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_fail_submission(self, submission_service, repo, delivery):
        document = _make_document()
        repo.get_document.return_value = document
        delivery.deliver.side_effect = RuntimeError("smtp exploded")

        result = await submission_service.submit(document.id)

        assert result.status == DocumentStatus.SUBMITTED
        assert result.delivery.success is False
        assert "smtp exploded" in result.delivery.error

    @pytest.mark.asyncio
    async def test_authority_rejection_leaves_document_draft(
        self, submission_service, repo, authority_client, delivery, mock_db
    ):
        document = _make_document()
        repo.get_document.return_value = document
        authority_client.submit_document.return_value = SubmitResponse(
            failed_documents=[FailedDocument(document_id=None, message="Invalid supplier TIN")],
        )

        with pytest.raises(AuthorityRejectionException) as exc_info:
            await submission_service.submit(document.id)

        assert exc_info.value.message == "Invalid supplier TIN"
        assert "payload" in exc_info.value.details[0]
        repo.update_document.assert_not_awaited()
        mock_db.commit.assert_not_awaited()
        delivery.deliver.assert_not_awaited()
        assert document.status == DocumentStatus.DRAFT

    @pytest.mark.asyncio
    async def test_authority_413_carries_size_guidance(self, submission_service, repo, authority_client):
        document = _make_document()
        repo.get_document.return_value = document
        authority_client.submit_document.side_effect = AuthorityPayloadTooLargeException(
            "Request payload too large for the Authority API", http_status=413,
        )

        with pytest.raises(AuthorityPayloadTooLargeException) as exc_info:
            await submission_service.submit(document.id)

        assert "1 line items" in exc_info.value.message
        assert exc_info.value.details[0]["line_items"] == 1
        repo.update_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_submitted_document_rejected(self, submission_service, repo, authority_client):
        document = _make_document(status=DocumentStatus.SUBMITTED, authority_uuid="auth-uuid-0")
        repo.get_document.return_value = document

        with pytest.raises(BusinessRuleException):
            await submission_service.submit(document.id)
        authority_client.submit_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_without_endpoint(self, submission_service, repo):
        repo.get_document.return_value = _make_document()
        repo.get_active_provider.return_value = None

        with pytest.raises(ProviderNotConfiguredException):
            await submission_service.submit(uuid.uuid4())


class TestConcurrentSubmission:
    @staticmethod
    def _persist_updates(repo, documents):
        async def update_document(document_id, **values):
            for key, value in values.items():
                setattr(documents[document_id], key, value)

        repo.get_document.side_effect = lambda document_id: documents[document_id]
        repo.update_document.side_effect = update_document

    @staticmethod
    def _slow_submit(authority_client):
        state = {"active": 0, "peak": 0}

        async def submit_document(access_token, document_type, xml):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.01)
            state["active"] -= 1
            return SubmitResponse(valid_documents=[ValidDocument(document_id=f"auth-{uuid.uuid4()}")])

        authority_client.submit_document = AsyncMock(side_effect=submit_document)
        return state

    @pytest.mark.asyncio
    async def test_same_document_submitted_once(self, submission_service, repo, authority_client):
        document = _make_document()
        self._persist_updates(repo, {document.id: document})
        state = self._slow_submit(authority_client)

        results = await asyncio.gather(
            submission_service.submit(document.id),
            submission_service.submit(document.id),
            return_exceptions=True,
        )

        assert authority_client.submit_document.await_count == 1
        assert state["peak"] == 1
        assert results[0].status == DocumentStatus.SUBMITTED
        assert isinstance(results[1], BusinessRuleException)
        assert document.status == DocumentStatus.SUBMITTED
        assert not submission_service.locks.is_locked(document.id)

    @pytest.mark.asyncio
    async def test_different_documents_do_not_wait_on_each_other(
        self, submission_service, repo, authority_client
    ):
        first, second = _make_document(), _make_document(document_number="INV-0002")
        self._persist_updates(repo, {first.id: first, second.id: second})
        state = self._slow_submit(authority_client)

        await asyncio.gather(submission_service.submit(first.id), submission_service.submit(second.id))

        assert authority_client.submit_document.await_count == 2
        assert state["peak"] == 2


class TestSizeLimits:
    @pytest.mark.asyncio
    async def test_oversized_xml_rejected_without_any_authority_call(
        self, submission_service, repo, token_manager, authority_client
    ):
        document = _make_document()
        repo.get_document.return_value = document
        repo.get_line_items.return_value = [_make_line(description="x" * (11 * 1024 * 1024))]

        with pytest.raises(SizeLimitException) as exc_info:
            await submission_service.submit(document.id)

        assert exc_info.value.code == "XML_FILE_TOO_LARGE"
        assert exc_info.value.details[0]["line_items"] == 1
        token_manager.ensure.assert_not_awaited()
        authority_client.submit_document.assert_not_awaited()
        assert document.status == DocumentStatus.DRAFT

    @pytest.mark.asyncio
    async def test_encoded_envelope_over_limit(self, submission_service, repo, authority_client):
        # ~8 MiB of XML grows past 10 MiB once base64-encoded
        document = _make_document()
        repo.get_document.return_value = document
        repo.get_line_items.return_value = [_make_line(description="x" * (4 * 1024 * 1024))]

        with pytest.raises(SizeLimitException) as exc_info:
            await submission_service.submit(document.id)

        assert exc_info.value.code == "PAYLOAD_TOO_LARGE"
        assert exc_info.value.details[0]["payload_size_bytes"] > 10 * 1024 * 1024
        authority_client.submit_document.assert_not_awaited()


class TestNoteReferences:
    @pytest.mark.asyncio
    async def test_debit_note_with_missing_original_stays_draft(
        self, submission_service, repo, authority_client, token_manager
    ):
        document = _make_document(DocumentKind.DEBIT_NOTE, original_invoice_id=uuid.uuid4())
        repo.get_document.return_value = document
        repo.find_document.return_value = None

        with pytest.raises(DocumentReferenceException) as exc_info:
            await submission_service.submit(document.id)

        assert exc_info.value.code == "REFERENCE_ERROR"
        assert document.status == DocumentStatus.DRAFT
        repo.update_document.assert_not_awaited()
        token_manager.ensure.assert_not_awaited()
        authority_client.submit_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_credit_note_without_original_reference(self, submission_service, repo):
        document = _make_document(DocumentKind.CREDIT_NOTE)
        repo.get_document.return_value = document

        with pytest.raises(DocumentReferenceException):
            await submission_service.submit(document.id)

    @pytest.mark.asyncio
    async def test_original_from_another_tenant_rejected(self, submission_service, repo):
        document = _make_document(DocumentKind.CREDIT_NOTE, original_invoice_id=uuid.uuid4())
        repo.get_document.return_value = document
        repo.find_document.return_value = _make_document(tenant_id=uuid.uuid4())

        with pytest.raises(DocumentReferenceException):
            await submission_service.submit(document.id)

    @pytest.mark.asyncio
    async def test_credit_note_references_original_invoice(self, submission_service, repo, authority_client):
        original = _make_document(authority_uuid="auth-uuid-0", status=DocumentStatus.SUBMITTED)
        document = _make_document(DocumentKind.CREDIT_NOTE, original_invoice_id=original.id, note="Returned goods")
        repo.get_document.return_value = document
        repo.find_document.return_value = original

        await submission_service.submit(document.id)

        document_type, xml = authority_client.submit_document.await_args.args[1:]
        assert document_type == "CREDIT_NOTE"
        assert "<cbc:ID>INV-0001</cbc:ID><cbc:UUID>auth-uuid-0</cbc:UUID>" in xml
        assert "<cbc:Note>Returned goods</cbc:Note>" in xml


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_returns_stored_xml_once_submitted(self, submission_service, repo):
        document = _make_document(
            status=DocumentStatus.SUBMITTED, authority_uuid="auth-uuid-1", xml_content="<Invoice>stored</Invoice>",
        )
        repo.get_document.return_value = document

        preview = await submission_service.preview_xml(document.id)

        assert preview.submitted is True
        assert preview.xml == "<Invoice>stored</Invoice>"
        repo.get_line_items.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preview_builds_draft_without_writing(self, submission_service, repo, authority_client):
        line = _make_line()
        line.line_total, line.tax_amount = Decimal("200.00"), Decimal("20.00")
        repo.get_line_items.return_value = [line]
        document = _make_document(
            subtotal=Decimal("200.00"), tax_amount=Decimal("20.00"), total_amount=Decimal("220.00"),
        )
        repo.get_document.return_value = document

        preview = await submission_service.preview_xml(document.id)

        assert preview.submitted is False
        assert preview.xml.startswith("<Invoice")
        assert preview.xml_size_bytes == len(preview.xml.encode("utf-8"))
        repo.update_document.assert_not_awaited()
        authority_client.submit_document.assert_not_awaited()


class TestVerificationUrl:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("http://localhost:3000/verify/abc", "https://sandbox.e-invoice.gov.kh/verify/abc"),
            ("https://localhost/verify/abc", "https://sandbox.e-invoice.gov.kh/verify/abc"),
            ("https://verify.e-invoice.gov.kh/abc", "https://verify.e-invoice.gov.kh/abc"),
            (None, None),
        ],
    )
    def test_rewrite(self, url, expected):
        assert rewrite_verification_url(url) == expected
