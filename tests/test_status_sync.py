"""Unit tests for StatusSyncService: targeted sync, bulk poll and webhooks."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.exceptions import AuthorityTransportException, NotFoundException, ValidationException
from src.models.enums import AuditAction, AuthorityStatus, DeliveryStatus, DocumentKind, DocumentStatus
from src.modules.authority.schemas import DocumentDetail, PollEvent, PollResponse
from src.modules.authority.token_manager import ProviderToken
from src.modules.status_sync.constants import BULK_SYNC_CURSOR
from src.modules.status_sync.schemas import WebhookEvent
from src.modules.status_sync.service import StatusSyncService, project_delivery_status

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_document(authority_uuid="auth-1", authority_status=AuthorityStatus.VALID, delivery_status=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        tenant_id=uuid.uuid4(),
        kind=DocumentKind.INVOICE,
        document_number=f"INV-{authority_uuid}",
        authority_uuid=authority_uuid,
        authority_status=authority_status,
        delivery_status=delivery_status,
    )


def _detail(authority_uuid, status):
    return DocumentDetail(document_id=authority_uuid, status=status)


@pytest.fixture
def repo():
    repo = AsyncMock()
    repo.get_sync_cursor.return_value = datetime(2026, 3, 1, tzinfo=UTC)
    return repo


@pytest.fixture
def authority_client():
    client = MagicMock()
    client.get_document_detail = AsyncMock()
    client.poll_documents = AsyncMock(return_value=PollResponse())
    return client


@pytest.fixture
def sync_service(mock_db, repo, authority_client):
    token_manager = AsyncMock()
    token_manager.ensure.return_value = ProviderToken(
        access_token="tok",
        base_url="https://authority.test",
        expires_at=datetime.now(UTC) + timedelta(minutes=10),
    )
    service = StatusSyncService(
        mock_db,
        token_manager=token_manager,
        client_factory=lambda base_url: authority_client,
        event_pause_seconds=0,
    )
    service.repo = repo
    service.audit = AsyncMock()
    return service


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


class TestProjection:
    @pytest.mark.parametrize("status", ["DELIVERED", "ACKNOWLEDGED", "IN_PROCESS", "ACCEPTED", "REJECTED", "PAID"])
    def test_delivered_class_statuses(self, status):
        assert project_delivery_status(status) == DeliveryStatus.DELIVERED

    @pytest.mark.parametrize("status", ["VALID", "SOMETHING_NEW", None])
    def test_valid_and_unknown_stay_pending(self, status):
        assert project_delivery_status(status) == DeliveryStatus.PENDING


# ---------------------------------------------------------------------------
# Targeted
# ---------------------------------------------------------------------------


class TestSyncDocument:
    @pytest.mark.asyncio
    async def test_status_change_is_applied_and_audited(self, sync_service, repo, authority_client):
        document = _make_document()
        repo.find_document.return_value = document
        authority_client.get_document_detail.return_value = _detail("auth-1", "DELIVERED")

        result = await sync_service.sync_document(document.id)

        assert result.success is True
        assert result.status_changed is True
        assert result.old_status == "VALID"
        assert result.new_status == "DELIVERED"
        values = repo.update_document.await_args.kwargs
        assert values["authority_status"] == AuthorityStatus.DELIVERED
        assert values["delivery_status"] == DeliveryStatus.DELIVERED
        assert "status" not in values
        assert sync_service.audit.record.await_args.kwargs["action"] == AuditAction.SYNC_STATUS

    @pytest.mark.asyncio
    async def test_final_decision_updates_local_status(self, sync_service, repo, authority_client):
        document = _make_document(authority_status=AuthorityStatus.DELIVERED)
        repo.find_document.return_value = document
        authority_client.get_document_detail.return_value = _detail("auth-1", "paid")

        await sync_service.sync_document(document.id)

        values = repo.update_document.await_args.kwargs
        assert values["authority_status"] == AuthorityStatus.PAID
        assert values["status"] == DocumentStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_unchanged_status_writes_nothing(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document()
        authority_client.get_document_detail.return_value = _detail("auth-1", "VALID")

        result = await sync_service.sync_document(uuid.uuid4())

        assert result.success is True
        assert result.status_changed is False
        repo.update_document.assert_not_awaited()
        sync_service.audit.record.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminal_documents_skip_the_authority(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document(authority_status=AuthorityStatus.REJECTED)

        result = await sync_service.sync_document(uuid.uuid4())

        assert result.success is True
        assert result.status_changed is False
        authority_client.get_document_detail.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_yet_visible_at_authority(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document()
        authority_client.get_document_detail.return_value = None

        result = await sync_service.sync_document(uuid.uuid4())

        assert result.success is True
        assert result.status_changed is False
        assert authority_client.get_document_detail.await_count == 1
        repo.update_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document()
        authority_client.get_document_detail.side_effect = [
            AuthorityTransportException("Authority API error 502"),
            AuthorityTransportException("Authority API error 502"),
            _detail("auth-1", "DELIVERED"),
        ]

        result = await sync_service.sync_document(uuid.uuid4())

        assert result.success is True
        assert result.status_changed is True
        assert authority_client.get_document_detail.await_count == 3

    @pytest.mark.asyncio
    async def test_persistent_errors_reported(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document()
        authority_client.get_document_detail.side_effect = AuthorityTransportException("Authority API error 502")

        result = await sync_service.sync_document(uuid.uuid4())

        assert result.success is False
        assert "502" in result.error
        assert authority_client.get_document_detail.await_count == 3

    @pytest.mark.asyncio
    async def test_unsubmitted_document(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document(authority_uuid=None, authority_status=None)

        result = await sync_service.sync_document(uuid.uuid4())

        assert result.success is False
        authority_client.get_document_detail.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_document(self, sync_service, repo):
        repo.find_document.return_value = None
        result = await sync_service.sync_document(uuid.uuid4())
        assert result.success is False

    @pytest.mark.asyncio
    async def test_recorded_delivery_outcome_not_downgraded(self, sync_service, repo, authority_client):
        repo.find_document.return_value = _make_document(
            authority_status=None, delivery_status=DeliveryStatus.FAILED,
        )
        authority_client.get_document_detail.return_value = _detail("auth-1", "VALID")

        await sync_service.sync_document(uuid.uuid4())

        values = repo.update_document.await_args.kwargs
        assert values["authority_status"] == AuthorityStatus.VALID
        assert "delivery_status" not in values


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(self, sync_service, repo, authority_client):
        uuids = [f"auth-{i}" for i in range(1, 6)]
        documents = {u: _make_document(authority_uuid=u) for u in uuids}
        authority_client.poll_documents.return_value = PollResponse(
            documents=[PollEvent(document_id=u) for u in uuids],
        )
        repo.find_by_authority_uuid.side_effect = lambda u: documents[u]

        async def detail(token, authority_uuid):
            if authority_uuid == "auth-3":
                raise AuthorityTransportException("Authority API error 500")
            return _detail(authority_uuid, "DELIVERED")

        authority_client.get_document_detail.side_effect = detail

        result = await sync_service.sync_all()

        assert result.total_processed == 5
        assert result.success_count == 4
        assert result.changed_count == 4
        assert len(result.errors) == 1
        assert "auth-3" in result.errors[0]
        updated = {call.args[0] for call in repo.update_document.await_args_list}
        assert updated == {documents[u].id for u in uuids if u != "auth-3"}
        repo.set_sync_cursor.assert_awaited_once()
        assert repo.set_sync_cursor.await_args.args[0] == BULK_SYNC_CURSOR

    @pytest.mark.asyncio
    async def test_failure_after_write_rolls_back_only_that_event(
        self, sync_service, repo, authority_client, mock_db
    ):
        uuids = [f"auth-{i}" for i in range(1, 6)]
        documents = {u: _make_document(authority_uuid=u) for u in uuids}
        authority_client.poll_documents.return_value = PollResponse(
            documents=[PollEvent(document_id=u) for u in uuids],
        )
        repo.find_by_authority_uuid.side_effect = lambda u: documents[u]
        authority_client.get_document_detail.side_effect = lambda token, u: _detail(u, "DELIVERED")

        async def record(**kwargs):
            if kwargs["metadata"]["authority_uuid"] == "auth-3":
                raise RuntimeError("audit insert failed")

        sync_service.audit.record.side_effect = record

        result = await sync_service.sync_all()

        assert result.success_count == 4
        assert result.errors == ["auth-3: audit insert failed"]
        assert len(mock_db.savepoints) == 5
        assert [sp.rolled_back for sp in mock_db.savepoints] == [False, False, True, False, False]
        assert all(sp.committed for i, sp in enumerate(mock_db.savepoints) if i != 2)
        repo.set_sync_cursor.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_local_document_reported(self, sync_service, repo, authority_client):
        authority_client.poll_documents.return_value = PollResponse(documents=[PollEvent(document_id="ghost")])
        repo.find_by_authority_uuid.return_value = None

        result = await sync_service.sync_all()

        assert result.total_processed == 1
        assert result.success_count == 0
        assert result.errors == ["Document ghost not found locally"]

    @pytest.mark.asyncio
    async def test_cursor_passed_to_poll(self, sync_service, repo, authority_client):
        await sync_service.sync_all()

        assert authority_client.poll_documents.await_args.args == ("tok", datetime(2026, 3, 1, tzinfo=UTC))

    @pytest.mark.asyncio
    async def test_missing_cursor_defaults_to_lookback(self, sync_service, repo, authority_client):
        repo.get_sync_cursor.return_value = None

        await sync_service.sync_all()

        since = authority_client.poll_documents.await_args.args[1]
        assert timedelta(hours=23) < datetime.now(UTC) - since < timedelta(hours=25)

    @pytest.mark.asyncio
    async def test_poll_failure_keeps_cursor(self, sync_service, repo, authority_client):
        authority_client.poll_documents.side_effect = AuthorityTransportException("Authority API error 503")

        result = await sync_service.sync_all()

        assert result.total_processed == 0
        assert result.errors[0].startswith("Polling failed:")
        repo.set_sync_cursor.assert_not_awaited()


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestWebhook:
    @pytest.mark.asyncio
    async def test_delivered_event(self, sync_service, repo):
        document = _make_document()
        repo.find_by_authority_uuid.return_value = document

        result = await sync_service.apply_webhook_event(
            WebhookEvent(type="DOCUMENT.DELIVERED", document_id="auth-1"),
        )

        assert result.success is True
        assert result.document_id == document.id
        assert result.old_status == "VALID"
        assert result.new_status == "DELIVERED"
        assert repo.update_document.await_args.kwargs["delivery_status"] == DeliveryStatus.DELIVERED
        assert sync_service.audit.record.await_args.kwargs["action"] == AuditAction.WEBHOOK_RECEIVED

    @pytest.mark.asyncio
    async def test_status_updated_event(self, sync_service, repo):
        repo.find_by_authority_uuid.return_value = _make_document(authority_status=AuthorityStatus.DELIVERED)

        result = await sync_service.apply_webhook_event(
            WebhookEvent(type="DOCUMENT.STATUS_UPDATED", document_id="auth-1", status="rejected"),
        )

        assert result.new_status == "REJECTED"
        assert repo.update_document.await_args.kwargs["status"] == DocumentStatus.REJECTED

    @pytest.mark.asyncio
    async def test_status_updated_requires_status(self, sync_service, repo):
        repo.find_by_authority_uuid.return_value = _make_document()

        with pytest.raises(ValidationException):
            await sync_service.apply_webhook_event(
                WebhookEvent(type="DOCUMENT.STATUS_UPDATED", document_id="auth-1"),
            )

    @pytest.mark.asyncio
    async def test_status_updated_rejects_unknown_status(self, sync_service, repo):
        repo.find_by_authority_uuid.return_value = _make_document()

        with pytest.raises(ValidationException):
            await sync_service.apply_webhook_event(
                WebhookEvent(type="DOCUMENT.STATUS_UPDATED", document_id="auth-1", status="ARCHIVED"),
            )

    @pytest.mark.asyncio
    async def test_unknown_document(self, sync_service, repo):
        repo.find_by_authority_uuid.return_value = None

        with pytest.raises(NotFoundException):
            await sync_service.apply_webhook_event(WebhookEvent(type="DOCUMENT.DELIVERED", document_id="ghost"))

    @pytest.mark.asyncio
    async def test_received_event_changes_nothing(self, sync_service, repo):
        repo.find_by_authority_uuid.return_value = _make_document()

        result = await sync_service.apply_webhook_event(
            WebhookEvent(type="DOCUMENT.RECEIVED", document_id="auth-1"),
        )

        assert result.message == "Event processed, no update needed"
        repo.update_document.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("event_type", "message"),
        [("ENTITY.REVOKED", "Entity revocation noted"), ("INVOICE.ARCHIVED", "Event type not handled")],
    )
    async def test_events_without_document(self, sync_service, repo, event_type, message):
        result = await sync_service.apply_webhook_event(WebhookEvent(type=event_type, endpoint_id="KHUID1"))

        assert result.success is True
        assert result.message == message
        repo.find_by_authority_uuid.assert_not_awaited()
