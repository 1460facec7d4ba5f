"""Pydantic v2 schemas for status synchronization and Authority webhooks."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field


class SyncRequest(BaseModel):
    """Body of ``POST /sync-status``; an empty body runs the bulk poll."""

    document_id: uuid.UUID | None = None


class DocumentSyncResult(BaseModel):
    success: bool
    status_changed: bool = False
    old_status: str | None = None
    new_status: str | None = None
    error: str | None = None


class BulkSyncResult(BaseModel):
    total_processed: int = 0
    success_count: int = 0
    changed_count: int = 0
    errors: list[str] = Field(default_factory=list)


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., min_length=1)
    document_id: str | None = None
    endpoint_id: str | None = None
    status: str | None = None


class WebhookResult(BaseModel):
    success: bool = True
    message: str
    document_id: uuid.UUID | None = None
    old_status: str | None = None
    new_status: str | None = None
