"""Pydantic v2 schemas for submission endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from src.models.enums import AuthorityStatus, DocumentKind, DocumentStatus
from src.modules.delivery.schemas import DeliveryResult


class SubmissionResult(BaseModel):
    document_id: uuid.UUID
    kind: DocumentKind
    document_number: str
    status: DocumentStatus
    authority_uuid: str
    authority_status: AuthorityStatus
    verification_url: str | None = None
    submitted_at: datetime
    xml_size_bytes: int
    payload_size_bytes: int
    delivery: DeliveryResult | None = None


class XmlPreviewResponse(BaseModel):
    document_id: uuid.UUID
    kind: DocumentKind
    document_number: str
    submitted: bool
    xml: str
    xml_size_bytes: int
