"""Pydantic v2 schemas for document delivery endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from src.models.enums import DeliveryMethod, DeliveryStatus


class DeliverRequest(BaseModel):
    """Body of ``POST /documents/{id}/deliver``."""

    force_email: bool = False


class DeliveryResult(BaseModel):
    success: bool
    method: DeliveryMethod | None = None
    message: str
    error: str | None = None
    error_code: str | None = None


class DeliveryStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    delivery_status: DeliveryStatus | None = None
    delivery_method: DeliveryMethod | None = None
    delivered_at: datetime | None = None
    delivery_error: str | None = None


class DeliverResponse(BaseModel):
    result: DeliveryResult
    document: DeliveryStateResponse
