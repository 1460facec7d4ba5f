"""Delivery API router: (re)deliver a submitted document to its customer."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.app import limiter
from src.database.session import get_db
from src.modules.delivery.schemas import DeliverRequest, DeliverResponse, DeliveryStateResponse
from src.modules.delivery.service import DeliveryService
from src.modules.documents.repository import DocumentRepository

router = APIRouter(prefix="/documents", tags=["delivery"])


@router.post("/{document_id}/deliver", response_model=DeliverResponse)
@limiter.limit("30/minute")
async def deliver_document(
    request: Request,
    document_id: uuid.UUID,
    body: DeliverRequest | None = None,
    session: AsyncSession = Depends(get_db),
):
    force_email = body.force_email if body is not None else False
    service = DeliveryService(session)
    result = await service.deliver(document_id, force_email=force_email)
    document = await DocumentRepository(session).get_document(document_id)
    return DeliverResponse(result=result, document=DeliveryStateResponse.model_validate(document))
