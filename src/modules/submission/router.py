"""Submission API router: submit a draft to the Authority, preview its XML."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.app import limiter
from src.database.session import get_db
from src.modules.submission.schemas import SubmissionResult, XmlPreviewResponse
from src.modules.submission.service import SubmissionService

router = APIRouter(prefix="/documents", tags=["submission"])


@router.post("/{document_id}/submit", response_model=SubmissionResult)
@limiter.limit("30/minute")
async def submit_document(
    request: Request,
    document_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
):
    service = SubmissionService(session)
    return await service.submit(document_id)


@router.get("/{document_id}/xml-preview", response_model=XmlPreviewResponse)
async def preview_document_xml(
    document_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
):
    service = SubmissionService(session)
    return await service.preview_xml(document_id)
