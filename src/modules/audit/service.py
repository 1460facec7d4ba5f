"""AuditService: append-only sink for lifecycle events."""

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.audit import AuditLog
from src.models.enums import AuditAction

logger = logging.getLogger(__name__)


class AuditService:
    """Writes AuditLog rows inside the caller's session; never updates them."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str | uuid.UUID | None,
        description: str,
        tenant_id: uuid.UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            tenant_id=tenant_id,
            description=description,
            metadata_extra=metadata,
        )
        self.session.add(entry)
        await self.session.flush()
        logger.debug("Audit %s %s/%s: %s", action.value, entity_type, entity_id, description)
        return entry

