from src.models.enums import AuthorityStatus, DocumentStatus

BULK_SYNC_CURSOR = "authority_document_poll"

# Webhook event types sent by the Authority
EVENT_DOCUMENT_DELIVERED = "DOCUMENT.DELIVERED"
EVENT_DOCUMENT_RECEIVED = "DOCUMENT.RECEIVED"
EVENT_DOCUMENT_STATUS_UPDATED = "DOCUMENT.STATUS_UPDATED"
EVENT_ENTITY_REVOKED = "ENTITY.REVOKED"

# Final Authority decisions mirrored onto the local lifecycle
LOCAL_STATUS_FOR_AUTHORITY: dict[AuthorityStatus, DocumentStatus] = {
    AuthorityStatus.ACCEPTED: DocumentStatus.ACCEPTED,
    AuthorityStatus.REJECTED: DocumentStatus.REJECTED,
    AuthorityStatus.PAID: DocumentStatus.ACCEPTED,
}
