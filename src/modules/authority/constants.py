from src.models.enums import AuthorityStatus

TOKEN_PATH = "/api/v1/auth/token"
SUBMIT_PATH = "/api/v1/document"
SEND_PATH = "/api/v1/document/send"
DETAIL_PATH = "/api/v1/document/{document_id}"
PDF_PATH = "/api/v1/document/{document_id}/pdf"
POLL_PATH = "/api/v1/document/poll"

GRANT_REFRESH_TOKEN = "refresh_token"
GRANT_CLIENT_CREDENTIALS = "client_credentials"

# No further transitions happen after these
TERMINAL_AUTHORITY_STATUSES = frozenset({
    AuthorityStatus.ACCEPTED,
    AuthorityStatus.REJECTED,
    AuthorityStatus.PAID,
})

# Statuses that imply the customer has the document
DELIVERED_AUTHORITY_STATUSES = frozenset({
    AuthorityStatus.DELIVERED,
    AuthorityStatus.ACKNOWLEDGED,
    AuthorityStatus.IN_PROCESS,
    AuthorityStatus.UNDER_QUERY,
    AuthorityStatus.CONDITIONALLY_ACCEPTED,
    AuthorityStatus.ACCEPTED,
    AuthorityStatus.REJECTED,
    AuthorityStatus.PAID,
})

LOCALHOST_URL_PATTERN = r"^https?://localhost(?::\d+)?"
