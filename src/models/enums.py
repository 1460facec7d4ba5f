import enum


class DocumentKind(str, enum.Enum):
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"


class DocumentTypeCode(str, enum.Enum):
    """UN/ECE 1001 subset accepted by the Authority."""

    COMMERCIAL_INVOICE = "380"
    TAX_INVOICE = "388"
    CREDIT_NOTE = "381"
    DEBIT_NOTE = "383"


class DocumentStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class AuthorityStatus(str, enum.Enum):
    VALID = "VALID"
    DELIVERED = "DELIVERED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    IN_PROCESS = "IN_PROCESS"
    UNDER_QUERY = "UNDER_QUERY"
    CONDITIONALLY_ACCEPTED = "CONDITIONALLY_ACCEPTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    PAID = "PAID"


class DeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class DeliveryMethod(str, enum.Enum):
    AUTHORITY_NETWORK = "AUTHORITY_NETWORK"
    EMAIL = "EMAIL"


class AuditAction(str, enum.Enum):
    SUBMIT_DOCUMENT = "SUBMIT_DOCUMENT"
    DELIVER_DOCUMENT = "DELIVER_DOCUMENT"
    SYNC_STATUS = "SYNC_STATUS"
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"


class TaxSchemeId(str, enum.Enum):
    VAT = "VAT"
    SP = "SP"
    PLT = "PLT"
    AT = "AT"


class TaxCategoryId(str, enum.Enum):
    STANDARD = "S"
    ZERO_RATED = "Z"
