"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class BusinessRuleException(AppException):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class RateLimitException(AppException):
    code = "RATE_LIMITED"
    status_code = 429


# ---------------------------------------------------------------------------
# E-invoicing lifecycle errors
# ---------------------------------------------------------------------------


class DocumentReferenceException(ValidationException):
    """Credit/debit note without a resolvable original-invoice reference."""

    code = "REFERENCE_ERROR"


class SizeLimitException(AppException):
    """Local pre-flight size ceiling exceeded; nothing was sent."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 400

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, details)
        if code is not None:
            self.code = code


class ProviderNotConfiguredException(AppException):
    code = "PROVIDER_NOT_CONFIGURED"
    status_code = 500


class AuthorityRejectionException(AppException):
    """The Authority accepted the request but rejected the document."""

    code = "AUTHORITY_REJECTED"
    status_code = 400


class AuthorityTransportException(AppException):
    """Non-2xx or structurally invalid response from the Authority."""

    code = "AUTHORITY_TRANSPORT_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message, details)
        self.http_status = http_status


class AuthorityPayloadTooLargeException(AuthorityTransportException):
    """Authority answered 413 for a payload that passed the local ceilings."""

    code = "AUTHORITY_PAYLOAD_TOO_LARGE"
    status_code = 413


class AuthorityTimeoutException(AuthorityTransportException):
    code = "AUTHORITY_TIMEOUT"
    status_code = 504


class TokenRefreshException(AppException):
    code = "TOKEN_REFRESH_FAILED"
    status_code = 503


class DeliveryException(AppException):
    """No delivery route reached the customer; recorded on the document, not returned as an HTTP error."""

    code = "DELIVERY_FAILED"
    status_code = 502

    def __init__(self, message: str, error: str, details: list[dict] | None = None) -> None:
        super().__init__(message, details)
        self.error = error
