"""Authority API response shapes, normalized at the HTTP boundary."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_message(value: Any) -> str:
    """Collapse the Authority's string / list / object message shapes to one string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "; ".join(normalize_message(item) for item in value if item is not None)
    if isinstance(value, dict):
        for key in ("message", "detail", "error"):
            if key in value:
                return normalize_message(value[key])
        return "; ".join(f"{k}: {normalize_message(v)}" for k, v in value.items())
    return str(value)


class _AuthorityModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class TokenResponse(_AuthorityModel):
    access_token: str
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None


class ValidDocument(_AuthorityModel):
    document_id: str
    verification_link: str | None = None


class FailedDocument(_AuthorityModel):
    document_id: str | None = None
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> str:
        return normalize_message(value)


class SubmitResponse(_AuthorityModel):
    valid_documents: list[ValidDocument] = Field(default_factory=list)
    failed_documents: list[FailedDocument] = Field(default_factory=list)

    @field_validator("valid_documents", "failed_documents", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return value or []

    @property
    def failure_message(self) -> str:
        messages = [f.message for f in self.failed_documents if f.message]
        return "; ".join(messages) or "Unknown submission error"


class SendResponse(_AuthorityModel):
    sent_documents: list[str] = Field(default_factory=list)
    failed_documents: list[FailedDocument] = Field(default_factory=list)

    @field_validator("sent_documents", "failed_documents", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return value or []


class DocumentDetail(_AuthorityModel):
    document_id: str
    document_number: str | None = None
    status: str
    updated_at: str | None = None


class PollEvent(_AuthorityModel):
    document_id: str
    updated_at: str | None = None
    type: str | None = None


class PollResponse(_AuthorityModel):
    documents: list[PollEvent] = Field(default_factory=list)

    @field_validator("documents", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return value or []


# ---------------------------------------------------------------------------
# Provider token monitor (our own API)
# ---------------------------------------------------------------------------


class TokenStatusResponse(BaseModel):
    configured: bool
    has_token: bool
    expires_at: datetime | None = None
    expires_in_seconds: int | None = None
    refresh_due: bool
    backoff_active: bool
    backoff_until: datetime | None = None
    last_error: str | None = None


class TokenRefreshResponse(BaseModel):
    success: bool = True
    expires_at: datetime
    refreshed: bool
