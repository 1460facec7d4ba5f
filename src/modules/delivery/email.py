"""Email fallback delivery over SMTP (aiosmtplib)."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape

import aiosmtplib

from src.config import settings

logger = logging.getLogger(__name__)

KIND_LABELS = {
    "INVOICE": "Invoice",
    "CREDIT_NOTE": "Credit Note",
    "DEBIT_NOTE": "Debit Note",
}


@dataclass(frozen=True)
class DocumentEmail:
    customer_email: str
    customer_name: str
    kind: str
    document_number: str
    amount: str
    currency: str
    issue_date: str
    tenant_name: str
    verification_url: str | None = None
    pdf: bytes | None = None


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: str | None = None
    simulated: bool = False
    error: str | None = None


def render_subject(email: DocumentEmail) -> str:
    label = KIND_LABELS.get(email.kind, "Document")
    return f"{label} {email.document_number} from {email.tenant_name}"


def render_html(email: DocumentEmail) -> str:
    label = escape(KIND_LABELS.get(email.kind, "Document"))
    number = escape(email.document_number)
    tenant = escape(email.tenant_name)
    verification = ""
    if email.verification_url:
        verification = (
            '<div style="margin-top:20px">'
            "<p><strong>E-Invoice Verification:</strong></p>"
            f"<p>This {label.lower()} has been registered with the national e-invoicing system. "
            "You can verify its authenticity using the link below:</p>"
            f'<a href="{escape(email.verification_url)}" target="_blank">Verify {label}</a>'
            "</div>"
        )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{label} {number}</title></head>"
        '<body style="font-family:Arial,sans-serif;line-height:1.6;color:#333">'
        f"<h1>{label} from {tenant}</h1>"
        f"<p>Dear {escape(email.customer_name)},</p>"
        f"<p>Please find your {label.lower()} attached to this email.</p>"
        '<table style="width:100%;border-collapse:collapse">'
        f"<tr><td><strong>{label} Number:</strong></td><td>{number}</td></tr>"
        f"<tr><td><strong>Issue Date:</strong></td><td>{escape(email.issue_date)}</td></tr>"
        f"<tr><td><strong>Amount:</strong></td><td>{escape(email.currency)} {escape(email.amount)}</td></tr>"
        "</table>"
        f"{verification}"
        f"<p>If you have any questions about this {label.lower()}, please contact {tenant}.</p>"
        "</body></html>"
    )


class EmailService:
    def __init__(
        self,
        hostname: str | None = None,
        port: int | None = None,
        sender: str | None = None,
    ) -> None:
        self.hostname = settings.smtp_host if hostname is None else hostname
        self.port = port or settings.smtp_port
        self.sender = sender or settings.smtp_from or settings.smtp_username

    def build_message(self, email: DocumentEmail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = email.customer_email
        message["Subject"] = render_subject(email)
        message["Message-ID"] = make_msgid(domain=None)
        message.set_content(
            f"{render_subject(email)}\n\n"
            f"Amount: {email.currency} {email.amount}\n"
            f"Issue date: {email.issue_date}\n"
            + (f"Verify: {email.verification_url}\n" if email.verification_url else "")
        )
        message.add_alternative(render_html(email), subtype="html")
        if email.pdf:
            message.add_attachment(
                email.pdf,
                maintype="application",
                subtype="pdf",
                filename=f"{email.document_number}.pdf",
            )
        return message

    async def send_document_email(self, email: DocumentEmail) -> EmailResult:
        message = self.build_message(email)
        if not self.hostname:
            logger.info(
                "SMTP not configured; simulated email to %s (%s, attachment=%s)",
                email.customer_email, message["Subject"], bool(email.pdf),
            )
            return EmailResult(success=True, message_id=f"simulated-{uuid.uuid4()}", simulated=True)

        try:
            await aiosmtplib.send(
                message,
                hostname=self.hostname,
                port=self.port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                use_tls=settings.smtp_use_tls,
                start_tls=settings.smtp_start_tls and not settings.smtp_use_tls,
                timeout=settings.smtp_timeout_seconds,
            )
        except aiosmtplib.SMTPException as exc:
            logger.warning("Email to %s failed: %s", email.customer_email, exc)
            return EmailResult(success=False, error=str(exc))

        logger.info("Emailed %s to %s", email.document_number, email.customer_email)
        return EmailResult(success=True, message_id=message["Message-ID"])
