"""
Email service for sending transactional emails.

WHAT: A unified interface for sending lifecycle emails (proposal sent,
approved, declined, expiring; invoice activated) through a pluggable
provider.

WHY: Email is how the client learns a proposal is waiting and how staff
learn it was approved or declined. Delivery details belong to the provider;
the rest of the code only sees EmailService.send_email.

HOW: Uses the Resend API over httpx when RESEND_API_KEY is set, otherwise a
mock provider that logs and records messages (development and tests).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any, List
from urllib.parse import urlparse

import httpx

from agency_portal.core.config import settings
from agency_portal.models.base import utcnow

logger = logging.getLogger(__name__)


# ============================================================================
# Email Types and Messages
# ============================================================================


class EmailType(str, Enum):
    """
    Types of lifecycle emails.

    WHY: One template and one recipient rule per type.
    """

    PROPOSAL_SENT = "proposal_sent"
    """Client: a proposal is ready for review."""

    PROPOSAL_APPROVED = "proposal_approved"
    """Staff: the client approved a proposal."""

    PROPOSAL_DECLINED = "proposal_declined"
    """Staff: the client declined a proposal."""

    PROPOSAL_EXPIRING = "proposal_expiring"
    """Client: a proposal expires in a few days."""

    INVOICE_ACTIVATED = "invoice_activated"
    """Client: the invoice for an approved proposal is payable."""


@dataclass
class EmailMessage:
    """
    Represents an email to be sent.

    WHAT: Data container for email content and metadata.
    """

    to_email: str
    """Recipient email address."""

    subject: str
    """Email subject line."""

    html_content: str
    """HTML email body."""

    text_content: Optional[str] = None
    """Plain text fallback."""

    from_email: Optional[str] = None
    """Sender (defaults to EMAIL_FROM or noreply@<frontend domain>)."""

    reply_to: Optional[str] = None
    """Reply-to address."""

    email_type: EmailType = EmailType.PROPOSAL_SENT
    """Type of email for tracking/logging."""

    metadata: Optional[Dict[str, Any]] = None
    """Additional metadata (proposal_id, invoice_id)."""


@dataclass
class EmailResult:
    """Result of an email send operation."""

    success: bool
    """Whether email was sent successfully."""

    message_id: Optional[str] = None
    """Provider message ID for tracking."""

    error: Optional[str] = None
    """Error message if send failed."""

    provider: Optional[str] = None
    """Which provider was used."""


# ============================================================================
# Email Provider Interface
# ============================================================================


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    WHY: Provider abstraction allows switching providers and testing with
    a mock provider.
    """

    @abstractmethod
    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Args:
            message: The email message to send

        Returns:
            EmailResult with success status and provider details
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if this provider has the credentials it needs."""


class ResendProvider(EmailProvider):
    """Resend email provider implementation."""

    API_URL = "https://api.resend.com/emails"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 30.0):
        """
        Initialize Resend provider.

        Args:
            api_key: Resend API key (defaults to settings)
            timeout: HTTP timeout in seconds
        """
        self._api_key = api_key or settings.RESEND_API_KEY
        self._timeout = timeout
        self._default_from = settings.EMAIL_FROM or f"Agency Portal <noreply@{self._get_domain()}>"

    @staticmethod
    def _get_domain() -> str:
        """Get domain from FRONTEND_URL for default sender."""
        parsed = urlparse(settings.FRONTEND_URL)
        return parsed.hostname or "localhost"

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send email via Resend API.

        HOW: One POST per message with httpx.AsyncClient. Non-2xx responses
        and transport errors become a failed EmailResult; nothing is raised.
        """
        if not self.is_configured():
            return EmailResult(
                success=False,
                error="Resend API key not configured",
                provider="resend",
            )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self.API_URL,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": message.from_email or self._default_from,
                        "to": [message.to_email],
                        "subject": message.subject,
                        "html": message.html_content,
                        "text": message.text_content,
                        "reply_to": message.reply_to,
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Resend send error: {e}")
            return EmailResult(success=False, error=str(e), provider="resend")

        if response.status_code in (200, 201):
            data = response.json()
            return EmailResult(
                success=True,
                message_id=data.get("id"),
                provider="resend",
            )
        return EmailResult(
            success=False,
            error=f"Resend API error: {response.status_code} - {response.text}",
            provider="resend",
        )


class MockEmailProvider(EmailProvider):
    """
    Mock email provider for testing and development.

    WHY: Allows exercising email flows without sending real emails.
    Logs emails instead of sending them.
    """

    sent_emails: List[EmailMessage] = []
    """Class-level list to track sent emails for testing."""

    def is_configured(self) -> bool:
        """Mock provider is always configured."""
        return True

    async def send(self, message: EmailMessage) -> EmailResult:
        logger.info(
            f"[MOCK EMAIL] To: {message.to_email}, "
            f"Subject: {message.subject}, "
            f"Type: {message.email_type.value}"
        )

        MockEmailProvider.sent_emails.append(message)

        return EmailResult(
            success=True,
            message_id=f"mock-{utcnow().timestamp()}",
            provider="mock",
        )

    @classmethod
    def clear_sent_emails(cls):
        """Clear sent emails list (for test cleanup)."""
        cls.sent_emails = []


# ============================================================================
# Email Service
# ============================================================================


class EmailService:
    """
    Sends messages through the configured provider and logs the outcome.

    WHY: Central entry point for all email sending ensures consistent
    logging; callers decide whether a failure matters.
    """

    def __init__(self, provider: Optional[EmailProvider] = None):
        """
        Initialize email service.

        Args:
            provider: Email provider (defaults to Resend when configured, else mock)
        """
        if provider is None:
            resend = ResendProvider()
            provider = resend if resend.is_configured() else MockEmailProvider()
        self._provider = provider

    @property
    def provider(self) -> EmailProvider:
        return self._provider

    async def send_email(self, message: EmailMessage) -> EmailResult:
        """
        Send an email message.

        Args:
            message: Email message to send

        Returns:
            EmailResult with send status
        """
        logger.info(
            f"Sending {message.email_type.value} email to {message.to_email}",
            extra={
                "email_type": message.email_type.value,
                "to": message.to_email,
            },
        )

        result = await self._provider.send(message)

        if result.success:
            logger.info(
                f"Email sent successfully: {result.message_id}",
                extra={
                    "message_id": result.message_id,
                    "provider": result.provider,
                },
            )
        else:
            logger.error(
                f"Email send failed: {result.error}",
                extra={
                    "email_type": message.email_type.value,
                    "to": message.to_email,
                    "error": result.error,
                },
            )

        return result


# Module-level singleton
_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """
    Get the email service singleton.

    WHY: Provider selection reads settings once per process.
    """
    global _email_service

    if _email_service is None:
        _email_service = EmailService()

    return _email_service
