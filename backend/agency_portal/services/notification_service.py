"""
Notification Dispatcher for proposal lifecycle events.

WHAT: Turns lifecycle events (proposal sent, approved, declined, expiring;
invoice activated) into emails for the client or the agency staff.

WHY: Centralizes notification logic so the lifecycle service only says
"this happened, tell this recipient". Delivery is best-effort: a failed
email must never roll back or block a transition.

HOW: `notify` picks the template for the event, renders it with
EmailTemplateService and sends it with EmailService. Every failure is
logged and reported as False; nothing is raised.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from agency_portal.core.config import settings
from agency_portal.core.exceptions import EmailServiceError
from agency_portal.services.email import (
    EmailMessage,
    EmailService,
    EmailType,
    get_email_service,
)
from agency_portal.services.email_template_service import (
    EmailTemplateService,
    get_email_template_service,
)
from agency_portal.services.pricing import format_amount

logger = logging.getLogger(__name__)


def _format_date(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    return str(value)


class NotificationDispatcher:
    """
    Sends lifecycle notifications without ever failing the caller.

    Attributes:
        email_service: Channel used for delivery
        template_service: Renders subject/html/text per event type
        base_url: Base URL for links in emails
    """

    def __init__(
        self,
        email_service: Optional[EmailService] = None,
        template_service: Optional[EmailTemplateService] = None,
        base_url: Optional[str] = None,
    ):
        """
        Initialize NotificationDispatcher.

        WHY: Allows dependency injection for testing while defaulting
        to the process-wide services.
        """
        self.email_service = email_service or get_email_service()
        self.template_service = template_service or get_email_template_service()
        self.base_url = base_url or settings.FRONTEND_URL

    def _build_proposal_url(self, proposal_id: int) -> str:
        return f"{self.base_url}/proposals/{proposal_id}"

    def _build_invoice_url(self, invoice_id: Optional[int]) -> str:
        if invoice_id is None:
            return f"{self.base_url}/invoices"
        return f"{self.base_url}/invoices/{invoice_id}"

    def _render(
        self, event_type: EmailType, proposal_id: int, payload: Mapping[str, Any]
    ) -> tuple[str, str, str]:
        """Render (subject, html, text) for one event type."""
        client_name = payload.get("client_name") or "there"
        proposal_title = payload.get("proposal_title") or "your proposal"
        amount = format_amount(
            int(payload.get("amount_cents") or 0),
            payload.get("currency") or settings.DEFAULT_CURRENCY,
        )
        proposal_url = self._build_proposal_url(proposal_id)

        if event_type == EmailType.PROPOSAL_SENT:
            return self.template_service.render_proposal_sent(
                client_name=client_name,
                proposal_title=proposal_title,
                amount=amount,
                proposal_url=proposal_url,
                expires_at=_format_date(payload.get("expires_at")),
            )
        if event_type == EmailType.PROPOSAL_APPROVED:
            return self.template_service.render_proposal_approved(
                client_name=client_name,
                proposal_title=proposal_title,
                amount=amount,
                approved_by=payload.get("approved_by"),
                proposal_url=proposal_url,
            )
        if event_type == EmailType.PROPOSAL_DECLINED:
            return self.template_service.render_proposal_declined(
                client_name=client_name,
                proposal_title=proposal_title,
                amount=amount,
                reason=payload.get("reason"),
                proposal_url=proposal_url,
            )
        if event_type == EmailType.PROPOSAL_EXPIRING:
            return self.template_service.render_proposal_expiring(
                client_name=client_name,
                proposal_title=proposal_title,
                amount=amount,
                days_until_expiry=int(payload.get("days_until_expiry") or 0),
                proposal_url=proposal_url,
            )
        if event_type == EmailType.INVOICE_ACTIVATED:
            return self.template_service.render_invoice_activated(
                client_name=client_name,
                proposal_title=proposal_title,
                amount=amount,
                due_date=_format_date(payload.get("due_date")),
                invoice_url=self._build_invoice_url(payload.get("invoice_id")),
            )
        raise EmailServiceError(
            message=f"No email template for event {event_type}",
            event_type=str(event_type),
        )

    async def notify(
        self,
        event_type: EmailType,
        proposal_id: int,
        recipient: Optional[str],
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Send a lifecycle notification without raising exceptions.

        WHAT: Fire-and-forget delivery that logs but doesn't fail.

        WHY: Notification failures should not block lifecycle transitions.

        Args:
            event_type: Which lifecycle email to send
            proposal_id: Proposal the event belongs to
            recipient: Email address (None skips delivery)
            payload: Template data (client_name, proposal_title, amount_cents,
                currency, expires_at, approved_by, reason, days_until_expiry,
                invoice_id, due_date)

        Returns:
            True if the email was accepted by the provider, False otherwise
        """
        payload = payload or {}
        if not recipient:
            logger.info(
                f"Skipping {event_type.value} notification for proposal {proposal_id}: "
                f"no recipient address"
            )
            return False

        metadata = {"proposal_id": proposal_id}
        if payload.get("invoice_id") is not None:
            metadata["invoice_id"] = payload["invoice_id"]

        try:
            subject, html, text = self._render(event_type, proposal_id, payload)
            result = await self.email_service.send_email(
                EmailMessage(
                    to_email=recipient,
                    subject=subject,
                    html_content=html,
                    text_content=text,
                    email_type=event_type,
                    metadata=metadata,
                )
            )
            return result.success
        except EmailServiceError as e:
            logger.error(
                f"Failed to send {event_type.value} notification for proposal "
                f"{proposal_id}: {e.message}"
            )
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error sending {event_type.value} notification for proposal "
                f"{proposal_id}: {e}"
            )
            return False


# Module-level singleton
_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get the notification dispatcher singleton."""
    global _dispatcher

    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()

    return _dispatcher
