"""
Email Template Service for rendering Jinja2 email templates.

WHAT: Loads and renders the lifecycle email templates.

WHY: Template-based emails keep branding consistent and let the wording
change without touching the lifecycle code.

HOW: Jinja2 environment with FileSystemLoader over the package's
templates/email directory. Each email type has a render method returning
(subject, html_content, text_content).
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape, TemplateNotFound

from agency_portal.core.config import settings
from agency_portal.core.exceptions import EmailServiceError
from agency_portal.models.base import utcnow


logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


class EmailTemplateService:
    """
    Service for rendering email templates.

    Example:
        template_service = EmailTemplateService()
        subject, html, text = template_service.render_proposal_sent(
            client_name="Acme",
            proposal_title="Website rebuild",
            amount="CAD 4,600.00",
            proposal_url="https://...",
            expires_at="2026-11-16",
        )
    """

    def __init__(self, template_dir: Optional[Path] = None):
        """
        Initialize template service.

        Args:
            template_dir: Path to templates directory (defaults to agency_portal/templates/email)
        """
        self._template_dir = template_dir or DEFAULT_TEMPLATE_DIR
        self._env = self._create_environment()

    def _create_environment(self) -> Environment:
        """
        Create Jinja2 environment.

        WHY: Auto-escaping keeps client-entered proposal titles from
        injecting markup into emails.
        """
        return Environment(
            loader=FileSystemLoader(str(self._template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _get_base_context(self) -> Dict[str, Any]:
        """Common variables for every template (footer, links)."""
        return {
            "year": utcnow().year,
            "frontend_url": settings.FRONTEND_URL,
            "platform_name": settings.PROJECT_NAME.replace(" API", ""),
        }

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        """
        Render a template with given context.

        Args:
            template_name: Name of template file (e.g., "proposal_sent.html")
            context: Template variables

        Returns:
            Rendered HTML string

        Raises:
            EmailServiceError: If template not found or render fails
        """
        try:
            template = self._env.get_template(template_name)
            full_context = {**self._get_base_context(), **context}
            return template.render(**full_context)
        except TemplateNotFound:
            logger.error(f"Email template not found: {template_name}")
            raise EmailServiceError(
                message=f"Email template not found: {template_name}",
                template=template_name,
            )
        except Exception as e:
            logger.error(f"Error rendering template {template_name}: {e}")
            raise EmailServiceError(
                message="Failed to render email template",
                template=template_name,
                error=str(e),
            )

    def render_proposal_sent(
        self,
        client_name: str,
        proposal_title: str,
        amount: str,
        proposal_url: str,
        expires_at: Optional[str] = None,
    ) -> tuple[str, str, str]:
        """Client email: a proposal is ready for review."""
        context = {
            "client_name": client_name,
            "proposal_title": proposal_title,
            "amount": amount,
            "proposal_url": proposal_url,
            "expires_at": expires_at,
        }
        html = self.render_template("proposal_sent.html", context)
        text = self._generate_text_version(
            f"Hi {client_name},\n\n"
            f"A new proposal is ready for your review: {proposal_title}\n"
            f"Total: {amount}\n"
            + (f"Please respond by {expires_at}.\n" if expires_at else "")
            + f"\nView proposal: {proposal_url}"
        )
        return f"New proposal: {proposal_title}", html, text

    def render_proposal_approved(
        self,
        client_name: str,
        proposal_title: str,
        amount: str,
        approved_by: Optional[str],
        proposal_url: str,
    ) -> tuple[str, str, str]:
        """Staff email: the client approved a proposal."""
        context = {
            "client_name": client_name,
            "proposal_title": proposal_title,
            "amount": amount,
            "approved_by": approved_by,
            "proposal_url": proposal_url,
        }
        html = self.render_template("proposal_approved.html", context)
        text = self._generate_text_version(
            f"{client_name} approved the proposal \"{proposal_title}\" ({amount}).\n"
            + (f"Signed by: {approved_by}\n" if approved_by else "")
            + f"\nView proposal: {proposal_url}"
        )
        return f"Proposal approved: {proposal_title}", html, text

    def render_proposal_declined(
        self,
        client_name: str,
        proposal_title: str,
        amount: str,
        reason: Optional[str],
        proposal_url: str,
    ) -> tuple[str, str, str]:
        """Staff email: the client declined a proposal."""
        context = {
            "client_name": client_name,
            "proposal_title": proposal_title,
            "amount": amount,
            "reason": reason,
            "proposal_url": proposal_url,
        }
        html = self.render_template("proposal_declined.html", context)
        text = self._generate_text_version(
            f"{client_name} declined the proposal \"{proposal_title}\" ({amount}).\n"
            + (f"Reason: {reason}\n" if reason else "")
            + f"\nView proposal: {proposal_url}"
        )
        return f"Proposal declined: {proposal_title}", html, text

    def render_proposal_expiring(
        self,
        client_name: str,
        proposal_title: str,
        amount: str,
        days_until_expiry: int,
        proposal_url: str,
    ) -> tuple[str, str, str]:
        """Client reminder: a proposal expires soon."""
        context = {
            "client_name": client_name,
            "proposal_title": proposal_title,
            "amount": amount,
            "days_until_expiry": days_until_expiry,
            "proposal_url": proposal_url,
        }
        html = self.render_template("proposal_expiring.html", context)
        day_word = "day" if days_until_expiry == 1 else "days"
        text = self._generate_text_version(
            f"Hi {client_name},\n\n"
            f"Your proposal \"{proposal_title}\" ({amount}) expires in "
            f"{days_until_expiry} {day_word}.\n"
            f"\nReview it here: {proposal_url}"
        )
        return (
            f"Reminder: proposal expires in {days_until_expiry} {day_word}",
            html,
            text,
        )

    def render_invoice_activated(
        self,
        client_name: str,
        proposal_title: str,
        amount: str,
        due_date: Optional[str],
        invoice_url: str,
    ) -> tuple[str, str, str]:
        """Client email: the invoice for an approved proposal is payable."""
        context = {
            "client_name": client_name,
            "proposal_title": proposal_title,
            "amount": amount,
            "due_date": due_date,
            "invoice_url": invoice_url,
        }
        html = self.render_template("invoice_activated.html", context)
        text = self._generate_text_version(
            f"Hi {client_name},\n\n"
            f"Thank you for approving \"{proposal_title}\". Your invoice for {amount} is ready"
            + (f" and due on {due_date}" if due_date else "")
            + ".\n"
            f"\nView invoice: {invoice_url}"
        )
        return f"Invoice ready: {proposal_title}", html, text

    @staticmethod
    def _generate_text_version(content: str) -> str:
        """Plain text fallback with the standard footer."""
        footer = (
            "\n\n---\n"
            "Sent from your client portal.\n"
            "If you didn't expect this email, please ignore it."
        )
        return content.strip() + footer


# Module-level singleton
_template_service: Optional[EmailTemplateService] = None


def get_email_template_service() -> EmailTemplateService:
    """Get the template service singleton."""
    global _template_service

    if _template_service is None:
        _template_service = EmailTemplateService()

    return _template_service
