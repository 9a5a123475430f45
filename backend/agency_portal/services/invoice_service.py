"""
Invoice Service.

WHAT: Read access to invoices and the staff "send invoice" action.

WHY: An invoice that follows a proposal stays locked from sending until the
proposal is approved. The send guard lives here so every caller honours
the lock.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.exceptions import (
    InvalidStateTransitionError,
    InvoiceLockedError,
    InvoiceNotFoundError,
)
from agency_portal.dao.event import InvoiceEventDAO
from agency_portal.dao.invoice import InvoiceDAO, InvoiceItemDAO
from agency_portal.models.base import utcnow
from agency_portal.models.invoice import Invoice, InvoiceEvent, InvoiceItem

logger = logging.getLogger(__name__)


@dataclass
class InvoiceDetail:
    invoice: Invoice
    items: List[InvoiceItem]
    events: List[InvoiceEvent]


class InvoiceService:
    """Invoice reads and the send action."""

    def __init__(self, session: AsyncSession, clock: Optional[Callable] = None):
        self.session = session
        self.invoices = InvoiceDAO(session)
        self.invoice_items = InvoiceItemDAO(session)
        self.invoice_events = InvoiceEventDAO(session)
        self._clock = clock or utcnow

    async def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = await self.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(
                message=f"Invoice {invoice_id} not found",
                resource_type="Invoice",
                resource_id=invoice_id,
            )
        return invoice

    async def get_detail(self, invoice_id: int) -> InvoiceDetail:
        invoice = await self.get_invoice(invoice_id)
        return InvoiceDetail(
            invoice=invoice,
            items=await self.invoice_items.get_by_invoice(invoice.id),
            events=await self.invoice_events.list_for(invoice.id),
        )

    async def send_invoice(self, invoice_id: int, actor_id: Optional[str] = None) -> Invoice:
        """
        Mark an invoice as sent to the client.

        Raises:
            InvoiceLockedError: The linked proposal is not approved yet
            InvalidStateTransitionError: The invoice is void
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.is_void:
            raise InvalidStateTransitionError(
                message="A void invoice cannot be sent",
                invoice_id=invoice.id,
                current_state=invoice.status.value,
                requested_state="send",
            )
        if invoice.locked_from_send:
            raise InvoiceLockedError(
                message="Invoice is locked until the linked proposal is approved",
                invoice_id=invoice.id,
                proposal_id=invoice.proposal_id,
            )

        invoice = await self.invoices.mark_sent(invoice, self._clock())
        logger.info(f"Invoice {invoice.id} sent by {actor_id or 'system'}")
        return invoice
