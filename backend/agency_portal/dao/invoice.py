"""
Invoice Data Access Objects (DAO).

WHAT: Database operations for invoices and their display items.

WHY: The proposal lifecycle keeps the linked invoice in lockstep
(amount sync, activation, voiding, reset on revise). These DAOs hold the
queries and writes; the lifecycle service decides when to call them.
"""

from datetime import datetime
from typing import List, Optional, Sequence
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.dao.base import BaseDAO
from agency_portal.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from agency_portal.models.proposal import ProposalItem


ACTIVATION_SOURCE_PROPOSAL = "proposal_approval"


class InvoiceDAO(BaseDAO[Invoice]):
    """
    Data Access Object for Invoice model.

    WHAT: Provides lookups by proposal and the lifecycle write helpers.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize InvoiceDAO.

        Args:
            session: Async database session
        """
        super().__init__(Invoice, session)

    async def get_by_proposal(self, proposal_id: int) -> List[Invoice]:
        """All invoices ever linked to a proposal, oldest first."""
        result = await self.session.execute(
            select(Invoice).where(Invoice.proposal_id == proposal_id).order_by(Invoice.id)
        )
        return list(result.scalars().all())

    async def get_current_for_proposal(self, proposal_id: int) -> Optional[Invoice]:
        """
        Get the invoice currently linked to a proposal.

        WHY: A revised proposal whose invoice was voided gets a replacement
        invoice. The newest one is the live link; older ones stay void.
        """
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.proposal_id == proposal_id)
            .order_by(Invoice.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def activate(self, invoice: Invoice, now: datetime, due_date: datetime) -> Invoice:
        """
        Make the invoice payable after proposal approval.

        WHAT: status → unpaid (a paid invoice keeps its status), unlocked for
        sending, activation recorded.
        """
        fields = dict(
            locked_from_send=False,
            activation_source=ACTIVATION_SOURCE_PROPOSAL,
            activated_at=now,
            due_date=due_date,
        )
        if invoice.status != InvoiceStatus.PAID:
            fields["status"] = InvoiceStatus.UNPAID
        return await self.apply(invoice, **fields)

    async def void(self, invoice: Invoice, now: datetime) -> Invoice:
        """Void the invoice and lock it from sending."""
        return await self.apply(
            invoice,
            status=InvoiceStatus.VOID,
            locked_from_send=True,
            voided_at=now,
        )

    async def reset_to_pending(self, invoice: Invoice) -> Invoice:
        """
        Return an activated invoice to its pre-approval state.

        WHY: A revised proposal needs approval again before the client can
        be billed.
        """
        return await self.apply(
            invoice,
            status=InvoiceStatus.PENDING,
            locked_from_send=True,
            activation_source=None,
            activated_at=None,
        )

    async def mark_sent(self, invoice: Invoice, now: datetime) -> Invoice:
        return await self.apply(invoice, sent_at=now)


class InvoiceItemDAO(BaseDAO[InvoiceItem]):
    """
    Data Access Object for invoice display items.

    WHY: Invoice items mirror proposal items one-to-one so the invoice shows
    the same lines the client approved.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(InvoiceItem, session)

    async def get_by_invoice(self, invoice_id: int) -> List[InvoiceItem]:
        result = await self.session.execute(
            select(InvoiceItem)
            .where(InvoiceItem.invoice_id == invoice_id)
            .order_by(InvoiceItem.sort_order, InvoiceItem.id)
        )
        return list(result.scalars().all())

    async def mirror_proposal_items(
        self, invoice_id: int, items: Sequence[ProposalItem]
    ) -> List[InvoiceItem]:
        """Copy proposal items onto the invoice, keeping the link and order."""
        mirrored = [
            InvoiceItem(
                invoice_id=invoice_id,
                proposal_item_id=item.id,
                name=item.name,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
                sort_order=item.sort_order,
            )
            for item in items
        ]
        self.session.add_all(mirrored)
        await self.session.flush()
        return mirrored

    async def delete_by_invoice(self, invoice_id: int) -> int:
        result = await self.session.execute(
            delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id)
        )
        return result.rowcount or 0
