"""
Invoice models: invoice, display items and lifecycle events.

WHAT: SQLAlchemy models for the billing document linked to a proposal.

WHY: Every proposal gets a pending invoice at creation. The invoice stays
locked from client delivery until the proposal is approved, at which point
it is activated (unpaid); declined or expired proposals void it.

HOW: Amounts are stored as integer minor units (amount_cents), the same unit
the proposal uses. The decimal major-unit amount is derived, never stored,
so proposal and invoice can't disagree about the total.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import Mapped

from agency_portal.models.base import Base, TimestampMixin, JsonType, enum_column, utcnow
from agency_portal.services.pricing import to_major_units


class InvoiceStatus(str, Enum):
    """
    Invoice status.

    WHY: Tracks the invoice through billing:
    - DRAFT/READY: Prepared by billing, not yet issued
    - PENDING: Linked to an unapproved proposal, locked from sending
    - UNPAID: Activated by proposal approval, awaiting payment
    - PAID: Settled (set by the payment side, never by the proposal lifecycle)
    - OVERDUE: Past due date
    - VOID: Cancelled; a void invoice is never reopened
    """

    DRAFT = "draft"
    READY = "ready"
    PENDING = "pending"
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class InvoiceEventType(str, Enum):
    """Audit event types recorded against an invoice."""

    CREATED = "created"
    LINKED_TO_PROPOSAL = "linked_to_proposal"
    ACTIVATED = "activated"
    VOIDED = "voided"


class Invoice(Base, TimestampMixin):
    """
    Client invoice model.

    Attributes:
        id: Primary key
        client_id: Billed client
        proposal_id: Originating proposal (nullable for standalone invoices)
        amount_cents: Total in minor units; mirrors the proposal value
        description: Invoice description ("Proposal: <title>")
        status: Current billing status
        due_date: Payment due date
        locked_from_send: True while the invoice must not reach the client
        activation_source: What activated the invoice ("proposal_approval")
        activated_at: When it became payable
        voided_at: When it was voided
    """

    __tablename__ = "invoices"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    client_id: Mapped[int] = Column(
        Integer,
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    proposal_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Originating proposal",
    )

    amount_cents: Mapped[int] = Column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Invoice total in minor units",
    )
    description: Mapped[Optional[str]] = Column(Text, nullable=True)

    status: Mapped[InvoiceStatus] = Column(
        enum_column(InvoiceStatus, "invoicestatus"),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True,
    )
    due_date: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    locked_from_send: Mapped[bool] = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="Blocks client delivery until the proposal is approved",
    )
    activation_source: Mapped[Optional[str]] = Column(String(50), nullable=True)
    activated_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    voided_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    sent_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    @property
    def amount(self) -> Decimal:
        """Invoice total in major currency units (e.g. dollars)."""
        return to_major_units(self.amount_cents)

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, proposal_id={self.proposal_id}, "
            f"status={self.status}, amount_cents={self.amount_cents})>"
        )


class InvoiceItem(Base):
    """Display copy of a proposal item on the linked invoice."""

    __tablename__ = "invoice_items"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposal_item_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("proposal_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    quantity: Mapped[int] = Column(Integer, nullable=False, default=1)
    unit_price: Mapped[int] = Column(BigInteger, nullable=False, default=0)
    line_total: Mapped[int] = Column(BigInteger, nullable=False, default=0)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)


class InvoiceEvent(Base):
    """Append-only audit event for an invoice."""

    __tablename__ = "invoice_events"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = Column(
        Integer,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[InvoiceEventType] = Column(
        enum_column(InvoiceEventType, "invoiceeventtype"),
        nullable=False,
    )
    meta: Mapped[Dict[str, Any]] = Column(JsonType, nullable=False, default=dict)
    created_by_user_id: Mapped[Optional[str]] = Column(String(255), nullable=True)
    created_at: Mapped[datetime] = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<InvoiceEvent(invoice_id={self.invoice_id}, type={self.type})>"
