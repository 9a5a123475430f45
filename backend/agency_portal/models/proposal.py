"""
Proposal models: proposal, line items, billing plan and lifecycle events.

WHAT: SQLAlchemy models for the agency's priced offer to a client.

WHY: Proposals are the business documents that:
1. Define project scope through service line items
2. Specify pricing (integer minor units) and the billing plan
3. Track the approval workflow (draft → sent → viewed → approved/declined/expired)
4. Drive the linked invoice, which follows the proposal's lifecycle

HOW: Uses SQLAlchemy 2.0 with:
- Status enum for the approval workflow
- Line items in their own table, bulk-replaced while in draft
- An optimistic concurrency column (version_id) managed by the mapper
- Append-only events as the audit trail
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import Mapped

from agency_portal.models.base import Base, TimestampMixin, JsonType, enum_column, utcnow


class ProposalStatus(str, Enum):
    """
    Proposal approval workflow status.

    WHY: Tracks proposal through business process:
    - DRAFT: Being created/edited, not visible to client
    - SENT: Sent to client for review, clauses locked
    - VIEWED: Client has opened the proposal
    - APPROVED: Client signed; linked invoice activated
    - DECLINED: Client declined; linked invoice voided
    - EXPIRED: Validity period passed; linked invoice voided
    - ARCHIVED: Retired by staff; kept for the record, never deleted
    """

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"
    ARCHIVED = "archived"


class ServiceType(str, Enum):
    """Agency service lines a proposal item can be priced under."""

    WEBSITE = "website"
    LANDING_PAGE = "landing_page"
    WEB_APP = "web_app"
    BRAND_IDENTITY = "brand_identity"
    SEO = "seo"
    GRAPHIC_DESIGN = "graphic_design"
    VIDEO_EDITING = "video_editing"
    RETAINER = "retainer"
    OTHER = "other"


class BillingPlanType(str, Enum):
    """
    How the proposal total is collected.

    WHY: Only SPLIT carries an upfront deposit; the other plans bill the
    total on their own schedule.
    """

    FULL_UPFRONT = "full_upfront"
    SPLIT = "split"
    MILESTONES = "milestones"
    MONTHLY_RETAINER = "monthly_retainer"
    CUSTOM = "custom"


class ProposalEventType(str, Enum):
    """Audit event types recorded against a proposal."""

    CREATED = "created"
    SENT = "sent"
    VIEWED = "viewed"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"
    REVISED = "revised"
    ARCHIVED = "archived"


class Proposal(Base, TimestampMixin):
    """
    Client proposal model.

    WHAT: A priced offer to a client, composed of service line items.

    WHY: Formalizes the business agreement:
    - Documents scope of work (items + locked clause snapshot)
    - Specifies pricing (value = sum of line totals, minor units)
    - Tracks approval and signature
    - Drives activation or voiding of the linked invoice

    Attributes:
        id: Primary key
        client_id: Client the proposal is addressed to
        title: Proposal title
        description: Scope description
        status: Current workflow status
        currency: ISO currency code
        value: Sum of item line totals in minor units (cents)
        revision: Content revision, bumped by each revise; also the
            clause snapshot version
        expires_at: Deadline for client action, set on send
        sent_at / viewed_at / approved_at / declined_at / archived_at:
            Workflow timestamps
        approved_by: Actor who recorded the approval
        approval_signature: Typed signature captured at approval
        expiry_reminder_sent_at: When the "expiring soon" email went out
        created_by_user_id: Staff member who created the proposal
        version_id: Optimistic concurrency counter
    """

    __tablename__ = "proposals"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)

    client_id: Mapped[int] = Column(
        Integer,
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Client the proposal is addressed to",
    )

    title: Mapped[str] = Column(String(255), nullable=False, comment="Proposal title")
    description: Mapped[Optional[str]] = Column(
        Text, nullable=True, comment="Scope of work description"
    )

    status: Mapped[ProposalStatus] = Column(
        enum_column(ProposalStatus, "proposalstatus"),
        nullable=False,
        default=ProposalStatus.DRAFT,
        index=True,
        comment="Current proposal status",
    )

    currency: Mapped[str] = Column(String(3), nullable=False, default="CAD")
    value: Mapped[int] = Column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Sum of line totals in minor units",
    )
    revision: Mapped[int] = Column(
        Integer,
        nullable=False,
        default=1,
        comment="Content revision; clause snapshot version",
    )

    # Workflow timestamps
    expires_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True, index=True)
    sent_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    approved_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    declined_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    archived_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    expiry_reminder_sent_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    # Approval record
    approved_by: Mapped[Optional[str]] = Column(String(255), nullable=True)
    approval_signature: Mapped[Optional[str]] = Column(String(255), nullable=True)

    created_by_user_id: Mapped[Optional[str]] = Column(String(255), nullable=True)

    # WHY: The mapper adds "AND version_id = :old" to every UPDATE and raises
    # StaleDataError when another transaction got there first.
    version_id: Mapped[int] = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_editable(self) -> bool:
        """Items, basics and billing plan can only change in draft."""
        return self.status == ProposalStatus.DRAFT

    @property
    def is_awaiting_client(self) -> bool:
        """Sent or viewed: the client can still approve or decline."""
        return self.status in (ProposalStatus.SENT, ProposalStatus.VIEWED)

    def is_expired_at(self, now: datetime) -> bool:
        """Whether the client-action deadline has passed at ``now``."""
        return self.expires_at is not None and self.expires_at < now

    def __repr__(self) -> str:
        return f"<Proposal(id={self.id}, title='{self.title}', status={self.status})>"


class ProposalItem(Base):
    """
    One priced service line of a proposal.

    line_total is always quantity × unit_price, both integers in minor units.
    """

    __tablename__ = "proposal_items"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_type: Mapped[ServiceType] = Column(
        enum_column(ServiceType, "servicetype"),
        nullable=False,
        default=ServiceType.OTHER,
    )
    name: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    quantity: Mapped[int] = Column(Integer, nullable=False, default=1)
    unit_price: Mapped[int] = Column(BigInteger, nullable=False, default=0)
    line_total: Mapped[int] = Column(BigInteger, nullable=False, default=0)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ProposalItem(id={self.id}, proposal_id={self.proposal_id}, "
            f"service_type={self.service_type}, line_total={self.line_total})>"
        )


class BillingPlan(Base, TimestampMixin):
    """
    Payment structure attached to a proposal (at most one per proposal).

    Invariant: 0 <= deposit <= total, and deposit is non-zero only for SPLIT.
    """

    __tablename__ = "billing_plans"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    plan_type: Mapped[BillingPlanType] = Column(
        enum_column(BillingPlanType, "billingplantype"),
        nullable=False,
        default=BillingPlanType.FULL_UPFRONT,
    )
    currency: Mapped[str] = Column(String(3), nullable=False, default="CAD")
    total: Mapped[int] = Column(BigInteger, nullable=False, default=0)
    deposit: Mapped[int] = Column(BigInteger, nullable=False, default=0)
    deposit_percent: Mapped[Optional[int]] = Column(Integer, nullable=True)
    payment_terms_days: Mapped[int] = Column(Integer, nullable=False, default=7)
    start_date: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    @property
    def balance_after_deposit(self) -> int:
        return self.total - self.deposit

    def __repr__(self) -> str:
        return (
            f"<BillingPlan(proposal_id={self.proposal_id}, plan_type={self.plan_type}, "
            f"total={self.total}, deposit={self.deposit})>"
        )


class ProposalEvent(Base):
    """
    Append-only audit event for a proposal.

    WHY: The event log answers who sent, approved or declined a proposal
    and when. Rows are never updated or deleted (see ProposalEventDAO).
    """

    __tablename__ = "proposal_events"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[ProposalEventType] = Column(
        enum_column(ProposalEventType, "proposaleventtype"),
        nullable=False,
    )
    meta: Mapped[Dict[str, Any]] = Column(JsonType, nullable=False, default=dict)
    created_by_user_id: Mapped[Optional[str]] = Column(String(255), nullable=True)
    created_at: Mapped[datetime] = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ProposalEvent(proposal_id={self.proposal_id}, type={self.type})>"
