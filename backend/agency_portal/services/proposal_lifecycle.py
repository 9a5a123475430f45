"""
Proposal Lifecycle Service.

WHAT: The state machine that moves a proposal through
draft → sent → viewed → approved / declined / expired (and back to draft via
revise, or out via archive/delete), keeping the linked invoice, the clause
snapshot and the audit events consistent with it.

WHY: Proposal and invoice must never disagree. A proposal cannot be
approved without its invoice becoming payable; a declined or expired
proposal must void its invoice; a sent proposal must keep the exact clause
text the client saw. Putting every transition in one service means those
rules live in one place.

HOW:
1. Each public method is one transition, run inside the caller's
   AsyncSession transaction. Transitions only flush; the owner of the unit
   of work (the request dependency or the expiry sweep) calls commit(), so
   proposal, invoice, snapshot and event writes land together.
2. Input is validated before the first write.
3. Replaying a transition whose target state is already reached (send,
   mark_viewed, approve, decline, expire, archive) returns the proposal
   unchanged, so client retries never duplicate snapshots or events.
4. Any other illegal source state raises InvalidStateTransitionError.
5. Notifications are queued by the transition and sent by commit(), only
   after the transaction committed. A failed email never fails a transition.

Example:
    service = ProposalLifecycleService(session)
    proposal = await service.create_proposal(client_id=1, title="Website rebuild")
    await service.add_items(proposal.id, [ProposalItemCreate(service_type="website", ...)])
    await service.send(proposal.id, actor_id="staff-7")
    await service.approve(proposal.id, signature_name="Jane Client")
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from agency_portal.core.config import settings
from agency_portal.core.exceptions import (
    BusinessRuleViolation,
    ClientNotFoundError,
    InvalidStateTransitionError,
    ProposalNotFoundError,
    StaleProposalError,
    ValidationError,
)
from agency_portal.dao.clause import ClauseDAO, ClauseSnapshotDAO
from agency_portal.dao.client import ClientDAO
from agency_portal.dao.event import InvoiceEventDAO, ProposalEventDAO
from agency_portal.dao.invoice import InvoiceDAO, InvoiceItemDAO
from agency_portal.dao.proposal import BillingPlanDAO, ProposalDAO, ProposalItemDAO
from agency_portal.models.base import utcnow
from agency_portal.models.client import Client
from agency_portal.models.clause import (
    Clause,
    ProposalClauseSnapshot,
    ProposalClauseSnapshotItem,
)
from agency_portal.models.invoice import Invoice, InvoiceEventType, InvoiceStatus
from agency_portal.models.proposal import (
    BillingPlan,
    BillingPlanType,
    Proposal,
    ProposalEvent,
    ProposalEventType,
    ProposalItem,
    ProposalStatus,
    ServiceType,
)
from agency_portal.schemas.proposal import ProposalItemCreate
from agency_portal.services import pricing
from agency_portal.services.clause_resolver import ClauseResolver
from agency_portal.services.email import EmailType
from agency_portal.services.notification_service import (
    NotificationDispatcher,
    get_notification_dispatcher,
)


logger = logging.getLogger(__name__)


MISSING_BASICS_MESSAGE = "Please select a client and enter a proposal title"
NO_ITEMS_MESSAGE = "Please select at least one service"

AWAITING_CLIENT = (ProposalStatus.SENT, ProposalStatus.VIEWED)
REVISABLE = (
    ProposalStatus.SENT,
    ProposalStatus.VIEWED,
    ProposalStatus.APPROVED,
    ProposalStatus.DECLINED,
    ProposalStatus.EXPIRED,
)
# Invoices that were never issued to the client can be voided by archive
UNISSUED_INVOICE_STATUSES = (InvoiceStatus.DRAFT, InvoiceStatus.READY, InvoiceStatus.PENDING)


@dataclass
class PendingNotification:
    """A notification waiting for its transition to commit."""

    event_type: EmailType
    proposal_id: int
    recipient: Optional[str]
    payload: Dict[str, Any]


@dataclass
class ClauseSnapshotView:
    snapshot: ProposalClauseSnapshot
    items: List[ProposalClauseSnapshotItem] = field(default_factory=list)


@dataclass
class ProposalDetail:
    """Everything a proposal screen needs, loaded in one call."""

    proposal: Proposal
    client: Optional[Client]
    items: List[ProposalItem]
    billing_plan: Optional[BillingPlan]
    invoice: Optional[Invoice]
    snapshots: List[ClauseSnapshotView]


def compute_content_hash(clauses: Sequence[Clause]) -> str:
    """
    Serialized sorted clause codes of a snapshot, e.g. '["G01", "W01"]'.

    WHY: Sorting makes the hash independent of fetch order. Two snapshots
    locking the same set of clauses carry the same hash, whatever their text.
    """
    return json.dumps(sorted(clause.code for clause in clauses))


class ProposalLifecycleService:
    """
    Proposal → invoice lifecycle engine.

    Attributes:
        session: Unit of work shared by every DAO
        resolver: Maps item service types to clause codes
        dispatcher: Best-effort notification sender
    """

    def __init__(
        self,
        session: AsyncSession,
        resolver: Optional[ClauseResolver] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the lifecycle service.

        Args:
            session: Async database session (rolled back by its owner on error)
            resolver: Clause resolver (defaults to the default service catalog)
            dispatcher: Notification dispatcher (defaults to the process singleton)
            clock: Returns "now" as naive UTC (injectable for tests)
        """
        self.session = session
        self.resolver = resolver or ClauseResolver()
        self._dispatcher = dispatcher
        self._clock = clock or utcnow
        self.pending_notifications: List[PendingNotification] = []

        self.clients = ClientDAO(session)
        self.proposals = ProposalDAO(session)
        self.items = ProposalItemDAO(session)
        self.billing_plans = BillingPlanDAO(session)
        self.invoices = InvoiceDAO(session)
        self.invoice_items = InvoiceItemDAO(session)
        self.proposal_events = ProposalEventDAO(session)
        self.invoice_events = InvoiceEventDAO(session)
        self.clauses = ClauseDAO(session)
        self.snapshots = ClauseSnapshotDAO(session)

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = get_notification_dispatcher()
        return self._dispatcher

    def _now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Loading and guards
    # =========================================================================

    async def get_proposal(self, proposal_id: int) -> Proposal:
        """
        Load a proposal or raise.

        Raises:
            ProposalNotFoundError: If the proposal doesn't exist
        """
        proposal = await self.proposals.get_by_id(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(
                message=f"Proposal {proposal_id} not found",
                resource_type="Proposal",
                resource_id=proposal_id,
            )
        return proposal

    @staticmethod
    def _check_version(proposal: Proposal, expected_version: Optional[int]) -> None:
        if expected_version is not None and proposal.version_id != expected_version:
            raise StaleProposalError(
                message="Proposal was modified by another request; reload and retry",
                proposal_id=proposal.id,
                expected_version=expected_version,
                current_version=proposal.version_id,
            )

    @staticmethod
    def _illegal(proposal: Proposal, requested: str) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            message=f"Cannot {requested} a proposal in '{proposal.status.value}' status",
            proposal_id=proposal.id,
            current_state=proposal.status.value,
            requested_state=requested,
        )

    @staticmethod
    def _require_draft(proposal: Proposal, action: str) -> None:
        if not proposal.is_editable:
            raise InvalidStateTransitionError(
                message=f"Can only {action} while the proposal is a draft",
                proposal_id=proposal.id,
                current_state=proposal.status.value,
            )

    async def _save(self, proposal: Proposal, **fields: Any) -> Proposal:
        """Persist proposal changes, mapping a lost optimistic race to StaleProposalError."""
        try:
            return await self.proposals.apply(proposal, **fields)
        except StaleDataError:
            raise StaleProposalError(
                message="Proposal was modified by another request; reload and retry",
                proposal_id=proposal.id,
            )

    async def _get_client(self, client_id: Optional[int]) -> Client:
        if client_id is None:
            raise ValidationError(message=MISSING_BASICS_MESSAGE, field="client_id")
        client = await self.clients.get_by_id(client_id)
        if client is None:
            raise ClientNotFoundError(
                message=f"Client {client_id} not found",
                resource_type="Client",
                resource_id=client_id,
            )
        return client

    async def _linked_invoice(self, proposal: Proposal) -> Optional[Invoice]:
        invoice = await self.invoices.get_current_for_proposal(proposal.id)
        if invoice is None:
            # WHY: Inconsistent data must not block the proposal side; it is
            # surfaced in the logs for billing to repair.
            logger.warning(f"Proposal {proposal.id} has no linked invoice")
        return invoice

    # =========================================================================
    # Pricing helpers
    # =========================================================================

    def _validate_items(self, items: Sequence[ProposalItemCreate]) -> List[Dict[str, Any]]:
        """Validate requested items and build column values. No writes."""
        if not items:
            raise ValidationError(message=NO_ITEMS_MESSAGE)

        rows = []
        for item in items:
            total = pricing.line_total(item.quantity, item.unit_price)
            service_type = ServiceType(item.service_type)
            name = (item.name or "").strip() or self.resolver.catalog.label_for(service_type)
            rows.append(
                {
                    "service_type": service_type,
                    "name": name,
                    "description": item.description,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "line_total": total,
                }
            )
        return rows

    async def _recompute_value(self, proposal: Proposal) -> List[ProposalItem]:
        """
        Recompute value from every stored item and mirror it onto the invoice.

        Returns:
            The proposal's items in display order
        """
        items = await self.items.get_by_proposal(proposal.id)
        value = pricing.aggregate_value(items)
        if proposal.value != value:
            await self._save(proposal, value=value)

        invoice = await self.invoices.get_current_for_proposal(proposal.id)
        if invoice is not None and invoice.amount_cents != value and not invoice.is_void:
            await self.invoices.apply(invoice, amount_cents=value)
        return items

    # =========================================================================
    # Draft editing
    # =========================================================================

    async def create_proposal(
        self,
        client_id: Optional[int],
        title: Optional[str],
        description: Optional[str] = None,
        currency: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Proposal:
        """
        Create a draft proposal and its pending, locked invoice.

        WHAT: Inserts the proposal (value 0, revision 1), a pending invoice
        (amount 0, locked from send, due in INVOICE_DEFAULT_DUE_DAYS) and the
        created / linked_to_proposal events.

        Raises:
            ValidationError: Missing client or blank title
            ClientNotFoundError: Unknown client
        """
        title = (title or "").strip()
        if not title or client_id is None:
            raise ValidationError(message=MISSING_BASICS_MESSAGE)
        client = await self._get_client(client_id)
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        now = self._now()

        proposal = await self.proposals.create(
            client_id=client.id,
            title=title,
            description=description,
            currency=currency,
            status=ProposalStatus.DRAFT,
            value=0,
            revision=1,
            created_by_user_id=actor_id,
        )
        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.CREATED,
            meta={"title": title},
            actor_id=actor_id,
        )
        await self._issue_invoice(proposal, now, actor_id)

        logger.info(f"Proposal {proposal.id} created for client {client.id}")
        return proposal

    async def _issue_invoice(
        self,
        proposal: Proposal,
        now: datetime,
        actor_id: Optional[str],
        replaces_invoice_id: Optional[int] = None,
    ) -> Invoice:
        """Create the pending, locked invoice that follows a proposal."""
        invoice = await self.invoices.create(
            client_id=proposal.client_id,
            proposal_id=proposal.id,
            amount_cents=proposal.value,
            description=f"Proposal: {proposal.title}",
            status=InvoiceStatus.PENDING,
            due_date=now + timedelta(days=settings.INVOICE_DEFAULT_DUE_DAYS),
            locked_from_send=True,
            activation_source=None,
        )
        link_meta: Dict[str, Any] = {"proposal_id": proposal.id}
        if replaces_invoice_id is not None:
            link_meta["replaces_invoice_id"] = replaces_invoice_id
        await self.invoice_events.record_event(
            invoice.id, InvoiceEventType.CREATED, meta={"proposal_id": proposal.id}, actor_id=actor_id
        )
        await self.invoice_events.record_event(
            invoice.id, InvoiceEventType.LINKED_TO_PROPOSAL, meta=link_meta, actor_id=actor_id
        )
        return invoice

    async def update_proposal(
        self,
        proposal_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        currency: Optional[str] = None,
        client_id: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Edit the basics of a draft proposal.

        WHAT: Title, description, currency and client. The linked invoice
        follows title and client changes.
        """
        proposal = await self.get_proposal(proposal_id)
        self._check_version(proposal, expected_version)
        self._require_draft(proposal, "edit")

        fields: Dict[str, Any] = {}
        invoice_fields: Dict[str, Any] = {}
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationError(message=MISSING_BASICS_MESSAGE, field="title")
            fields["title"] = title
            invoice_fields["description"] = f"Proposal: {title}"
        if description is not None:
            fields["description"] = description
        if currency is not None:
            fields["currency"] = currency.upper()
        if client_id is not None and client_id != proposal.client_id:
            client = await self._get_client(client_id)
            fields["client_id"] = client.id
            invoice_fields["client_id"] = client.id

        if not fields:
            return proposal

        proposal = await self._save(proposal, **fields)
        if invoice_fields:
            invoice = await self._linked_invoice(proposal)
            if invoice is not None:
                await self.invoices.apply(invoice, **invoice_fields)
        return proposal

    async def add_items(
        self,
        proposal_id: int,
        items: Sequence[ProposalItemCreate],
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Append items to a draft and recompute its value.

        WHAT: Inserts the items after the existing ones, recomputes value from
        ALL items, syncs the invoice amount and mirrors the new items onto
        the invoice.

        Raises:
            ValidationError: Empty list, non-positive quantity or negative price
            InvalidStateTransitionError: Proposal is not a draft
        """
        proposal = await self.get_proposal(proposal_id)
        self._check_version(proposal, expected_version)
        self._require_draft(proposal, "add items")
        rows = self._validate_items(items)

        start = await self.items.next_sort_order(proposal.id)
        created = await self.items.create_many(proposal.id, rows, start_sort_order=start)
        await self._recompute_value(proposal)

        invoice = await self._linked_invoice(proposal)
        if invoice is not None:
            await self.invoice_items.mirror_proposal_items(invoice.id, created)

        logger.info(
            f"Added {len(created)} items to proposal {proposal.id}; value is now {proposal.value}"
        )
        return proposal

    async def replace_items(
        self,
        proposal_id: int,
        items: Sequence[ProposalItemCreate],
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Replace every item of a draft (clear, then re-insert).

        WHY: The builder saves the whole service list on each edit.
        """
        proposal = await self.get_proposal(proposal_id)
        self._check_version(proposal, expected_version)
        self._require_draft(proposal, "replace items")
        rows = self._validate_items(items)

        invoice = await self._linked_invoice(proposal)
        if invoice is not None:
            await self.invoice_items.delete_by_invoice(invoice.id)
        await self.items.delete_by_proposal(proposal.id)

        created = await self.items.create_many(proposal.id, rows, start_sort_order=0)
        await self._recompute_value(proposal)
        if invoice is not None:
            await self.invoice_items.mirror_proposal_items(invoice.id, created)

        logger.info(f"Replaced items of proposal {proposal.id}; value is now {proposal.value}")
        return proposal

    async def save_billing_plan(
        self,
        proposal_id: int,
        plan_type: BillingPlanType,
        deposit_percent: Optional[int] = None,
        payment_terms_days: Optional[int] = None,
        start_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> BillingPlan:
        """
        Create or overwrite the billing plan of a draft.

        WHAT: total = current proposal value; deposit computed by the pricing
        aggregator (non-zero only for split plans).
        """
        proposal = await self.get_proposal(proposal_id)
        self._check_version(proposal, expected_version)
        self._require_draft(proposal, "change the billing plan")

        plan_type = BillingPlanType(plan_type)
        terms = settings.INVOICE_DEFAULT_DUE_DAYS if payment_terms_days is None else payment_terms_days
        if terms < 0:
            raise ValidationError(
                message="Payment terms cannot be negative",
                payment_terms_days=terms,
            )
        if plan_type == BillingPlanType.SPLIT and deposit_percent is None:
            deposit_percent = pricing.DEFAULT_DEPOSIT_PERCENT
        if plan_type != BillingPlanType.SPLIT:
            deposit_percent = None

        total = proposal.value
        deposit = pricing.deposit_amount(plan_type, total, deposit_percent)

        return await self.billing_plans.upsert(
            proposal.id,
            plan_type=plan_type,
            currency=proposal.currency,
            total=total,
            deposit=deposit,
            deposit_percent=deposit_percent,
            payment_terms_days=terms,
            start_date=start_date,
            notes=notes,
        )

    # =========================================================================
    # Transitions
    # =========================================================================

    async def send(
        self,
        proposal_id: int,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Send a draft to the client and lock its clauses.

        WHAT:
        1. Require at least one item; recompute value and sync the invoice
        2. Resolve clause codes from the item service types and fetch the
           active clause text
        3. Re-check the status, then create the locked snapshot for the
           current revision (unless it already exists)
        4. status → sent, sent_at = now, expires_at = now + PROPOSAL_VALIDITY_DAYS
        5. Record the sent event and notify the client

        A replay on an already sent/viewed proposal is a no-op.

        Raises:
            ValidationError: Proposal has no items (nothing is written)
            InvalidStateTransitionError: Proposal is not a draft
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status in AWAITING_CLIENT:
            logger.info(f"Proposal {proposal.id} already sent; send is a no-op")
            return proposal
        if proposal.status != ProposalStatus.DRAFT:
            raise self._illegal(proposal, "send")
        self._check_version(proposal, expected_version)

        items = await self.items.get_by_proposal(proposal.id)
        if not items:
            raise ValidationError(message=NO_ITEMS_MESSAGE, proposal_id=proposal.id)

        items = await self._recompute_value(proposal)
        codes = self.resolver.resolve(item.service_type for item in items)
        clauses = await self.clauses.get_active_by_codes(codes)
        missing = set(codes) - {clause.code for clause in clauses}
        if missing:
            logger.warning(
                f"Proposal {proposal.id}: {len(missing)} clause codes have no active "
                f"library entry: {sorted(missing)}"
            )

        # WHY: Re-read right before the snapshot so a send that committed
        # after we loaded the proposal is seen here.
        proposal = await self.proposals.get_fresh(proposal.id)
        if proposal.status in AWAITING_CLIENT:
            logger.info(f"Proposal {proposal.id} was sent concurrently; send is a no-op")
            return proposal
        if proposal.status != ProposalStatus.DRAFT:
            raise self._illegal(proposal, "send")

        snapshot = await self.snapshots.get_by_proposal_version(proposal.id, proposal.revision)
        if snapshot is None:
            try:
                snapshot = await self.snapshots.create_locked(
                    proposal_id=proposal.id,
                    version=proposal.revision,
                    content_hash=compute_content_hash(clauses),
                    clauses=clauses,
                )
            except IntegrityError:
                raise StaleProposalError(
                    message="Proposal was sent by another request; reload it",
                    proposal_id=proposal.id,
                )

        now = self._now()
        proposal = await self._save(
            proposal,
            status=ProposalStatus.SENT,
            sent_at=now,
            expires_at=now + timedelta(days=settings.PROPOSAL_VALIDITY_DAYS),
            expiry_reminder_sent_at=None,
        )
        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.SENT,
            meta={
                "snapshot_id": snapshot.id,
                "snapshot_version": snapshot.version,
                "clause_count": len(clauses),
                "content_hash": snapshot.content_hash,
                "value": proposal.value,
            },
            actor_id=actor_id,
        )
        logger.info(
            f"Proposal {proposal.id} sent (revision {proposal.revision}, "
            f"{len(clauses)} clauses locked)"
        )

        client = await self.clients.get_by_id(proposal.client_id)
        self._queue_notification(
            EmailType.PROPOSAL_SENT,
            proposal.id,
            client.email if client else None,
            self._notification_payload(proposal, client, expires_at=proposal.expires_at),
        )
        return proposal

    async def mark_viewed(self, proposal_id: int, actor_id: Optional[str] = None) -> Proposal:
        """
        Record that the client opened a sent proposal (sent → viewed).

        Raises:
            InvalidStateTransitionError: Proposal is not sent
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status == ProposalStatus.VIEWED:
            return proposal
        if proposal.status != ProposalStatus.SENT:
            raise self._illegal(proposal, "view")

        proposal = await self._save(
            proposal, status=ProposalStatus.VIEWED, viewed_at=self._now()
        )
        await self.proposal_events.record_event(
            proposal.id, ProposalEventType.VIEWED, actor_id=actor_id
        )
        logger.info(f"Proposal {proposal.id} viewed")
        return proposal

    async def approve(
        self,
        proposal_id: int,
        signature_name: Optional[str],
        approved_by: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Approve a sent/viewed proposal and activate its invoice.

        WHAT:
        1. Require a signature and an unexpired proposal
        2. Recompute value from items and sync the invoice amount
        3. status → approved with the approval record
        4. Invoice → unpaid (unless already paid), unlocked, activation
           source "proposal_approval", due per the billing plan terms
        5. Events: invoice activated, proposal approved
        6. Notify staff (approved) and client (invoice activated)

        Raises:
            ValidationError: Missing signature
            InvalidStateTransitionError: Not sent/viewed, or already expired
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status == ProposalStatus.APPROVED:
            logger.info(f"Proposal {proposal.id} already approved; approve is a no-op")
            return proposal
        if proposal.status not in AWAITING_CLIENT:
            raise self._illegal(proposal, "approve")
        self._check_version(proposal, expected_version)

        signature = (signature_name or "").strip()
        if not signature:
            raise ValidationError(
                message="A signature is required to approve the proposal",
                proposal_id=proposal.id,
            )

        now = self._now()
        if proposal.is_expired_at(now):
            raise InvalidStateTransitionError(
                message="Proposal has expired and can no longer be approved",
                proposal_id=proposal.id,
                current_state=proposal.status.value,
                requested_state="approve",
            )

        await self._recompute_value(proposal)

        proposal = await self.proposals.get_fresh(proposal.id)
        if proposal.status == ProposalStatus.APPROVED:
            return proposal
        if proposal.status not in AWAITING_CLIENT:
            raise self._illegal(proposal, "approve")

        approver = approved_by or signature
        proposal = await self._save(
            proposal,
            status=ProposalStatus.APPROVED,
            approved_at=now,
            approved_by=approver,
            approval_signature=signature,
        )

        invoice = await self._linked_invoice(proposal)
        activated = False
        if invoice is not None and invoice.is_void:
            logger.warning(
                f"Proposal {proposal.id} approved but its invoice {invoice.id} is void; "
                f"not reactivating"
            )
        elif invoice is not None:
            plan = await self.billing_plans.get_by_proposal(proposal.id)
            terms = plan.payment_terms_days if plan else settings.INVOICE_DEFAULT_DUE_DAYS
            invoice = await self.invoices.activate(
                invoice, now=now, due_date=now + timedelta(days=terms)
            )
            await self.invoice_events.record_event(
                invoice.id,
                InvoiceEventType.ACTIVATED,
                meta={
                    "proposal_id": proposal.id,
                    "activation_source": invoice.activation_source,
                    "amount_cents": invoice.amount_cents,
                },
                actor_id=approver,
            )
            activated = True

        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.APPROVED,
            meta={
                "signature_name": signature,
                "approved_by": approver,
                "value": proposal.value,
                "invoice_id": invoice.id if invoice else None,
            },
            actor_id=approver,
        )
        logger.info(f"Proposal {proposal.id} approved by {approver}")

        client = await self.clients.get_by_id(proposal.client_id)
        self._queue_notification(
            EmailType.PROPOSAL_APPROVED,
            proposal.id,
            settings.ADMIN_NOTIFICATION_EMAIL,
            self._notification_payload(proposal, client, approved_by=approver),
        )
        if activated:
            self._queue_notification(
                EmailType.INVOICE_ACTIVATED,
                proposal.id,
                client.email if client else None,
                self._notification_payload(
                    proposal,
                    client,
                    invoice_id=invoice.id,
                    due_date=invoice.due_date,
                    amount_cents=invoice.amount_cents,
                ),
            )
        return proposal

    async def decline(
        self,
        proposal_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Decline a sent/viewed proposal and void its invoice.

        Raises:
            InvalidStateTransitionError: Proposal is not sent/viewed
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status == ProposalStatus.DECLINED:
            logger.info(f"Proposal {proposal.id} already declined; decline is a no-op")
            return proposal
        if proposal.status not in AWAITING_CLIENT:
            raise self._illegal(proposal, "decline")
        self._check_version(proposal, expected_version)

        now = self._now()
        proposal = await self._save(proposal, status=ProposalStatus.DECLINED, declined_at=now)
        await self._void_linked_invoice(proposal, "proposal_declined", now, actor_id)
        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.DECLINED,
            meta={"reason": reason} if reason else {},
            actor_id=actor_id,
        )
        logger.info(f"Proposal {proposal.id} declined")

        client = await self.clients.get_by_id(proposal.client_id)
        self._queue_notification(
            EmailType.PROPOSAL_DECLINED,
            proposal.id,
            settings.ADMIN_NOTIFICATION_EMAIL,
            self._notification_payload(proposal, client, reason=reason),
        )
        return proposal

    async def expire(self, proposal_id: int, actor_id: Optional[str] = None) -> Proposal:
        """
        Expire a sent/viewed proposal and void its invoice.

        WHY: Called by the daily sweep once expires_at has passed; staff can
        also expire a proposal early.

        Raises:
            InvalidStateTransitionError: Proposal is not sent/viewed
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status == ProposalStatus.EXPIRED:
            return proposal
        if proposal.status not in AWAITING_CLIENT:
            raise self._illegal(proposal, "expire")

        now = self._now()
        proposal = await self._save(proposal, status=ProposalStatus.EXPIRED)
        await self._void_linked_invoice(proposal, "proposal_expired", now, actor_id)
        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.EXPIRED,
            meta={"expires_at": proposal.expires_at.isoformat() if proposal.expires_at else None},
            actor_id=actor_id,
        )
        logger.info(f"Proposal {proposal.id} expired")
        return proposal

    async def send_expiry_reminder(self, proposal_id: int) -> bool:
        """
        Remind the client that a sent proposal expires soon.

        WHAT: One reminder per sent revision. The reminder is recorded only
        when the email was accepted, so a failed delivery is retried by the
        next sweep.

        Returns:
            True if a reminder was sent
        """
        proposal = await self.get_proposal(proposal_id)
        if not proposal.is_awaiting_client or proposal.expires_at is None:
            return False
        if proposal.expiry_reminder_sent_at is not None:
            return False

        now = self._now()
        remaining = proposal.expires_at - now
        # Round partial days up so "expires tomorrow evening" reads as 1 day
        days_left = max(remaining.days + (1 if remaining.seconds else 0), 0)

        client = await self.clients.get_by_id(proposal.client_id)
        delivered = await self.dispatcher.notify(
            EmailType.PROPOSAL_EXPIRING,
            proposal.id,
            client.email if client else None,
            self._notification_payload(proposal, client, days_until_expiry=days_left),
        )
        if delivered:
            await self._save(proposal, expiry_reminder_sent_at=now)
        return delivered

    async def _void_linked_invoice(
        self,
        proposal: Proposal,
        reason: str,
        now: datetime,
        actor_id: Optional[str],
    ) -> Optional[Invoice]:
        invoice = await self._linked_invoice(proposal)
        if invoice is None or invoice.is_void:
            return invoice
        if invoice.is_paid:
            logger.warning(
                f"Invoice {invoice.id} of proposal {proposal.id} is paid; not voiding ({reason})"
            )
            return invoice

        invoice = await self.invoices.void(invoice, now)
        await self.invoice_events.record_event(
            invoice.id,
            InvoiceEventType.VOIDED,
            meta={"proposal_id": proposal.id, "reason": reason},
            actor_id=actor_id,
        )
        return invoice

    async def revise(
        self,
        proposal_id: int,
        actor_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """
        Reopen a proposal for editing (→ draft) and bump its revision.

        WHAT:
        - The next send creates clause snapshot version = new revision;
          existing snapshots are left untouched
        - A paid invoice blocks the revision
        - A live invoice returns to pending and locked
        - A void invoice stays void; a replacement pending invoice is issued

        Raises:
            InvalidStateTransitionError: Proposal is a draft or archived
            BusinessRuleViolation: The linked invoice is paid
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status not in REVISABLE:
            raise self._illegal(proposal, "revise")
        self._check_version(proposal, expected_version)

        invoice = await self._linked_invoice(proposal)
        if invoice is not None and invoice.is_paid:
            raise BusinessRuleViolation(
                message="Proposal has a paid invoice and cannot be revised",
                proposal_id=proposal.id,
                invoice_id=invoice.id,
            )

        previous_status = proposal.status
        now = self._now()
        proposal = await self._save(
            proposal,
            status=ProposalStatus.DRAFT,
            revision=proposal.revision + 1,
            sent_at=None,
            viewed_at=None,
            approved_at=None,
            declined_at=None,
            expires_at=None,
            approved_by=None,
            approval_signature=None,
            expiry_reminder_sent_at=None,
        )

        if invoice is None or invoice.is_void:
            replaced_id = invoice.id if invoice else None
            invoice = await self._issue_invoice(
                proposal, now, actor_id, replaces_invoice_id=replaced_id
            )
            items = await self.items.get_by_proposal(proposal.id)
            await self.invoice_items.mirror_proposal_items(invoice.id, items)
            invoice_action = "reissued"
        else:
            invoice = await self.invoices.reset_to_pending(invoice)
            invoice_action = "reset"

        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.REVISED,
            meta={
                "from_status": previous_status.value,
                "revision": proposal.revision,
                "invoice_id": invoice.id,
                "invoice_action": invoice_action,
            },
            actor_id=actor_id,
        )
        logger.info(
            f"Proposal {proposal.id} revised from {previous_status.value} "
            f"(revision {proposal.revision}, invoice {invoice_action})"
        )
        return proposal

    async def archive(
        self,
        proposal_id: int,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Proposal:
        """
        Retire a proposal that was sent at least once.

        WHY: Sent proposals are part of the client record (locked clauses,
        events) and are archived instead of deleted. An invoice that was
        never issued is voided; an activated invoice is left to billing.

        Raises:
            InvalidStateTransitionError: Proposal is a draft (delete it instead)
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status == ProposalStatus.ARCHIVED:
            return proposal
        if proposal.status == ProposalStatus.DRAFT:
            raise InvalidStateTransitionError(
                message="Draft proposals are deleted, not archived",
                proposal_id=proposal.id,
                current_state=proposal.status.value,
                requested_state="archive",
            )

        now = self._now()
        proposal = await self._save(proposal, status=ProposalStatus.ARCHIVED, archived_at=now)
        invoice = await self._linked_invoice(proposal)
        if invoice is not None and invoice.status in UNISSUED_INVOICE_STATUSES:
            await self._void_linked_invoice(proposal, "proposal_archived", now, actor_id)
        await self.proposal_events.record_event(
            proposal.id,
            ProposalEventType.ARCHIVED,
            meta={"reason": reason} if reason else {},
            actor_id=actor_id,
        )
        logger.info(f"Proposal {proposal.id} archived")
        return proposal

    async def delete(self, proposal_id: int, actor_id: Optional[str] = None) -> None:
        """
        Hard-delete a draft that was never sent.

        WHAT: Removes items and billing plan, voids and unlinks the pending
        invoice (kept for the billing record), then deletes the proposal.

        Raises:
            InvalidStateTransitionError: Proposal is not a draft or has a
                clause snapshot (was sent before); archive it instead
        """
        proposal = await self.get_proposal(proposal_id)
        if proposal.status != ProposalStatus.DRAFT:
            raise InvalidStateTransitionError(
                message="Only draft proposals can be deleted; archive it instead",
                proposal_id=proposal.id,
                current_state=proposal.status.value,
                requested_state="delete",
            )
        if await self.snapshots.count_for_proposal(proposal.id) > 0:
            raise InvalidStateTransitionError(
                message="Proposal was sent before and can only be archived",
                proposal_id=proposal.id,
                current_state=proposal.status.value,
                requested_state="delete",
            )

        now = self._now()
        for invoice in await self.invoices.get_by_proposal(proposal.id):
            await self.invoice_items.delete_by_invoice(invoice.id)
            if not invoice.is_void and not invoice.is_paid:
                invoice = await self.invoices.void(invoice, now)
                await self.invoice_events.record_event(
                    invoice.id,
                    InvoiceEventType.VOIDED,
                    meta={"proposal_id": proposal.id, "reason": "proposal_deleted"},
                    actor_id=actor_id,
                )
            await self.invoices.apply(invoice, proposal_id=None)

        await self.items.delete_by_proposal(proposal.id)
        await self.billing_plans.delete_by_proposal(proposal.id)
        await self.session.delete(proposal)
        await self.session.flush()
        logger.info(f"Proposal {proposal_id} deleted")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_detail(self, proposal_id: int) -> ProposalDetail:
        """Load a proposal with client, items, billing plan, invoice and snapshots."""
        proposal = await self.get_proposal(proposal_id)
        snapshots = await self.snapshots.get_by_proposal(proposal.id)
        grouped = await self.snapshots.get_items_by_snapshot([s.id for s in snapshots])
        return ProposalDetail(
            proposal=proposal,
            client=await self.clients.get_by_id(proposal.client_id),
            items=await self.items.get_by_proposal(proposal.id),
            billing_plan=await self.billing_plans.get_by_proposal(proposal.id),
            invoice=await self.invoices.get_current_for_proposal(proposal.id),
            snapshots=[ClauseSnapshotView(s, grouped.get(s.id, [])) for s in snapshots],
        )

    async def list_proposals(
        self,
        status: Optional[ProposalStatus] = None,
        client_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Proposal]:
        return await self.proposals.list_proposals(
            status=status, client_id=client_id, skip=skip, limit=limit
        )

    async def list_events(self, proposal_id: int) -> List[ProposalEvent]:
        proposal = await self.get_proposal(proposal_id)
        return await self.proposal_events.list_for(proposal.id)

    # =========================================================================
    # Notifications
    # =========================================================================

    def _queue_notification(
        self,
        event_type: EmailType,
        proposal_id: int,
        recipient: Optional[str],
        payload: Dict[str, Any],
    ) -> None:
        self.pending_notifications.append(
            PendingNotification(event_type, proposal_id, recipient, payload)
        )

    async def commit(self) -> int:
        """
        Commit the unit of work, then send the notifications it queued.

        WHY: Emails describe a transition the client can act on, so they are
        only sent once that transition is durable. If the commit raises, the
        queue is dropped and nothing is sent. Sending after the commit also
        keeps row locks from being held during the email provider round trip.

        Returns:
            Number of notifications the dispatcher accepted
        """
        try:
            await self.session.commit()
        except Exception:
            self.pending_notifications.clear()
            raise

        pending, self.pending_notifications = self.pending_notifications, []
        delivered = 0
        for notification in pending:
            if await self.dispatcher.notify(
                notification.event_type,
                notification.proposal_id,
                notification.recipient,
                notification.payload,
            ):
                delivered += 1
        return delivered

    @staticmethod
    def _notification_payload(
        proposal: Proposal, client: Optional[Client], **extra: Any
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "client_name": client.display_name if client else None,
            "proposal_title": proposal.title,
            "amount_cents": proposal.value,
            "currency": proposal.currency,
        }
        payload.update(extra)
        return payload
