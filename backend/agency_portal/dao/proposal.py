"""
Proposal Data Access Objects (DAO).

WHAT: Database operations for proposals, their line items and billing plans.

WHY: The DAO pattern:
1. Separates data access from the lifecycle rules
2. Keeps every proposal query (expiry scans, listing, item ordering) in one place
3. Applies state changes through the ORM so the optimistic version check runs

HOW: Extends BaseDAO with proposal-specific queries and write helpers.
The lifecycle service decides whether a transition is legal; these
methods only persist the result.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Sequence
from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.dao.base import BaseDAO
from agency_portal.models.proposal import (
    Proposal,
    ProposalItem,
    ProposalStatus,
    BillingPlan,
)


AWAITING_CLIENT_STATUSES = (ProposalStatus.SENT, ProposalStatus.VIEWED)


class ProposalDAO(BaseDAO[Proposal]):
    """
    Data Access Object for Proposal model.

    WHAT: Provides CRUD and query operations for proposals.

    WHY: Centralizes all proposal database operations:
    - Listing with status/client filters
    - Expiry and reminder scans for the scheduled sweep
    - Fresh re-reads used to re-check status right before a snapshot
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize ProposalDAO.

        Args:
            session: Async database session
        """
        super().__init__(Proposal, session)

    async def get_fresh(self, proposal_id: int) -> Optional[Proposal]:
        """
        Re-read a proposal from the database, overwriting in-session state.

        WHAT: SELECT ... FOR UPDATE (where supported) with populate_existing.

        WHY: `send` re-checks the status immediately before inserting the
        clause snapshot. A stale identity-map copy would hide a concurrent
        send that already committed.
        """
        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.id == proposal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_proposals(
        self,
        status: Optional[ProposalStatus] = None,
        client_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Proposal]:
        """
        List proposals newest first, optionally filtered.

        Args:
            status: Only proposals in this status
            client_id: Only proposals for this client
            skip: Pagination offset
            limit: Page size

        Returns:
            List of proposals ordered by creation date (newest first)
        """
        query = select(Proposal)
        if status is not None:
            query = query.where(Proposal.status == status)
        if client_id is not None:
            query = query.where(Proposal.client_id == client_id)
        query = query.order_by(Proposal.created_at.desc(), Proposal.id.desc())
        query = query.offset(skip).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_overdue_for_expiry(self, now: datetime) -> List[Proposal]:
        """
        Get proposals awaiting the client whose deadline has passed.

        WHAT: status in (sent, viewed) and expires_at < now.

        WHY: Input of the daily expiry sweep.
        """
        result = await self.session.execute(
            select(Proposal)
            .where(
                Proposal.status.in_(AWAITING_CLIENT_STATUSES),
                Proposal.expires_at.is_not(None),
                Proposal.expires_at < now,
            )
            .order_by(Proposal.expires_at, Proposal.id)
        )
        return list(result.scalars().all())

    async def get_expiring_soon(self, now: datetime, within_days: int) -> List[Proposal]:
        """
        Get proposals expiring within the reminder window that weren't reminded yet.

        Args:
            now: Current time
            within_days: Window size in days

        Returns:
            Sent/viewed proposals with now <= expires_at <= now + window
            and no reminder recorded
        """
        window_end = now + timedelta(days=within_days)
        result = await self.session.execute(
            select(Proposal)
            .where(
                Proposal.status.in_(AWAITING_CLIENT_STATUSES),
                Proposal.expires_at.is_not(None),
                Proposal.expires_at >= now,
                Proposal.expires_at <= window_end,
                Proposal.expiry_reminder_sent_at.is_(None),
            )
            .order_by(Proposal.expires_at, Proposal.id)
        )
        return list(result.scalars().all())



class ProposalItemDAO(BaseDAO[ProposalItem]):
    """
    Data Access Object for proposal line items.

    WHY: Items are only ever appended or bulk-replaced while the proposal is
    a draft, always in sort_order.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalItem, session)

    async def get_by_proposal(self, proposal_id: int) -> List[ProposalItem]:
        """All items of a proposal in display order."""
        result = await self.session.execute(
            select(ProposalItem)
            .where(ProposalItem.proposal_id == proposal_id)
            .order_by(ProposalItem.sort_order, ProposalItem.id)
        )
        return list(result.scalars().all())

    async def next_sort_order(self, proposal_id: int) -> int:
        """Sort position for the next appended item."""
        result = await self.session.execute(
            select(func.max(ProposalItem.sort_order)).where(
                ProposalItem.proposal_id == proposal_id
            )
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def create_many(
        self,
        proposal_id: int,
        rows: Sequence[Dict[str, Any]],
        start_sort_order: int = 0,
    ) -> List[ProposalItem]:
        """
        Insert several items in one flush.

        Args:
            proposal_id: Owning proposal
            rows: Column values per item (service_type, name, quantity, unit_price, ...)
            start_sort_order: sort_order of the first row; later rows follow it

        Returns:
            The created items, in row order
        """
        items = [
            ProposalItem(proposal_id=proposal_id, sort_order=start_sort_order + index, **row)
            for index, row in enumerate(rows)
        ]
        self.session.add_all(items)
        await self.session.flush()
        for item in items:
            await self.session.refresh(item)
        return items

    async def delete_by_proposal(self, proposal_id: int) -> int:
        """Remove every item of a proposal. Returns the number removed."""
        result = await self.session.execute(
            delete(ProposalItem).where(ProposalItem.proposal_id == proposal_id)
        )
        return result.rowcount or 0


class BillingPlanDAO(BaseDAO[BillingPlan]):
    """Data Access Object for the (single) billing plan of a proposal."""

    def __init__(self, session: AsyncSession):
        super().__init__(BillingPlan, session)

    async def get_by_proposal(self, proposal_id: int) -> Optional[BillingPlan]:
        result = await self.session.execute(
            select(BillingPlan).where(BillingPlan.proposal_id == proposal_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, proposal_id: int, **fields: Any) -> BillingPlan:
        """
        Create the proposal's billing plan or overwrite the existing one.

        WHY: The builder saves the plan every time step 3 is submitted;
        proposal_id is unique so there is never more than one plan.
        """
        plan = await self.get_by_proposal(proposal_id)
        if plan is None:
            return await self.create(proposal_id=proposal_id, **fields)
        return await self.apply(plan, **fields)

    async def delete_by_proposal(self, proposal_id: int) -> int:
        result = await self.session.execute(
            delete(BillingPlan).where(BillingPlan.proposal_id == proposal_id)
        )
        return result.rowcount or 0
