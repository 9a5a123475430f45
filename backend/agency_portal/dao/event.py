"""
Event Data Access Objects (DAO).

WHAT: Append-only access to proposal and invoice lifecycle events.

WHY: Events are the audit trail of the proposal → invoice lifecycle (who
sent, approved, declined; when an invoice was activated or voided).
Compliance requires that they are never altered, so these DAOs expose
record and read operations only. Update and delete raise.

HOW: A shared base parameterized by the event model and its owner column.
"""

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.exceptions import EventLogImmutableError
from agency_portal.models.base import Base
from agency_portal.models.proposal import ProposalEvent, ProposalEventType
from agency_portal.models.invoice import InvoiceEvent, InvoiceEventType


EventModel = TypeVar("EventModel", bound=Base)


class _AppendOnlyEventDAO(Generic[EventModel]):
    """Record/read access to one event table. No update, no delete."""

    owner_field: str = ""

    def __init__(self, model: Type[EventModel], session: AsyncSession):
        self.model = model
        self.session = session

    async def record(
        self,
        owner_id: int,
        event_type: Any,
        meta: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> EventModel:
        """
        Append an event.

        Args:
            owner_id: Proposal or invoice id
            event_type: Event type enum member
            meta: JSON-serializable details (reason, related ids)
            actor_id: Who caused the event (None for the scheduler)

        Returns:
            The stored event
        """
        event = self.model(
            **{self.owner_field: owner_id},
            type=event_type,
            meta=meta or {},
            created_by_user_id=actor_id,
        )
        self.session.add(event)
        await self.session.flush()
        await self.session.refresh(event)
        return event

    async def list_for(self, owner_id: int) -> List[EventModel]:
        """Events of one owner in the order they were recorded."""
        owner_column = getattr(self.model, self.owner_field)
        result = await self.session.execute(
            select(self.model)
            .where(owner_column == owner_id)
            .order_by(self.model.created_at, self.model.id)
        )
        return list(result.scalars().all())

    async def list_types(self, owner_id: int) -> List[str]:
        """Event type values of one owner, oldest first."""
        return [
            e.type.value if hasattr(e.type, "value") else e.type
            for e in await self.list_for(owner_id)
        ]

    async def update(self, event_id: int, **kwargs: Any) -> None:
        """
        Attempt to update an event (BLOCKED).

        Raises:
            EventLogImmutableError: Always raised - updates not allowed
        """
        raise EventLogImmutableError(
            "Lifecycle events are immutable and cannot be updated.",
            event_id=event_id,
        )

    async def delete(self, event_id: int) -> None:
        """
        Attempt to delete an event (BLOCKED).

        Raises:
            EventLogImmutableError: Always raised - deletions not allowed
        """
        raise EventLogImmutableError(
            "Lifecycle events cannot be deleted.",
            event_id=event_id,
        )


class ProposalEventDAO(_AppendOnlyEventDAO[ProposalEvent]):
    """Append-only proposal events."""

    owner_field = "proposal_id"

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalEvent, session)

    async def record_event(
        self,
        proposal_id: int,
        event_type: ProposalEventType,
        meta: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> ProposalEvent:
        return await self.record(proposal_id, event_type, meta=meta, actor_id=actor_id)


class InvoiceEventDAO(_AppendOnlyEventDAO[InvoiceEvent]):
    """Append-only invoice events."""

    owner_field = "invoice_id"

    def __init__(self, session: AsyncSession):
        super().__init__(InvoiceEvent, session)

    async def record_event(
        self,
        invoice_id: int,
        event_type: InvoiceEventType,
        meta: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> InvoiceEvent:
        return await self.record(invoice_id, event_type, meta=meta, actor_id=actor_id)
