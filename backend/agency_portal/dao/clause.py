"""
Clause Data Access Objects (DAO).

WHAT: Read access to the clause library and write-once access to
per-proposal clause snapshots.

WHY: `send` resolves clause codes, fetches the active clause text and
freezes it into a locked snapshot. Snapshots are never modified or deleted
afterwards, so only create and read operations exist here.
"""

from typing import Dict, List, Optional, Sequence
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.dao.base import BaseDAO
from agency_portal.models.clause import (
    Clause,
    ProposalClauseSnapshot,
    ProposalClauseSnapshotItem,
    SNAPSHOT_STATUS_LOCKED,
)


class ClauseDAO(BaseDAO[Clause]):
    """Data Access Object for the clause library."""

    def __init__(self, session: AsyncSession):
        super().__init__(Clause, session)

    async def get_active_by_codes(self, codes: Sequence[str]) -> List[Clause]:
        """
        Fetch active clauses for the given codes, ordered by sort_order.

        WHAT: Codes with no active library row are simply absent from the result.
        """
        if not codes:
            return []
        result = await self.session.execute(
            select(Clause)
            .where(Clause.code.in_(list(codes)), Clause.is_active.is_(True))
            .order_by(Clause.sort_order, Clause.code)
        )
        return list(result.scalars().all())


class ClauseSnapshotDAO(BaseDAO[ProposalClauseSnapshot]):
    """Data Access Object for locked clause snapshots."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalClauseSnapshot, session)

    async def get_by_proposal_version(
        self, proposal_id: int, version: int
    ) -> Optional[ProposalClauseSnapshot]:
        result = await self.session.execute(
            select(ProposalClauseSnapshot).where(
                ProposalClauseSnapshot.proposal_id == proposal_id,
                ProposalClauseSnapshot.version == version,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_proposal(self, proposal_id: int) -> List[ProposalClauseSnapshot]:
        """All snapshots of a proposal, oldest version first."""
        result = await self.session.execute(
            select(ProposalClauseSnapshot)
            .where(ProposalClauseSnapshot.proposal_id == proposal_id)
            .order_by(ProposalClauseSnapshot.version)
        )
        return list(result.scalars().all())

    async def count_for_proposal(self, proposal_id: int) -> int:
        result = await self.session.execute(
            select(func.count(ProposalClauseSnapshot.id)).where(
                ProposalClauseSnapshot.proposal_id == proposal_id
            )
        )
        return int(result.scalar_one())

    async def create_locked(
        self,
        proposal_id: int,
        version: int,
        content_hash: str,
        clauses: Sequence[Clause],
    ) -> ProposalClauseSnapshot:
        """
        Create a locked snapshot with a copy of each clause.

        Raises:
            IntegrityError: If a snapshot for (proposal_id, version) already exists
        """
        snapshot = await self.create(
            proposal_id=proposal_id,
            version=version,
            status=SNAPSHOT_STATUS_LOCKED,
            content_hash=content_hash,
        )
        self.session.add_all(
            [
                ProposalClauseSnapshotItem(
                    snapshot_id=snapshot.id,
                    clause_code=clause.code,
                    section=clause.section,
                    title=clause.title,
                    body=clause.body,
                    sort_order=clause.sort_order,
                )
                for clause in clauses
            ]
        )
        await self.session.flush()
        return snapshot

    async def get_items(self, snapshot_id: int) -> List[ProposalClauseSnapshotItem]:
        result = await self.session.execute(
            select(ProposalClauseSnapshotItem)
            .where(ProposalClauseSnapshotItem.snapshot_id == snapshot_id)
            .order_by(ProposalClauseSnapshotItem.sort_order, ProposalClauseSnapshotItem.id)
        )
        return list(result.scalars().all())

    async def get_items_by_snapshot(
        self, snapshot_ids: Sequence[int]
    ) -> Dict[int, List[ProposalClauseSnapshotItem]]:
        """Snapshot items grouped by snapshot id (one query for a whole proposal)."""
        grouped: Dict[int, List[ProposalClauseSnapshotItem]] = {sid: [] for sid in snapshot_ids}
        if not snapshot_ids:
            return grouped
        result = await self.session.execute(
            select(ProposalClauseSnapshotItem)
            .where(ProposalClauseSnapshotItem.snapshot_id.in_(list(snapshot_ids)))
            .order_by(
                ProposalClauseSnapshotItem.snapshot_id,
                ProposalClauseSnapshotItem.sort_order,
                ProposalClauseSnapshotItem.id,
            )
        )
        for item in result.scalars().all():
            grouped[item.snapshot_id].append(item)
        return grouped
