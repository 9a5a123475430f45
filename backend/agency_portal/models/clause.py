"""
Clause library and per-proposal clause snapshots.

WHAT: The legal/terms clause library (keyed by short codes like "G01",
"W03") and the immutable copies of clause text taken when a proposal is sent.

WHY: Clause text in the library can be edited at any time. A sent
proposal must keep the exact wording the client saw, so `send` copies the
active clauses into a locked snapshot. Snapshots are never modified or
deleted afterwards; a revised proposal gets a new snapshot version.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped

from agency_portal.models.base import Base, TimestampMixin, utcnow


SNAPSHOT_STATUS_LOCKED = "locked"


class Clause(Base, TimestampMixin):
    """
    Library clause.

    Attributes:
        code: Unique short code ("G01", "W03", ...)
        scope: "global" or the service type the clause belongs to
        section: Heading the clause is grouped under
        title: Clause title
        body: Clause text
        sort_order: Position within the library
        is_active: Inactive clauses are skipped when snapshotting
    """

    __tablename__ = "clauses"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    code: Mapped[str] = Column(String(20), nullable=False, unique=True, index=True)
    scope: Mapped[str] = Column(String(32), nullable=False, default="global")
    section: Mapped[Optional[str]] = Column(String(100), nullable=True)
    title: Mapped[str] = Column(String(255), nullable=False)
    body: Mapped[str] = Column(Text, nullable=False)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Clause(code='{self.code}', active={self.is_active})>"


class ProposalClauseSnapshot(Base):
    """
    Locked set of clause text attached to one send of a proposal.

    version equals the proposal revision that was sent; (proposal_id, version)
    is unique so a retried send can never create a duplicate.
    """

    __tablename__ = "proposal_clause_snapshots"
    __table_args__ = (
        UniqueConstraint("proposal_id", "version", name="uq_clause_snapshot_proposal_version"),
    )

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = Column(Integer, nullable=False, default=1)
    status: Mapped[str] = Column(String(20), nullable=False, default=SNAPSHOT_STATUS_LOCKED)
    content_hash: Mapped[str] = Column(
        Text,
        nullable=False,
        comment="JSON array of the snapshotted clause codes, sorted",
    )
    created_at: Mapped[datetime] = Column(DateTime, default=utcnow, nullable=False)

    @property
    def is_locked(self) -> bool:
        return self.status == SNAPSHOT_STATUS_LOCKED

    def __repr__(self) -> str:
        return (
            f"<ProposalClauseSnapshot(proposal_id={self.proposal_id}, "
            f"version={self.version}, status='{self.status}')>"
        )


class ProposalClauseSnapshotItem(Base):
    """Copy of one clause inside a snapshot."""

    __tablename__ = "proposal_clause_snapshot_items"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    snapshot_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposal_clause_snapshots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    clause_code: Mapped[str] = Column(String(20), nullable=False)
    section: Mapped[Optional[str]] = Column(String(100), nullable=True)
    title: Mapped[str] = Column(String(255), nullable=False)
    body: Mapped[str] = Column(Text, nullable=False)
    sort_order: Mapped[int] = Column(Integer, nullable=False, default=0)
