"""
Database models package.

WHY: Centralizing model imports ensures Alembic can discover all models
for migration generation and makes it easier to import models elsewhere.
"""

from agency_portal.models.base import Base, TimestampMixin
from agency_portal.models.client import Client
from agency_portal.models.proposal import (
    Proposal,
    ProposalItem,
    BillingPlan,
    ProposalEvent,
    ProposalStatus,
    ProposalEventType,
    ServiceType,
    BillingPlanType,
)
from agency_portal.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoiceEvent,
    InvoiceStatus,
    InvoiceEventType,
)
from agency_portal.models.clause import (
    Clause,
    ProposalClauseSnapshot,
    ProposalClauseSnapshotItem,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Client",
    "Proposal",
    "ProposalItem",
    "BillingPlan",
    "ProposalEvent",
    "ProposalStatus",
    "ProposalEventType",
    "ServiceType",
    "BillingPlanType",
    "Invoice",
    "InvoiceItem",
    "InvoiceEvent",
    "InvoiceStatus",
    "InvoiceEventType",
    "Clause",
    "ProposalClauseSnapshot",
    "ProposalClauseSnapshotItem",
]
