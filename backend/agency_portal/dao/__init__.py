"""
Data Access Object (DAO) package.

WHY: DAOs provide a clean separation between database operations and business logic,
making the codebase more testable and maintainable.
"""

from agency_portal.dao.base import BaseDAO
from agency_portal.dao.client import ClientDAO
from agency_portal.dao.proposal import ProposalDAO, ProposalItemDAO, BillingPlanDAO
from agency_portal.dao.invoice import InvoiceDAO, InvoiceItemDAO
from agency_portal.dao.event import ProposalEventDAO, InvoiceEventDAO
from agency_portal.dao.clause import ClauseDAO, ClauseSnapshotDAO

__all__ = [
    "BaseDAO",
    "ClientDAO",
    "ProposalDAO",
    "ProposalItemDAO",
    "BillingPlanDAO",
    "InvoiceDAO",
    "InvoiceItemDAO",
    "ProposalEventDAO",
    "InvoiceEventDAO",
    "ClauseDAO",
    "ClauseSnapshotDAO",
]
