"""
Proposal schemas for API request/response validation.

WHAT: Pydantic schemas for the proposal builder, the lifecycle actions and
the proposal detail view.

WHY: Schemas provide:
1. Type-safe request/response handling
2. Automatic validation with clear error messages
3. OpenAPI documentation generation

HOW: Pydantic v2 with Field metadata and model_config. Money is exchanged
as integer cents; quantity/price rules are enforced by the pricing
aggregator so API and service callers get the same errors.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from agency_portal.models.invoice import InvoiceStatus
from agency_portal.models.proposal import (
    BillingPlanType,
    ProposalStatus,
    ServiceType,
)


# ============================================================================
# Request Schemas
# ============================================================================


class ProposalCreate(BaseModel):
    """
    Schema for creating a draft proposal (builder step 1).

    WHY: client_id and title are optional at the schema level so the
    lifecycle service can answer with its own "select a client and enter a
    title" message instead of a generic field error.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "client_id": 1,
                "title": "Website rebuild",
                "description": "New marketing site with CMS",
                "currency": "CAD",
                "actor_id": "staff-7",
            }
        },
    )

    client_id: Optional[int] = Field(default=None, description="Client the proposal is for")
    title: Optional[str] = Field(default=None, max_length=255, description="Proposal title")
    description: Optional[str] = Field(default=None, description="Scope summary")
    currency: Optional[str] = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="ISO currency code (defaults to the agency currency)",
    )
    actor_id: Optional[str] = Field(default=None, description="Staff member creating it")


class ProposalUpdate(BaseModel):
    """Schema for editing the basics of a draft."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    client_id: Optional[int] = None
    expected_version: Optional[int] = Field(
        default=None, description="version_id the caller last saw"
    )


class ProposalItemCreate(BaseModel):
    """
    One requested line item (builder step 2).

    Note: quantity must be a positive integer and unit_price a non-negative
    integer (cents); both are validated by the lifecycle service.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "service_type": "website",
                "name": "Website",
                "quantity": 1,
                "unit_price": 350000,
            }
        },
    )

    service_type: ServiceType = Field(..., description="Catalog service type")
    name: Optional[str] = Field(
        default=None, max_length=255, description="Display name (defaults to the catalog label)"
    )
    description: Optional[str] = None
    quantity: int = Field(default=1, description="Units (positive)")
    unit_price: int = Field(..., description="Price per unit in cents (non-negative)")


class ProposalItemsRequest(BaseModel):
    """Add or replace items."""

    items: List[ProposalItemCreate] = Field(default_factory=list)
    expected_version: Optional[int] = None


class BillingPlanRequest(BaseModel):
    """Billing plan for a draft (builder step 3)."""

    plan_type: BillingPlanType = Field(..., description="How the total is billed")
    deposit_percent: Optional[int] = Field(
        default=None, description="Deposit share for split plans (defaults to 50)"
    )
    payment_terms_days: Optional[int] = Field(
        default=None, description="Days until the activated invoice is due"
    )
    start_date: Optional[datetime] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ProposalAction(BaseModel):
    """Body for send / view / revise / archive."""

    actor_id: Optional[str] = Field(default=None, description="Who performed the action")
    expected_version: Optional[int] = None
    reason: Optional[str] = Field(default=None, max_length=2000)


class ProposalApprove(BaseModel):
    """
    Client approval with typed signature.

    WHY: A typed name is the approval record; approval is refused without it.
    """

    signature_name: Optional[str] = Field(
        default=None, max_length=255, description="Client's typed signature"
    )
    approved_by: Optional[str] = Field(
        default=None, max_length=255, description="Approver identity (defaults to the signature)"
    )
    expected_version: Optional[int] = None


class ProposalDecline(BaseModel):
    """Client decline with an optional reason."""

    reason: Optional[str] = Field(default=None, max_length=2000)
    actor_id: Optional[str] = None
    expected_version: Optional[int] = None


# ============================================================================
# Response Schemas
# ============================================================================


class ProposalItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    service_type: ServiceType
    name: str
    description: Optional[str] = None
    quantity: int
    unit_price: int
    line_total: int
    sort_order: int


class BillingPlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_type: BillingPlanType
    currency: str
    total: int
    deposit: int
    deposit_percent: Optional[int] = None
    balance_after_deposit: int
    payment_terms_days: int
    start_date: Optional[datetime] = None
    notes: Optional[str] = None


class LinkedInvoiceSummary(BaseModel):
    """The invoice that follows the proposal."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: InvoiceStatus
    amount_cents: int
    due_date: Optional[datetime] = None
    locked_from_send: bool
    activation_source: Optional[str] = None


class ClauseSnapshotItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clause_code: str
    section: Optional[str] = None
    title: str
    body: str
    sort_order: int


class ClauseSnapshotResponse(BaseModel):
    id: int
    version: int
    status: str
    content_hash: str
    created_at: datetime
    clauses: List[ClauseSnapshotItemResponse] = Field(default_factory=list)


class ProposalResponse(BaseModel):
    """
    Proposal response schema.

    WHAT: Core proposal fields plus derived flags.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Proposal ID")
    client_id: int = Field(..., description="Client ID")
    title: str
    description: Optional[str] = None
    status: ProposalStatus
    currency: str
    value: int = Field(..., description="Sum of line totals in cents")
    revision: int = Field(..., description="Increments on every revise")
    version_id: int = Field(..., description="Optimistic concurrency token")
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    is_editable: bool


class ProposalDetailResponse(ProposalResponse):
    """Proposal with items, billing plan, linked invoice and clause snapshots."""

    client_name: Optional[str] = None
    items: List[ProposalItemResponse] = Field(default_factory=list)
    billing_plan: Optional[BillingPlanResponse] = None
    invoice: Optional[LinkedInvoiceSummary] = None
    snapshots: List[ClauseSnapshotResponse] = Field(default_factory=list)


class ProposalListResponse(BaseModel):
    """Paginated proposal list."""

    items: List[ProposalResponse]
    total: int
    skip: int
    limit: int


class ProposalEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_by_user_id: Optional[str] = None
    created_at: datetime


class ExpirySweepResponse(BaseModel):
    """Result of a manual expiry sweep."""

    checked: int
    expired: int
    failed: int
    results: List[Dict[str, Any]] = Field(default_factory=list)
