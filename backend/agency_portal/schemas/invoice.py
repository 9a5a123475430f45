"""
Invoice schemas for API request/response validation.

WHAT: Read models for invoices linked to proposals, plus the send action.

WHY: Invoices are created and moved by the proposal lifecycle; the API
only exposes them and lets staff send an activated one.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from agency_portal.models.invoice import InvoiceStatus


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    proposal_item_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    quantity: int
    unit_price: int
    line_total: int
    sort_order: int


class InvoiceEventResponse(BaseModel):
    id: int
    type: str
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_by_user_id: Optional[str] = None
    created_at: datetime


class InvoiceResponse(BaseModel):
    """
    Invoice response schema.

    Note: amount_cents is authoritative; amount is the same value in major
    units for display.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Invoice ID")
    client_id: int
    proposal_id: Optional[int] = Field(None, description="Linked proposal (None once unlinked)")
    amount_cents: int
    amount: Decimal
    description: Optional[str] = None
    status: InvoiceStatus
    due_date: Optional[datetime] = None
    locked_from_send: bool
    activation_source: Optional[str] = None
    activated_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class InvoiceDetailResponse(InvoiceResponse):
    items: List[InvoiceItemResponse] = Field(default_factory=list)
    events: List[InvoiceEventResponse] = Field(default_factory=list)


class InvoiceSendRequest(BaseModel):
    actor_id: Optional[str] = None
