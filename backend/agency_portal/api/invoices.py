"""
Invoice API endpoints.

WHAT: Read invoices and send an activated invoice to the client.

WHY: Invoices are driven by the proposal lifecycle. Staff can inspect
them at any time but can only send one after its proposal is approved.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from agency_portal.core.deps import get_invoice_service
from agency_portal.schemas.invoice import (
    InvoiceDetailResponse,
    InvoiceEventResponse,
    InvoiceItemResponse,
    InvoiceResponse,
    InvoiceSendRequest,
)
from agency_portal.services.invoice_service import InvoiceDetail, InvoiceService


router = APIRouter(prefix="/invoices", tags=["invoices"])


def _detail_to_response(detail: InvoiceDetail) -> InvoiceDetailResponse:
    base = InvoiceResponse.model_validate(detail.invoice).model_dump()
    return InvoiceDetailResponse(
        **base,
        items=[InvoiceItemResponse.model_validate(item) for item in detail.items],
        events=[
            InvoiceEventResponse(
                id=event.id,
                type=event.type.value,
                meta=event.meta or {},
                created_by_user_id=event.created_by_user_id,
                created_at=event.created_at,
            )
            for event in detail.events
        ],
    )


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse, summary="Get invoice")
async def get_invoice(
    invoice_id: int,
    service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceDetailResponse:
    return _detail_to_response(await service.get_detail(invoice_id))


@router.post(
    "/{invoice_id}/send",
    response_model=InvoiceDetailResponse,
    summary="Send invoice",
    description="Send an activated invoice (locked until the proposal is approved)",
)
async def send_invoice(
    invoice_id: int,
    data: Optional[InvoiceSendRequest] = None,
    service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceDetailResponse:
    """
    Raises:
        InvoiceLockedError (423): Proposal not approved yet
        InvalidStateTransitionError (400): Invoice is void
    """
    data = data or InvoiceSendRequest()
    await service.send_invoice(invoice_id, actor_id=data.actor_id)
    return _detail_to_response(await service.get_detail(invoice_id))
