"""
Proposal API endpoints.

WHAT: REST API for the proposal builder and the proposal lifecycle
(send, view, approve, decline, expire, revise, archive, delete).

WHY: The portal frontend drives the whole proposal → invoice flow through
these endpoints; staff build and send, clients view and approve or decline.

HOW: Thin FastAPI handlers. Each handler calls one ProposalLifecycleService
operation on the request session and returns the refreshed proposal
detail. Errors are AppException subclasses rendered by the registered
exception handlers.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from agency_portal.core.deps import get_lifecycle_service
from agency_portal.models.proposal import ProposalStatus
from agency_portal.schemas.proposal import (
    BillingPlanRequest,
    BillingPlanResponse,
    ClauseSnapshotItemResponse,
    ClauseSnapshotResponse,
    ExpirySweepResponse,
    LinkedInvoiceSummary,
    ProposalAction,
    ProposalApprove,
    ProposalCreate,
    ProposalDecline,
    ProposalDetailResponse,
    ProposalEventResponse,
    ProposalItemResponse,
    ProposalItemsRequest,
    ProposalListResponse,
    ProposalResponse,
    ProposalUpdate,
)
from agency_portal.services.proposal_expiry_service import get_expiry_service
from agency_portal.services.proposal_lifecycle import (
    ProposalDetail,
    ProposalLifecycleService,
)


router = APIRouter(prefix="/proposals", tags=["proposals"])


def _detail_to_response(detail: ProposalDetail) -> ProposalDetailResponse:
    """
    Convert a ProposalDetail to its response schema.

    WHY: One conversion for every endpoint keeps the response shape stable.
    """
    base = ProposalResponse.model_validate(detail.proposal).model_dump()
    return ProposalDetailResponse(
        **base,
        client_name=detail.client.display_name if detail.client else None,
        items=[ProposalItemResponse.model_validate(item) for item in detail.items],
        billing_plan=(
            BillingPlanResponse.model_validate(detail.billing_plan)
            if detail.billing_plan
            else None
        ),
        invoice=(
            LinkedInvoiceSummary.model_validate(detail.invoice) if detail.invoice else None
        ),
        snapshots=[
            ClauseSnapshotResponse(
                id=view.snapshot.id,
                version=view.snapshot.version,
                status=view.snapshot.status,
                content_hash=view.snapshot.content_hash,
                created_at=view.snapshot.created_at,
                clauses=[ClauseSnapshotItemResponse.model_validate(i) for i in view.items],
            )
            for view in detail.snapshots
        ],
    )


async def _respond(service: ProposalLifecycleService, proposal_id: int) -> ProposalDetailResponse:
    return _detail_to_response(await service.get_detail(proposal_id))


# ============================================================================
# Builder
# ============================================================================


@router.post(
    "",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create proposal",
    description="Create a draft proposal and its pending invoice",
)
async def create_proposal(
    data: ProposalCreate,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    """
    Create a draft proposal.

    Raises:
        ValidationError (400): Missing client or title
        ClientNotFoundError (404): Unknown client
    """
    proposal = await service.create_proposal(
        client_id=data.client_id,
        title=data.title,
        description=data.description,
        currency=data.currency,
        actor_id=data.actor_id,
    )
    return await _respond(service, proposal.id)


@router.get(
    "",
    response_model=ProposalListResponse,
    summary="List proposals",
)
async def list_proposals(
    status_filter: Optional[ProposalStatus] = Query(
        default=None, alias="status", description="Filter by status"
    ),
    client_id: Optional[int] = Query(default=None, description="Filter by client"),
    skip: int = Query(default=0, ge=0, description="Number of items to skip"),
    limit: int = Query(default=20, ge=1, le=100, description="Maximum items to return"),
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalListResponse:
    proposals = await service.list_proposals(
        status=status_filter, client_id=client_id, skip=skip, limit=limit
    )
    filters = {}
    if status_filter is not None:
        filters["status"] = status_filter
    if client_id is not None:
        filters["client_id"] = client_id
    total = await service.proposals.count(**filters)
    return ProposalListResponse(
        items=[ProposalResponse.model_validate(p) for p in proposals],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post(
    "/expire-sweep",
    response_model=ExpirySweepResponse,
    summary="Run expiry sweep",
    description="Expire every sent/viewed proposal whose deadline has passed",
)
async def run_expiry_sweep() -> ExpirySweepResponse:
    stats = await get_expiry_service().expire_overdue_proposals()
    return ExpirySweepResponse(**stats)


@router.get("/{proposal_id}", response_model=ProposalDetailResponse, summary="Get proposal")
async def get_proposal(
    proposal_id: int,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    return await _respond(service, proposal_id)


@router.patch("/{proposal_id}", response_model=ProposalDetailResponse, summary="Edit draft")
async def update_proposal(
    proposal_id: int,
    data: ProposalUpdate,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    await service.update_proposal(
        proposal_id,
        title=data.title,
        description=data.description,
        currency=data.currency,
        client_id=data.client_id,
        expected_version=data.expected_version,
    )
    return await _respond(service, proposal_id)


@router.delete(
    "/{proposal_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete draft",
    description="Delete a never-sent draft (sent proposals are archived instead)",
)
async def delete_proposal(
    proposal_id: int,
    actor_id: Optional[str] = Query(default=None),
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> Response:
    await service.delete(proposal_id, actor_id=actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{proposal_id}/items", response_model=ProposalDetailResponse, summary="Add items")
async def add_items(
    proposal_id: int,
    data: ProposalItemsRequest,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    await service.add_items(proposal_id, data.items, expected_version=data.expected_version)
    return await _respond(service, proposal_id)


@router.put(
    "/{proposal_id}/items", response_model=ProposalDetailResponse, summary="Replace items"
)
async def replace_items(
    proposal_id: int,
    data: ProposalItemsRequest,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    await service.replace_items(proposal_id, data.items, expected_version=data.expected_version)
    return await _respond(service, proposal_id)


@router.put(
    "/{proposal_id}/billing-plan",
    response_model=ProposalDetailResponse,
    summary="Save billing plan",
)
async def save_billing_plan(
    proposal_id: int,
    data: BillingPlanRequest,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    await service.save_billing_plan(
        proposal_id,
        plan_type=data.plan_type,
        deposit_percent=data.deposit_percent,
        payment_terms_days=data.payment_terms_days,
        start_date=data.start_date,
        notes=data.notes,
        expected_version=data.expected_version,
    )
    return await _respond(service, proposal_id)


# ============================================================================
# Lifecycle transitions
# ============================================================================


@router.post("/{proposal_id}/send", response_model=ProposalDetailResponse, summary="Send")
async def send_proposal(
    proposal_id: int,
    data: Optional[ProposalAction] = None,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    """
    Send a draft to the client, locking its clauses.

    Raises:
        ValidationError (400): No items
        InvalidStateTransitionError (400): Not a draft
    """
    data = data or ProposalAction()
    await service.send(
        proposal_id, actor_id=data.actor_id, expected_version=data.expected_version
    )
    return await _respond(service, proposal_id)


@router.post("/{proposal_id}/view", response_model=ProposalDetailResponse, summary="Mark viewed")
async def mark_proposal_viewed(
    proposal_id: int,
    data: Optional[ProposalAction] = None,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    data = data or ProposalAction()
    await service.mark_viewed(proposal_id, actor_id=data.actor_id)
    return await _respond(service, proposal_id)


@router.post("/{proposal_id}/approve", response_model=ProposalDetailResponse, summary="Approve")
async def approve_proposal(
    proposal_id: int,
    data: ProposalApprove,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    """
    Approve with a typed signature; activates the linked invoice.

    Raises:
        ValidationError (400): Missing signature
        InvalidStateTransitionError (400): Not sent/viewed, or expired
    """
    await service.approve(
        proposal_id,
        signature_name=data.signature_name,
        approved_by=data.approved_by,
        expected_version=data.expected_version,
    )
    return await _respond(service, proposal_id)


@router.post("/{proposal_id}/decline", response_model=ProposalDetailResponse, summary="Decline")
async def decline_proposal(
    proposal_id: int,
    data: Optional[ProposalDecline] = None,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    data = data or ProposalDecline()
    await service.decline(
        proposal_id,
        reason=data.reason,
        actor_id=data.actor_id,
        expected_version=data.expected_version,
    )
    return await _respond(service, proposal_id)


@router.post("/{proposal_id}/expire", response_model=ProposalDetailResponse, summary="Expire")
async def expire_proposal(
    proposal_id: int,
    data: Optional[ProposalAction] = None,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    data = data or ProposalAction()
    await service.expire(proposal_id, actor_id=data.actor_id)
    return await _respond(service, proposal_id)


@router.post("/{proposal_id}/revise", response_model=ProposalDetailResponse, summary="Revise")
async def revise_proposal(
    proposal_id: int,
    data: Optional[ProposalAction] = None,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    """
    Reopen a proposal as a draft with the next revision number.

    Raises:
        BusinessRuleViolation (422): Linked invoice is paid
    """
    data = data or ProposalAction()
    await service.revise(
        proposal_id, actor_id=data.actor_id, expected_version=data.expected_version
    )
    return await _respond(service, proposal_id)


@router.post("/{proposal_id}/archive", response_model=ProposalDetailResponse, summary="Archive")
async def archive_proposal(
    proposal_id: int,
    data: Optional[ProposalAction] = None,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> ProposalDetailResponse:
    data = data or ProposalAction()
    await service.archive(proposal_id, actor_id=data.actor_id, reason=data.reason)
    return await _respond(service, proposal_id)


@router.get(
    "/{proposal_id}/events",
    response_model=List[ProposalEventResponse],
    summary="Proposal event log",
)
async def list_proposal_events(
    proposal_id: int,
    service: ProposalLifecycleService = Depends(get_lifecycle_service),
) -> List[ProposalEventResponse]:
    events = await service.list_events(proposal_id)
    return [
        ProposalEventResponse(
            id=event.id,
            type=event.type.value,
            meta=event.meta or {},
            created_by_user_id=event.created_by_user_id,
            created_at=event.created_at,
        )
        for event in events
    ]
