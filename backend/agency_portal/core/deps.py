"""
FastAPI dependencies for the lifecycle services.

WHY: Route handlers receive ready-made services bound to the request's
session, so every write in a request shares one transaction (committed when
the handler returns).
"""

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.db.session import get_db
from agency_portal.services.invoice_service import InvoiceService
from agency_portal.services.proposal_lifecycle import ProposalLifecycleService


async def get_lifecycle_service(
    db: AsyncSession = Depends(get_db),
) -> AsyncGenerator[ProposalLifecycleService, None]:
    """
    Lifecycle service for the current request.

    WHY: The service commits once the handler returns and only then sends
    the notifications the transition queued. If the handler raises, the
    exception propagates to get_db (rollback) and nothing is sent.

    Usage:
        @router.post("/{proposal_id}/send")
        async def send(service: ProposalLifecycleService = Depends(get_lifecycle_service)):
            ...
    """
    service = ProposalLifecycleService(db)
    yield service
    await service.commit()


async def get_invoice_service(db: AsyncSession = Depends(get_db)) -> InvoiceService:
    return InvoiceService(db)
