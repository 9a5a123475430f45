"""
Proposal Expiry Background Service.

WHAT: Daily job that expires proposals whose deadline passed and reminds
clients shortly before a proposal expires.

WHY: A sent proposal is only valid for PROPOSAL_VALIDITY_DAYS. Without a
sweep, an unanswered proposal would stay "sent" forever and its invoice
would never be voided.

HOW: Runs from APScheduler once a day:
1. Query sent/viewed proposals with expires_at < now
2. Expire each one through the lifecycle service in its own session, so
   one failing proposal never rolls back the others
3. Query proposals entering the reminder window and send one reminder each
4. Return counts and per-proposal results for logging and the admin API
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agency_portal.core.config import settings
from agency_portal.dao.proposal import ProposalDAO
from agency_portal.db.session import AsyncSessionLocal
from agency_portal.models.base import utcnow
from agency_portal.services.notification_service import NotificationDispatcher
from agency_portal.services.proposal_lifecycle import ProposalLifecycleService


logger = logging.getLogger(__name__)


class ProposalExpiryService:
    """
    Background service for proposal expiry.

    Example:
        service = ProposalExpiryService()
        stats = await service.expire_overdue_proposals()
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        """
        Initialize the expiry service.

        Args:
            session_factory: Factory for database sessions (defaults to
                AsyncSessionLocal); tests pass a factory bound to their engine
            dispatcher: Notification dispatcher passed to the lifecycle service
        """
        self._session_factory = session_factory or AsyncSessionLocal
        self._dispatcher = dispatcher

    def _lifecycle(self, session: AsyncSession, now: datetime) -> ProposalLifecycleService:
        return ProposalLifecycleService(
            session, dispatcher=self._dispatcher, clock=lambda: now
        )

    async def expire_overdue_proposals(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Main job function: expire every overdue sent/viewed proposal.

        Args:
            now: Sweep time (defaults to the current UTC time)

        Returns:
            Dict with checked/expired/failed counts and per-proposal results
        """
        now = now or utcnow()
        logger.info("Starting proposal expiry sweep")

        async with self._session_factory() as session:
            overdue = await ProposalDAO(session).get_overdue_for_expiry(now)
            proposal_ids = [proposal.id for proposal in overdue]

        stats: Dict[str, Any] = {"checked": len(proposal_ids), "expired": 0, "failed": 0}
        results: List[Dict[str, Any]] = []

        for proposal_id in proposal_ids:
            async with self._session_factory() as session:
                try:
                    lifecycle = self._lifecycle(session, now)
                    await lifecycle.expire(proposal_id)
                    await lifecycle.commit()
                    stats["expired"] += 1
                    results.append({"proposal_id": proposal_id, "status": "expired"})
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Error expiring proposal {proposal_id}: {e}")
                    stats["failed"] += 1
                    results.append(
                        {"proposal_id": proposal_id, "status": "failed", "error": str(e)}
                    )

        stats["results"] = results
        logger.info(
            f"Proposal expiry sweep completed. Checked: {stats['checked']}, "
            f"Expired: {stats['expired']}, Failed: {stats['failed']}"
        )
        return stats

    async def send_expiry_reminders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Remind clients about proposals expiring within PROPOSAL_EXPIRY_REMINDER_DAYS.

        Returns:
            Dict with checked/sent/failed counts
        """
        now = now or utcnow()

        async with self._session_factory() as session:
            expiring = await ProposalDAO(session).get_expiring_soon(
                now, settings.PROPOSAL_EXPIRY_REMINDER_DAYS
            )
            proposal_ids = [proposal.id for proposal in expiring]

        stats = {"checked": len(proposal_ids), "sent": 0, "failed": 0}
        for proposal_id in proposal_ids:
            async with self._session_factory() as session:
                try:
                    if await self._lifecycle(session, now).send_expiry_reminder(proposal_id):
                        stats["sent"] += 1
                    await session.commit()
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Error sending expiry reminder for proposal {proposal_id}: {e}")
                    stats["failed"] += 1

        logger.info(
            f"Expiry reminders: checked {stats['checked']}, sent {stats['sent']}, "
            f"failed {stats['failed']}"
        )
        return stats

    async def run_daily_sweep(self) -> Dict[str, Any]:
        """Expire overdue proposals, then send reminders."""
        now = utcnow()
        expiry = await self.expire_overdue_proposals(now)
        reminders = await self.send_expiry_reminders(now)
        return {"expiry": expiry, "reminders": reminders}


# Module-level singleton
_expiry_service: Optional[ProposalExpiryService] = None


def get_expiry_service() -> ProposalExpiryService:
    """Get the expiry service singleton."""
    global _expiry_service

    if _expiry_service is None:
        _expiry_service = ProposalExpiryService()

    return _expiry_service
