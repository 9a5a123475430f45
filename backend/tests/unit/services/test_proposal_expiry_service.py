"""
Unit tests for the proposal expiry background service.

WHAT: Tests for the daily expiry sweep and the expiry reminders.

WHY: Verifies that:
1. Only sent/viewed proposals past their deadline are expired
2. Expiring a proposal voids its invoice
3. One failing proposal does not roll back the others
4. Reminders go out once, and only when delivery succeeded

HOW: The service opens its own sessions from a factory bound to the test
engine; results are read back through a fresh session.
"""

import pytest
from datetime import timedelta

from agency_portal.dao.event import InvoiceEventDAO
from agency_portal.dao.invoice import InvoiceDAO
from agency_portal.dao.proposal import ProposalDAO
from agency_portal.models.base import utcnow
from agency_portal.models.invoice import InvoiceEventType, InvoiceStatus
from agency_portal.models.proposal import ProposalStatus
from agency_portal.services.email import EmailType
from agency_portal.services.proposal_expiry_service import (
    ProposalExpiryService,
    get_expiry_service,
)
from agency_portal.services.proposal_lifecycle import ProposalLifecycleService
from tests.factories import ProposalFactory


@pytest.fixture
def lifecycle(db_session, mock_dispatcher):
    return ProposalLifecycleService(db_session, dispatcher=mock_dispatcher)


@pytest.fixture
def expiry_service(session_factory, mock_dispatcher):
    return ProposalExpiryService(session_factory=session_factory, dispatcher=mock_dispatcher)


async def _reload(session_factory, proposal_id):
    async with session_factory() as session:
        proposal = await ProposalDAO(session).get_by_id(proposal_id)
        invoice = await InvoiceDAO(session).get_current_for_proposal(proposal_id)
        events = await InvoiceEventDAO(session).list_for(invoice.id)
        return proposal, invoice, events


class TestExpireOverdueProposals:
    """Tests for the expiry sweep."""

    @pytest.mark.asyncio
    async def test_expires_overdue_and_voids_invoice(
        self, db_session, lifecycle, expiry_service, session_factory
    ):
        overdue = await ProposalFactory.create_expired_deadline(db_session, service=lifecycle)

        stats = await expiry_service.expire_overdue_proposals()

        assert stats["checked"] == 1
        assert stats["expired"] == 1
        assert stats["failed"] == 0
        assert stats["results"] == [{"proposal_id": overdue.id, "status": "expired"}]

        proposal, invoice, events = await _reload(session_factory, overdue.id)
        assert proposal.status == ProposalStatus.EXPIRED
        assert invoice.status == InvoiceStatus.VOID
        assert events[-1].type == InvoiceEventType.VOIDED
        assert events[-1].meta["reason"] == "proposal_expired"

    @pytest.mark.asyncio
    async def test_skips_proposals_not_yet_due(
        self, db_session, lifecycle, expiry_service, session_factory
    ):
        fresh = await ProposalFactory.create_sent(db_session, service=lifecycle)
        draft = await ProposalFactory.create_draft(db_session, service=lifecycle)

        stats = await expiry_service.expire_overdue_proposals()

        assert stats["checked"] == 0
        proposal, invoice, _ = await _reload(session_factory, fresh.id)
        assert proposal.status == ProposalStatus.SENT
        assert invoice.status == InvoiceStatus.PENDING
        proposal, _, _ = await _reload(session_factory, draft.id)
        assert proposal.status == ProposalStatus.DRAFT

    @pytest.mark.asyncio
    async def test_viewed_proposals_expire_too(
        self, db_session, lifecycle, expiry_service, session_factory
    ):
        overdue = await ProposalFactory.create_expired_deadline(db_session, service=lifecycle)
        await lifecycle.mark_viewed(overdue.id)
        await db_session.commit()

        stats = await expiry_service.expire_overdue_proposals()

        assert stats["expired"] == 1
        proposal, _, _ = await _reload(session_factory, overdue.id)
        assert proposal.status == ProposalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(
        self, db_session, lifecycle, expiry_service, session_factory, monkeypatch
    ):
        first = await ProposalFactory.create_expired_deadline(
            db_session, service=lifecycle, days_ago=2
        )
        second = await ProposalFactory.create_expired_deadline(db_session, service=lifecycle)

        original_expire = ProposalLifecycleService.expire

        async def flaky_expire(self, proposal_id, actor_id=None):
            if proposal_id == first.id:
                raise RuntimeError("database hiccup")
            return await original_expire(self, proposal_id, actor_id)

        monkeypatch.setattr(ProposalLifecycleService, "expire", flaky_expire)

        stats = await expiry_service.expire_overdue_proposals()

        assert stats["checked"] == 2
        assert stats["expired"] == 1
        assert stats["failed"] == 1
        failed = [r for r in stats["results"] if r["status"] == "failed"]
        assert failed == [
            {"proposal_id": first.id, "status": "failed", "error": "database hiccup"}
        ]

        proposal, invoice, _ = await _reload(session_factory, first.id)
        assert proposal.status == ProposalStatus.SENT
        assert invoice.status == InvoiceStatus.PENDING
        proposal, _, _ = await _reload(session_factory, second.id)
        assert proposal.status == ProposalStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_rerun_is_noop(self, db_session, lifecycle, expiry_service):
        await ProposalFactory.create_expired_deadline(db_session, service=lifecycle)

        await expiry_service.expire_overdue_proposals()
        stats = await expiry_service.expire_overdue_proposals()

        assert stats["checked"] == 0
        assert stats["expired"] == 0


class TestExpiryReminders:
    """Tests for reminder emails ahead of the deadline."""

    @pytest.mark.asyncio
    async def test_sends_one_reminder(
        self, db_session, lifecycle, expiry_service, mock_dispatcher, session_factory
    ):
        now = utcnow()
        sent = await ProposalFactory.create_sent(
            db_session, service=lifecycle, expires_at=now + timedelta(days=2, hours=1)
        )
        mock_dispatcher.notify.reset_mock()

        stats = await expiry_service.send_expiry_reminders(now)
        again = await expiry_service.send_expiry_reminders(now)

        assert stats == {"checked": 1, "sent": 1, "failed": 0}
        assert again["checked"] == 0
        mock_dispatcher.notify.assert_awaited_once()
        event_type, proposal_id, recipient, payload = mock_dispatcher.notify.await_args.args
        assert event_type == EmailType.PROPOSAL_EXPIRING
        assert proposal_id == sent.id
        assert recipient == "jane@acme.test"
        assert payload["days_until_expiry"] == 3

        proposal, _, _ = await _reload(session_factory, sent.id)
        assert proposal.expiry_reminder_sent_at == now

    @pytest.mark.asyncio
    async def test_failed_delivery_is_retried(
        self, db_session, lifecycle, expiry_service, mock_dispatcher, session_factory
    ):
        now = utcnow()
        sent = await ProposalFactory.create_sent(
            db_session, service=lifecycle, expires_at=now + timedelta(days=1)
        )
        mock_dispatcher.notify.return_value = False

        stats = await expiry_service.send_expiry_reminders(now)

        assert stats == {"checked": 1, "sent": 0, "failed": 0}
        proposal, _, _ = await _reload(session_factory, sent.id)
        assert proposal.expiry_reminder_sent_at is None

        mock_dispatcher.notify.return_value = True
        stats = await expiry_service.send_expiry_reminders(now)
        assert stats["sent"] == 1

    @pytest.mark.asyncio
    async def test_outside_window_is_ignored(self, db_session, lifecycle, expiry_service):
        await ProposalFactory.create_sent(db_session, service=lifecycle)

        stats = await expiry_service.send_expiry_reminders()

        assert stats["checked"] == 0


class TestDailySweep:
    @pytest.mark.asyncio
    async def test_runs_expiry_then_reminders(self, db_session, lifecycle, expiry_service):
        await ProposalFactory.create_expired_deadline(db_session, service=lifecycle)

        result = await expiry_service.run_daily_sweep()

        assert result["expiry"]["expired"] == 1
        assert result["reminders"]["checked"] == 0

    def test_singleton(self):
        assert get_expiry_service() is get_expiry_service()
