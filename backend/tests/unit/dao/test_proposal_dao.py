"""
Unit tests for the proposal DAOs.

WHAT: ProposalDAO queries (listing, expiry scans, fresh reads), item
ordering and the single billing plan per proposal.

HOW: pytest-asyncio against the in-memory SQLite test database.
"""

from datetime import timedelta

import pytest

from agency_portal.dao.proposal import BillingPlanDAO, ProposalDAO, ProposalItemDAO
from agency_portal.models.base import utcnow
from agency_portal.models.proposal import BillingPlanType, ProposalStatus, ServiceType
from tests.factories import ClientFactory


async def _proposal(session, client, status=ProposalStatus.DRAFT, **fields):
    return await ProposalDAO(session).create(
        client_id=client.id,
        title=fields.pop("title", "Proposal"),
        status=status,
        currency="CAD",
        value=0,
        revision=1,
        **fields,
    )


class TestProposalDAO:
    @pytest.mark.asyncio
    async def test_create_sets_version(self, db_session):
        client = await ClientFactory.create(db_session)
        proposal = await _proposal(db_session, client)

        assert proposal.id is not None
        assert proposal.version_id == 1
        assert proposal.is_editable

    @pytest.mark.asyncio
    async def test_apply_bumps_version(self, db_session):
        client = await ClientFactory.create(db_session)
        dao = ProposalDAO(db_session)
        proposal = await _proposal(db_session, client)

        proposal = await dao.apply(proposal, title="Renamed")

        assert proposal.title == "Renamed"
        assert proposal.version_id == 2

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_client(self, db_session):
        client = await ClientFactory.create(db_session)
        other = await ClientFactory.create(db_session, email="other@acme.test")
        await _proposal(db_session, client, title="A")
        await _proposal(db_session, client, status=ProposalStatus.SENT, title="B")
        await _proposal(db_session, other, title="C")
        dao = ProposalDAO(db_session)

        drafts = await dao.list_proposals(status=ProposalStatus.DRAFT)
        mine = await dao.list_proposals(client_id=client.id)

        assert {p.title for p in drafts} == {"A", "C"}
        assert {p.title for p in mine} == {"A", "B"}

    @pytest.mark.asyncio
    async def test_overdue_for_expiry_only_awaiting_client(self, db_session):
        client = await ClientFactory.create(db_session)
        now = utcnow()
        past = now - timedelta(days=1)
        overdue = await _proposal(db_session, client, status=ProposalStatus.SENT, expires_at=past)
        viewed = await _proposal(db_session, client, status=ProposalStatus.VIEWED, expires_at=past)
        await _proposal(db_session, client, status=ProposalStatus.APPROVED, expires_at=past)
        await _proposal(
            db_session, client, status=ProposalStatus.SENT, expires_at=now + timedelta(days=3)
        )

        found = await ProposalDAO(db_session).get_overdue_for_expiry(now)

        assert {p.id for p in found} == {overdue.id, viewed.id}

    @pytest.mark.asyncio
    async def test_expiring_soon_skips_reminded(self, db_session):
        client = await ClientFactory.create(db_session)
        now = utcnow()
        soon = now + timedelta(days=2)
        due = await _proposal(db_session, client, status=ProposalStatus.SENT, expires_at=soon)
        await _proposal(
            db_session,
            client,
            status=ProposalStatus.SENT,
            expires_at=soon,
            expiry_reminder_sent_at=now,
        )
        await _proposal(
            db_session, client, status=ProposalStatus.SENT, expires_at=now + timedelta(days=10)
        )

        found = await ProposalDAO(db_session).get_expiring_soon(now, within_days=3)

        assert [p.id for p in found] == [due.id]


class TestProposalItemDAO:
    @pytest.mark.asyncio
    async def test_create_many_continues_sort_order(self, db_session):
        client = await ClientFactory.create(db_session)
        proposal = await _proposal(db_session, client)
        dao = ProposalItemDAO(db_session)
        row = {
            "service_type": ServiceType.SEO,
            "name": "SEO",
            "quantity": 1,
            "unit_price": 100,
            "line_total": 100,
        }

        await dao.create_many(proposal.id, [row, row], start_sort_order=0)
        start = await dao.next_sort_order(proposal.id)
        await dao.create_many(proposal.id, [row], start_sort_order=start)

        items = await dao.get_by_proposal(proposal.id)
        assert [i.sort_order for i in items] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_next_sort_order_empty(self, db_session):
        client = await ClientFactory.create(db_session)
        proposal = await _proposal(db_session, client)

        assert await ProposalItemDAO(db_session).next_sort_order(proposal.id) == 0

    @pytest.mark.asyncio
    async def test_delete_by_proposal(self, db_session):
        client = await ClientFactory.create(db_session)
        proposal = await _proposal(db_session, client)
        dao = ProposalItemDAO(db_session)
        row = {"service_type": ServiceType.SEO, "name": "SEO", "quantity": 1, "unit_price": 1, "line_total": 1}
        await dao.create_many(proposal.id, [row, row])

        removed = await dao.delete_by_proposal(proposal.id)

        assert removed == 2
        assert await dao.get_by_proposal(proposal.id) == []


class TestBillingPlanDAO:
    @pytest.mark.asyncio
    async def test_upsert_keeps_single_plan(self, db_session):
        client = await ClientFactory.create(db_session)
        proposal = await _proposal(db_session, client)
        dao = BillingPlanDAO(db_session)

        first = await dao.upsert(proposal.id, plan_type=BillingPlanType.FULL_UPFRONT, total=1000)
        second = await dao.upsert(
            proposal.id, plan_type=BillingPlanType.SPLIT, total=1000, deposit=500, deposit_percent=50
        )

        assert first.id == second.id
        assert second.plan_type == BillingPlanType.SPLIT
        assert second.balance_after_deposit == 500
        assert await dao.count(proposal_id=proposal.id) == 1
