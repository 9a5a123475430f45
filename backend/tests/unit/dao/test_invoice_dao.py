"""
Unit tests for the invoice DAOs.

WHAT: Proposal lookups and the lifecycle write helpers (activate, void,
reset) plus item mirroring.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from agency_portal.dao.invoice import (
    ACTIVATION_SOURCE_PROPOSAL,
    InvoiceDAO,
    InvoiceItemDAO,
)
from agency_portal.dao.proposal import ProposalDAO, ProposalItemDAO
from agency_portal.models.base import utcnow
from agency_portal.models.invoice import InvoiceStatus
from agency_portal.models.proposal import ProposalStatus, ServiceType
from tests.factories import ClientFactory


async def _setup(session):
    client = await ClientFactory.create(session)
    proposal = await ProposalDAO(session).create(
        client_id=client.id, title="P", status=ProposalStatus.DRAFT, value=0, revision=1
    )
    invoice = await InvoiceDAO(session).create(
        client_id=client.id,
        proposal_id=proposal.id,
        amount_cents=460000,
        status=InvoiceStatus.PENDING,
        locked_from_send=True,
    )
    return client, proposal, invoice


class TestInvoiceDAO:
    @pytest.mark.asyncio
    async def test_amount_is_derived_from_cents(self, db_session):
        _, _, invoice = await _setup(db_session)

        assert invoice.amount == Decimal("4600.00")

    @pytest.mark.asyncio
    async def test_current_for_proposal_is_newest(self, db_session):
        client, proposal, first = await _setup(db_session)
        dao = InvoiceDAO(db_session)
        second = await dao.create(
            client_id=client.id, proposal_id=proposal.id, status=InvoiceStatus.PENDING
        )

        current = await dao.get_current_for_proposal(proposal.id)
        everything = await dao.get_by_proposal(proposal.id)

        assert current.id == second.id
        assert [i.id for i in everything] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_activate_unlocks_and_records_source(self, db_session):
        _, _, invoice = await _setup(db_session)
        now = utcnow()

        invoice = await InvoiceDAO(db_session).activate(
            invoice, now=now, due_date=now + timedelta(days=7)
        )

        assert invoice.status == InvoiceStatus.UNPAID
        assert invoice.locked_from_send is False
        assert invoice.activation_source == ACTIVATION_SOURCE_PROPOSAL
        assert invoice.due_date == now + timedelta(days=7)

    @pytest.mark.asyncio
    async def test_activate_keeps_paid_status(self, db_session):
        _, _, invoice = await _setup(db_session)
        dao = InvoiceDAO(db_session)
        invoice = await dao.apply(invoice, status=InvoiceStatus.PAID)

        invoice = await dao.activate(invoice, now=utcnow(), due_date=utcnow())

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.locked_from_send is False

    @pytest.mark.asyncio
    async def test_void_locks(self, db_session):
        _, _, invoice = await _setup(db_session)
        dao = InvoiceDAO(db_session)
        invoice = await dao.activate(invoice, now=utcnow(), due_date=utcnow())

        invoice = await dao.void(invoice, utcnow())

        assert invoice.is_void
        assert invoice.locked_from_send is True
        assert invoice.voided_at is not None

    @pytest.mark.asyncio
    async def test_reset_to_pending_clears_activation(self, db_session):
        _, _, invoice = await _setup(db_session)
        dao = InvoiceDAO(db_session)
        invoice = await dao.activate(invoice, now=utcnow(), due_date=utcnow())

        invoice = await dao.reset_to_pending(invoice)

        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.locked_from_send is True
        assert invoice.activation_source is None
        assert invoice.activated_at is None


class TestInvoiceItemDAO:
    @pytest.mark.asyncio
    async def test_mirror_proposal_items(self, db_session):
        _, proposal, invoice = await _setup(db_session)
        rows = [
            {"service_type": ServiceType.WEBSITE, "name": "Website", "quantity": 1, "unit_price": 350000, "line_total": 350000},
            {"service_type": ServiceType.SEO, "name": "SEO", "quantity": 2, "unit_price": 55000, "line_total": 110000},
        ]
        items = await ProposalItemDAO(db_session).create_many(proposal.id, rows)
        dao = InvoiceItemDAO(db_session)

        await dao.mirror_proposal_items(invoice.id, items)
        mirrored = await dao.get_by_invoice(invoice.id)

        assert [m.proposal_item_id for m in mirrored] == [i.id for i in items]
        assert [m.line_total for m in mirrored] == [350000, 110000]
        assert await dao.delete_by_invoice(invoice.id) == 2
