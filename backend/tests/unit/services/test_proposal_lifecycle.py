"""
Unit tests for ProposalLifecycleService.

WHAT: Every lifecycle transition and its effect on the linked invoice,
the clause snapshot and the event log.

WHY: The lifecycle is where money and legal text meet. These tests pin:
1. Proposal value always equals the sum of its items, and the invoice agrees
2. Sent proposals keep an immutable clause snapshot per revision
3. approve/decline/expire move the invoice in lockstep
4. Replayed transitions never duplicate snapshots or events
5. Validation failures write nothing

HOW: pytest-asyncio against in-memory SQLite with a mocked notification
dispatcher.
"""

import json
import logging
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from agency_portal.core.exceptions import (
    BusinessRuleViolation,
    ClientNotFoundError,
    InvalidStateTransitionError,
    StaleProposalError,
    ValidationError,
)
from agency_portal.core.service_catalog import GLOBAL_CLAUSE_CODES
from agency_portal.models.base import utcnow
from agency_portal.models.clause import Clause
from agency_portal.models.invoice import InvoiceEventType, InvoiceStatus
from agency_portal.models.proposal import (
    BillingPlanType,
    Proposal,
    ProposalStatus,
    ServiceType,
)
from agency_portal.services.email import EmailService, EmailType
from agency_portal.services.notification_service import NotificationDispatcher
from agency_portal.services.proposal_lifecycle import (
    NO_ITEMS_MESSAGE,
    ProposalLifecycleService,
    compute_content_hash,
)
from tests.factories import (
    ClauseFactory,
    ClientFactory,
    ProposalFactory,
    item,
    service_items,
)


WEBSITE_AND_SEO = [(ServiceType.WEBSITE, 1, 350000), (ServiceType.SEO, 2, 55000)]


@pytest.fixture
def lifecycle(db_session, mock_dispatcher):
    return ProposalLifecycleService(db_session, dispatcher=mock_dispatcher)


@pytest_asyncio.fixture
async def seeded_clauses(db_session):
    return await ClauseFactory.seed_catalog(db_session)


async def _draft(db_session, lifecycle, specs=WEBSITE_AND_SEO, client=None):
    return await ProposalFactory.create_draft(
        db_session,
        client=client,
        title="Website Revamp",
        items=service_items(*specs),
        service=lifecycle,
    )


async def _sent(db_session, lifecycle, specs=WEBSITE_AND_SEO):
    proposal = await _draft(db_session, lifecycle, specs)
    return await lifecycle.send(proposal.id, actor_id="staff-1")


def _notified_types(mock_dispatcher):
    return [call.args[0] for call in mock_dispatcher.notify.await_args_list]


# ============================================================================
# Create
# ============================================================================


class TestCreateProposal:
    @pytest.mark.asyncio
    async def test_creates_draft_with_pending_locked_invoice(self, db_session, lifecycle):
        client = await ClientFactory.create(db_session)

        proposal = await lifecycle.create_proposal(
            client_id=client.id, title="  Website Revamp  ", actor_id="staff-1"
        )

        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.title == "Website Revamp"
        assert proposal.value == 0
        assert proposal.revision == 1
        assert proposal.currency == "CAD"

        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.amount_cents == 0
        assert invoice.locked_from_send is True
        assert invoice.description == "Proposal: Website Revamp"
        assert invoice.due_date > utcnow() + timedelta(days=6)

        assert await lifecycle.proposal_events.list_types(proposal.id) == ["created"]
        assert await lifecycle.invoice_events.list_types(invoice.id) == [
            "created",
            "linked_to_proposal",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("title", [None, "", "   "])
    async def test_blank_title_is_rejected(self, db_session, lifecycle, title):
        client = await ClientFactory.create(db_session)

        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.create_proposal(client_id=client.id, title=title)

        assert "select a client and enter a proposal title" in exc_info.value.message
        assert await lifecycle.proposals.count() == 0
        assert await lifecycle.invoices.count() == 0

    @pytest.mark.asyncio
    async def test_missing_client_is_rejected(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.create_proposal(client_id=None, title="Website Revamp")

    @pytest.mark.asyncio
    async def test_unknown_client(self, lifecycle):
        with pytest.raises(ClientNotFoundError):
            await lifecycle.create_proposal(client_id=999, title="Website Revamp")


# ============================================================================
# Items, value and billing plan
# ============================================================================


class TestItemsAndValue:
    @pytest.mark.asyncio
    async def test_value_is_sum_of_items_and_invoice_agrees(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert proposal.value == 460000
        assert invoice.amount_cents == 460000
        assert invoice.amount == Decimal("4600.00")

        invoice_items = await lifecycle.invoice_items.get_by_invoice(invoice.id)
        assert [i.line_total for i in invoice_items] == [350000, 110000]

    @pytest.mark.asyncio
    async def test_add_items_appends_and_recomputes(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        await lifecycle.add_items(proposal.id, [item(ServiceType.BRAND_IDENTITY, 1, 85000)])

        items = await lifecycle.items.get_by_proposal(proposal.id)
        assert [i.sort_order for i in items] == [0, 1, 2]
        assert proposal.value == 545000
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.amount_cents == 545000
        assert len(await lifecycle.invoice_items.get_by_invoice(invoice.id)) == 3

    @pytest.mark.asyncio
    async def test_replace_items(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        await lifecycle.replace_items(proposal.id, service_items((ServiceType.SEO, 3, 55000)))

        items = await lifecycle.items.get_by_proposal(proposal.id)
        assert [(i.service_type, i.quantity, i.sort_order) for i in items] == [
            (ServiceType.SEO, 3, 0)
        ]
        assert proposal.value == 165000
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        mirrored = await lifecycle.invoice_items.get_by_invoice(invoice.id)
        assert [m.proposal_item_id for m in mirrored] == [items[0].id]
        assert invoice.amount_cents == 165000

    @pytest.mark.asyncio
    async def test_item_name_defaults_to_catalog_label(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle, specs=[(ServiceType.SEO, 1, 55000)])

        items = await lifecycle.items.get_by_proposal(proposal.id)
        assert items[0].name == lifecycle.resolver.catalog.label_for(ServiceType.SEO)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity,unit_price", [(-1, 1000), (0, 1000), (1, -5)])
    async def test_invalid_item_writes_nothing(self, db_session, lifecycle, quantity, unit_price):
        proposal = await _draft(db_session, lifecycle)
        version = proposal.version_id

        with pytest.raises(ValidationError):
            await lifecycle.add_items(
                proposal.id,
                [item(ServiceType.SEO, 1, 100), item(ServiceType.SEO, quantity, unit_price)],
            )

        assert len(await lifecycle.items.get_by_proposal(proposal.id)) == 2
        assert proposal.value == 460000
        assert proposal.version_id == version

    @pytest.mark.asyncio
    async def test_empty_item_list_is_rejected(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.replace_items(proposal.id, [])
        assert exc_info.value.message == NO_ITEMS_MESSAGE

    @pytest.mark.asyncio
    async def test_items_frozen_after_send(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.add_items(proposal.id, [item()])

    @pytest.mark.asyncio
    async def test_invoice_and_proposal_totals_agree_through_lifecycle(
        self, db_session, lifecycle, seeded_clauses
    ):
        """Regression: the invoice never drifts from the proposal value."""
        proposal = await _draft(db_session, lifecycle)

        async def assert_agree():
            invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
            items = await lifecycle.items.get_by_proposal(proposal.id)
            assert proposal.value == sum(i.quantity * i.unit_price for i in items)
            assert invoice.amount_cents == proposal.value
            assert invoice.amount == Decimal(proposal.value) / 100

        await assert_agree()
        await lifecycle.add_items(proposal.id, [item(ServiceType.RETAINER, 3, 100001)])
        await assert_agree()
        await lifecycle.send(proposal.id)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        await assert_agree()
        await lifecycle.revise(proposal.id)
        await lifecycle.replace_items(proposal.id, [item(ServiceType.SEO, 1, 99)])
        await assert_agree()


class TestBillingPlan:
    @pytest.mark.asyncio
    async def test_split_plan_defaults_to_half_deposit(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        plan = await lifecycle.save_billing_plan(proposal.id, BillingPlanType.SPLIT)

        assert plan.total == 460000
        assert plan.deposit == 230000
        assert plan.deposit_percent == 50
        assert plan.payment_terms_days == 7
        assert plan.balance_after_deposit == 230000

    @pytest.mark.asyncio
    async def test_saving_again_overwrites(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)
        await lifecycle.save_billing_plan(proposal.id, BillingPlanType.SPLIT, deposit_percent=30)

        plan = await lifecycle.save_billing_plan(
            proposal.id, BillingPlanType.FULL_UPFRONT, deposit_percent=30, payment_terms_days=14
        )

        assert plan.deposit == 0
        assert plan.deposit_percent is None
        assert plan.payment_terms_days == 14
        assert await lifecycle.billing_plans.count(proposal_id=proposal.id) == 1

    @pytest.mark.asyncio
    async def test_negative_terms_rejected(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(ValidationError):
            await lifecycle.save_billing_plan(
                proposal.id, BillingPlanType.FULL_UPFRONT, payment_terms_days=-1
            )


# ============================================================================
# Send
# ============================================================================


class TestSend:
    @pytest.mark.asyncio
    async def test_send_locks_clauses(self, db_session, lifecycle, mock_dispatcher, seeded_clauses):
        client = await ClientFactory.create(db_session, email="x@client.test")
        proposal = await _draft(db_session, lifecycle, client=client)

        proposal = await lifecycle.send(proposal.id, actor_id="staff-1")

        assert proposal.status == ProposalStatus.SENT
        assert proposal.sent_at is not None
        assert proposal.expires_at == proposal.sent_at + timedelta(days=30)

        snapshots = await lifecycle.snapshots.get_by_proposal(proposal.id)
        assert len(snapshots) == 1
        snapshot = snapshots[0]
        assert snapshot.version == 1
        assert snapshot.is_locked

        codes = [i.clause_code for i in await lifecycle.snapshots.get_items(snapshot.id)]
        expected = (
            list(GLOBAL_CLAUSE_CODES)
            + [f"W{n:02d}" for n in range(1, 10)]
            + [f"S{n:02d}" for n in range(1, 8)]
        )
        assert codes == expected
        assert snapshot.content_hash == json.dumps(sorted(expected))

        mock_dispatcher.notify.assert_not_awaited()
        await lifecycle.commit()
        mock_dispatcher.notify.assert_awaited_once()
        event_type, proposal_id, recipient, payload = mock_dispatcher.notify.await_args.args
        assert event_type == EmailType.PROPOSAL_SENT
        assert proposal_id == proposal.id
        assert recipient == "x@client.test"
        assert payload["amount_cents"] == 460000

    @pytest.mark.asyncio
    async def test_send_twice_is_idempotent(self, db_session, lifecycle, mock_dispatcher, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        again = await lifecycle.send(proposal.id)

        assert again.status == ProposalStatus.SENT
        assert await lifecycle.snapshots.count_for_proposal(proposal.id) == 1
        types = await lifecycle.proposal_events.list_types(proposal.id)
        assert types.count("sent") == 1
        await lifecycle.commit()
        assert mock_dispatcher.notify.await_count == 1

    @pytest.mark.asyncio
    async def test_send_without_items_writes_nothing(self, db_session, lifecycle, seeded_clauses):
        proposal = await ProposalFactory.create_draft(db_session, items=[], service=lifecycle)
        version = proposal.version_id

        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.send(proposal.id)

        assert exc_info.value.message == "Please select at least one service"
        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.version_id == version
        assert await lifecycle.snapshots.count_for_proposal(proposal.id) == 0
        assert await lifecycle.proposal_events.list_types(proposal.id) == ["created"]

    @pytest.mark.asyncio
    async def test_missing_library_clause_is_skipped_with_warning(
        self, db_session, lifecycle, caplog
    ):
        await ClauseFactory.seed_catalog(db_session, skip_codes=("W03",))
        proposal = await _draft(db_session, lifecycle)

        with caplog.at_level(logging.WARNING):
            await lifecycle.send(proposal.id)

        snapshot = (await lifecycle.snapshots.get_by_proposal(proposal.id))[0]
        codes = [i.clause_code for i in await lifecycle.snapshots.get_items(snapshot.id)]
        assert "W03" not in codes
        assert "W03" in caplog.text

    def test_content_hash_is_sorted_codes(self):
        web, general = Clause(code="W01", body="Design"), Clause(code="G01", body="Payment")

        assert compute_content_hash([web, general]) == '["G01", "W01"]'
        assert compute_content_hash([general, web]) == json.dumps(sorted(["W01", "G01"]))

    def test_content_hash_ignores_clause_text(self):
        before = [Clause(code="G01", body="Net 14"), Clause(code="W01", body="Old wording")]
        after = [Clause(code="G01", body="Net 30"), Clause(code="W01", body="New wording")]

        assert compute_content_hash(before) == compute_content_hash(after)

    @pytest.mark.asyncio
    async def test_snapshot_keeps_library_sort_order(self, db_session, lifecycle):
        await ClauseFactory.seed_catalog(db_session)
        library = {
            clause.code: clause.sort_order
            for clause in await lifecycle.clauses.get_active_by_codes(GLOBAL_CLAUSE_CODES)
        }
        proposal = await _sent(db_session, lifecycle)

        snapshot = (await lifecycle.snapshots.get_by_proposal(proposal.id))[0]
        items = await lifecycle.snapshots.get_items(snapshot.id)

        globals_ = [i for i in items if i.clause_code in library]
        assert [i.sort_order for i in globals_] == [library[i.clause_code] for i in globals_]
        assert [i.sort_order for i in items] == sorted(i.sort_order for i in items)

    @pytest.mark.asyncio
    async def test_send_from_approved_is_illegal(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.send(proposal.id)

    @pytest.mark.asyncio
    async def test_stale_expected_version(self, db_session, lifecycle, seeded_clauses):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(StaleProposalError):
            await lifecycle.send(proposal.id, expected_version=proposal.version_id - 1)

        assert proposal.status == ProposalStatus.DRAFT


# ============================================================================
# View and approve
# ============================================================================


class TestViewAndApprove:
    @pytest.mark.asyncio
    async def test_mark_viewed(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        proposal = await lifecycle.mark_viewed(proposal.id)
        again = await lifecycle.mark_viewed(proposal.id)

        assert again.status == ProposalStatus.VIEWED
        assert proposal.viewed_at is not None
        types = await lifecycle.proposal_events.list_types(proposal.id)
        assert types.count("viewed") == 1

    @pytest.mark.asyncio
    async def test_mark_viewed_requires_sent(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.mark_viewed(proposal.id)

    @pytest.mark.asyncio
    async def test_approve_activates_invoice(
        self, db_session, lifecycle, mock_dispatcher, seeded_clauses
    ):
        proposal = await _draft(db_session, lifecycle)
        await lifecycle.save_billing_plan(
            proposal.id, BillingPlanType.SPLIT, payment_terms_days=14
        )
        await lifecycle.send(proposal.id)
        await lifecycle.mark_viewed(proposal.id)

        proposal = await lifecycle.approve(proposal.id, signature_name="Jane Doe")

        assert proposal.status == ProposalStatus.APPROVED
        assert proposal.approved_at is not None
        assert proposal.approved_by == "Jane Doe"
        assert proposal.approval_signature == "Jane Doe"

        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.status == InvoiceStatus.UNPAID
        assert invoice.locked_from_send is False
        assert invoice.activation_source == "proposal_approval"
        assert invoice.due_date == proposal.approved_at + timedelta(days=14)

        invoice_events = await lifecycle.invoice_events.list_for(invoice.id)
        activated = [e for e in invoice_events if e.type == InvoiceEventType.ACTIVATED]
        assert len(activated) == 1
        assert activated[0].meta["proposal_id"] == proposal.id

        await lifecycle.commit()
        assert _notified_types(mock_dispatcher)[-2:] == [
            EmailType.PROPOSAL_APPROVED,
            EmailType.INVOICE_ACTIVATED,
        ]
        staff_call = mock_dispatcher.notify.await_args_list[-2]
        assert staff_call.args[2] == "studio@agency.test"

    @pytest.mark.asyncio
    async def test_approve_twice_is_noop(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")

        again = await lifecycle.approve(proposal.id, signature_name="Someone Else")

        assert again.approved_by == "Jane Doe"
        types = await lifecycle.proposal_events.list_types(proposal.id)
        assert types.count("approved") == 1

    @pytest.mark.asyncio
    async def test_approve_draft_is_illegal(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        assert proposal.status == ProposalStatus.DRAFT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signature", [None, "", "  "])
    async def test_approve_requires_signature(self, db_session, lifecycle, seeded_clauses, signature):
        proposal = await _sent(db_session, lifecycle)

        with pytest.raises(ValidationError):
            await lifecycle.approve(proposal.id, signature_name=signature)
        assert proposal.status == ProposalStatus.SENT

    @pytest.mark.asyncio
    async def test_approve_after_deadline_is_refused(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.proposals.apply(proposal, expires_at=utcnow() - timedelta(minutes=1))

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        assert "expired" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_approve_keeps_paid_invoice_paid(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        await lifecycle.invoices.apply(invoice, status=InvoiceStatus.PAID)

        await lifecycle.approve(proposal.id, signature_name="Jane Doe")

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.locked_from_send is False


# ============================================================================
# Decline and expire
# ============================================================================


class TestDeclineAndExpire:
    @pytest.mark.asyncio
    async def test_decline_voids_invoice(self, db_session, lifecycle, mock_dispatcher, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        proposal = await lifecycle.decline(proposal.id, reason="Over budget")

        assert proposal.status == ProposalStatus.DECLINED
        assert proposal.declined_at is not None
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.status == InvoiceStatus.VOID
        assert invoice.locked_from_send is True
        voided = (await lifecycle.invoice_events.list_for(invoice.id))[-1]
        assert voided.type == InvoiceEventType.VOIDED
        assert voided.meta["reason"] == "proposal_declined"
        await lifecycle.commit()
        assert _notified_types(mock_dispatcher)[-1] == EmailType.PROPOSAL_DECLINED

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        assert invoice.status == InvoiceStatus.VOID

    @pytest.mark.asyncio
    async def test_decline_twice_is_noop(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.decline(proposal.id)

        await lifecycle.decline(proposal.id)

        types = await lifecycle.proposal_events.list_types(proposal.id)
        assert types.count("declined") == 1

    @pytest.mark.asyncio
    async def test_decline_approved_is_illegal(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.decline(proposal.id)

    @pytest.mark.asyncio
    async def test_decline_without_invoice_still_transitions(
        self, db_session, lifecycle, seeded_clauses, caplog
    ):
        proposal = await _sent(db_session, lifecycle)
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        await lifecycle.invoices.apply(invoice, proposal_id=None)

        with caplog.at_level(logging.WARNING):
            proposal = await lifecycle.decline(proposal.id)

        assert proposal.status == ProposalStatus.DECLINED
        assert "no linked invoice" in caplog.text
        assert invoice.status == InvoiceStatus.PENDING

    @pytest.mark.asyncio
    async def test_expire_voids_invoice(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.mark_viewed(proposal.id)

        proposal = await lifecycle.expire(proposal.id)
        await lifecycle.expire(proposal.id)

        assert proposal.status == ProposalStatus.EXPIRED
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.is_void
        events = await lifecycle.invoice_events.list_for(invoice.id)
        reasons = [e.meta.get("reason") for e in events if e.type == InvoiceEventType.VOIDED]
        assert reasons == ["proposal_expired"]

    @pytest.mark.asyncio
    async def test_expire_draft_is_illegal(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.expire(proposal.id)


# ============================================================================
# Revise
# ============================================================================


class TestRevise:
    @pytest.mark.asyncio
    async def test_revise_approved_resets_invoice_and_keeps_snapshot(
        self, db_session, lifecycle, seeded_clauses
    ):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        first = (await lifecycle.snapshots.get_by_proposal(proposal.id))[0]
        first_items = [
            (i.clause_code, i.body) for i in await lifecycle.snapshots.get_items(first.id)
        ]
        first_hash = first.content_hash

        proposal = await lifecycle.revise(proposal.id, actor_id="staff-1")

        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.revision == 2
        assert proposal.approved_at is None
        assert proposal.expires_at is None
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.locked_from_send is True
        assert invoice.activation_source is None

        await lifecycle.replace_items(proposal.id, service_items((ServiceType.WEB_APP, 1, 800000)))
        await lifecycle.send(proposal.id)

        snapshots = await lifecycle.snapshots.get_by_proposal(proposal.id)
        assert [s.version for s in snapshots] == [1, 2]
        assert snapshots[0].content_hash == first_hash
        assert [
            (i.clause_code, i.body) for i in await lifecycle.snapshots.get_items(first.id)
        ] == first_items
        second_codes = [i.clause_code for i in await lifecycle.snapshots.get_items(snapshots[1].id)]
        assert "A01" in second_codes
        assert "W01" not in second_codes

    @pytest.mark.asyncio
    async def test_revise_declined_issues_replacement_invoice(
        self, db_session, lifecycle, seeded_clauses
    ):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.decline(proposal.id)
        old_invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)

        await lifecycle.revise(proposal.id)

        new_invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert new_invoice.id != old_invoice.id
        assert old_invoice.status == InvoiceStatus.VOID
        assert new_invoice.status == InvoiceStatus.PENDING
        assert new_invoice.amount_cents == proposal.value
        assert len(await lifecycle.invoice_items.get_by_invoice(new_invoice.id)) == 2
        link = (await lifecycle.invoice_events.list_for(new_invoice.id))[-1]
        assert link.type == InvoiceEventType.LINKED_TO_PROPOSAL
        assert link.meta["replaces_invoice_id"] == old_invoice.id

        revised = (await lifecycle.proposal_events.list_for(proposal.id))[-1]
        assert revised.meta["invoice_action"] == "reissued"
        assert revised.meta["from_status"] == "declined"

    @pytest.mark.asyncio
    async def test_revise_blocked_by_paid_invoice(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        await lifecycle.invoices.apply(invoice, status=InvoiceStatus.PAID)

        with pytest.raises(BusinessRuleViolation):
            await lifecycle.revise(proposal.id)
        assert proposal.status == ProposalStatus.APPROVED

    @pytest.mark.asyncio
    async def test_revise_draft_is_illegal(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.revise(proposal.id)


# ============================================================================
# Archive and delete
# ============================================================================


class TestArchiveAndDelete:
    @pytest.mark.asyncio
    async def test_archive_sent_voids_unissued_invoice(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        proposal = await lifecycle.archive(proposal.id, reason="Client went quiet")

        assert proposal.status == ProposalStatus.ARCHIVED
        assert proposal.archived_at is not None
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.is_void
        voided = (await lifecycle.invoice_events.list_for(invoice.id))[-1]
        assert voided.meta["reason"] == "proposal_archived"

    @pytest.mark.asyncio
    async def test_archive_approved_leaves_active_invoice(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")

        await lifecycle.archive(proposal.id)
        await lifecycle.archive(proposal.id)

        invoice = await lifecycle.invoices.get_current_for_proposal(proposal.id)
        assert invoice.status == InvoiceStatus.UNPAID
        types = await lifecycle.proposal_events.list_types(proposal.id)
        assert types.count("archived") == 1

    @pytest.mark.asyncio
    async def test_archive_draft_is_illegal(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.archive(proposal.id)

    @pytest.mark.asyncio
    async def test_delete_draft_voids_and_unlinks_invoice(self, db_session, lifecycle):
        proposal = await _draft(db_session, lifecycle)
        proposal_id = proposal.id
        invoice = await lifecycle.invoices.get_current_for_proposal(proposal_id)

        await lifecycle.delete(proposal_id, actor_id="staff-1")

        assert await lifecycle.proposals.get_by_id(proposal_id) is None
        assert await lifecycle.items.get_by_proposal(proposal_id) == []
        assert invoice.status == InvoiceStatus.VOID
        assert invoice.proposal_id is None
        voided = (await lifecycle.invoice_events.list_for(invoice.id))[-1]
        assert voided.meta == {"proposal_id": proposal_id, "reason": "proposal_deleted"}

    @pytest.mark.asyncio
    async def test_delete_sent_is_refused(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.delete(proposal.id)

    @pytest.mark.asyncio
    async def test_delete_revised_draft_is_refused(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.revise(proposal.id)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await lifecycle.delete(proposal.id)
        assert "archived" in exc_info.value.message


# ============================================================================
# Notifications and reads
# ============================================================================


class TestNotificationFailures:
    @pytest.mark.asyncio
    async def test_email_failure_never_blocks_send(self, db_session, seeded_clauses):
        email_service = MagicMock(spec=EmailService)
        email_service.send_email = AsyncMock(side_effect=RuntimeError("smtp down"))
        lifecycle = ProposalLifecycleService(
            db_session,
            dispatcher=NotificationDispatcher(email_service=email_service),
        )
        proposal = await _draft(db_session, lifecycle)

        proposal = await lifecycle.send(proposal.id)

        assert proposal.status == ProposalStatus.SENT
        assert await lifecycle.commit() == 0
        email_service.send_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_commit_sends_nothing(
        self, db_session, lifecycle, mock_dispatcher, seeded_clauses, monkeypatch
    ):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.approve(proposal.id, signature_name="Jane Doe")
        assert len(lifecycle.pending_notifications) == 3
        monkeypatch.setattr(db_session, "commit", AsyncMock(side_effect=RuntimeError("db down")))

        with pytest.raises(RuntimeError):
            await lifecycle.commit()

        mock_dispatcher.notify.assert_not_awaited()
        assert lifecycle.pending_notifications == []

    @pytest.mark.asyncio
    async def test_rejected_transition_queues_nothing(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.commit()

        with pytest.raises(ValidationError):
            await lifecycle.approve(proposal.id, signature_name=" ")

        assert lifecycle.pending_notifications == []

    @pytest.mark.asyncio
    async def test_commit_sends_queued_notifications_in_order(
        self, db_session, lifecycle, mock_dispatcher, seeded_clauses
    ):
        proposal = await _sent(db_session, lifecycle)
        await lifecycle.decline(proposal.id)

        assert await lifecycle.commit() == 2

        assert _notified_types(mock_dispatcher) == [
            EmailType.PROPOSAL_SENT,
            EmailType.PROPOSAL_DECLINED,
        ]
        assert lifecycle.pending_notifications == []


class TestReads:
    @pytest.mark.asyncio
    async def test_get_detail(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        detail = await lifecycle.get_detail(proposal.id)

        assert isinstance(detail.proposal, Proposal)
        assert detail.client.id == proposal.client_id
        assert len(detail.items) == 2
        assert detail.invoice.amount_cents == 460000
        assert len(detail.snapshots) == 1
        assert len(detail.snapshots[0].items) == 31

    @pytest.mark.asyncio
    async def test_list_events(self, db_session, lifecycle, seeded_clauses):
        proposal = await _sent(db_session, lifecycle)

        events = await lifecycle.list_events(proposal.id)

        assert [e.type.value for e in events] == ["created", "sent"]
        assert events[1].meta["clause_count"] == 31
