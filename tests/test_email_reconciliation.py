"""
test_email_reconciliation.py — Tests for orphaned email matching, assign and merge

Covers supplier lookup by primary/auxiliary address, inbound ingest onto
existing or new threads, the orphan inbox, candidate quote requests, the
assign → 409 → merge flow, and message parsing through the workflow.

Called by: pytest
Depends on: app/services/email_reconciliation.py, conftest.py
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from app.dependencies import AuthContext
from app.errors import ConflictRequiresMerge, ExternalServiceFailure, NotFound, ValidationFailed
from app.models import (
    ActivityLog,
    AuxiliaryEmail,
    EmailMessage,
    EmailThread,
    Order,
    QuoteRequest,
    QuoteRequestEmailThread,
)
from app.schemas.emails import InboundEmail
from app.services import email_reconciliation as svc
from app.services.workflow_client import WorkflowRequestError


def _orphan(db, supplier, sender=None, subject="Pricing for HYD-100") -> EmailThread:
    thread = EmailThread(
        organization_id=supplier.organization_id,
        supplier_id=supplier.id,
        subject=subject,
        status="RESPONSE_RECEIVED",
    )
    thread.messages.append(
        EmailMessage(direction="INBOUND", from_email=sender or supplier.email,
                     to_email="fleet.admin@ridgeline.test", subject=subject, body="$45 each")
    )
    db.add(thread)
    db.commit()
    return thread


def _linked_thread(db, qr, supplier) -> EmailThread:
    thread = EmailThread(
        organization_id=qr.organization_id, supplier_id=supplier.id, quote_request=qr,
        subject=f"RFQ {qr.quote_number}", status="SENT",
    )
    thread.messages.append(
        EmailMessage(direction="OUTBOUND", from_email="fleet.admin@ridgeline.test",
                     to_email=supplier.email, body="Please quote", external_message_id="<out-1@mail>")
    )
    qr.email_links.append(QuoteRequestEmailThread(email_thread=thread, supplier_id=supplier.id, is_primary=True))
    db.add(thread)
    db.commit()
    return thread


# ── Supplier lookup ──────────────────────────────────────────────────


class TestFindSupplierByEmail:
    def test_primary_email_case_insensitive(self, db_session, ctx, test_supplier):
        assert svc.find_supplier_by_email(db_session, ctx, "QUOTES@HeavyIron.test").id == test_supplier.id

    def test_auxiliary_email(self, db_session, ctx, test_supplier):
        test_supplier.auxiliary_emails.append(AuxiliaryEmail(email="Branch@heavyiron.test"))
        db_session.commit()
        assert svc.find_supplier_by_email(db_session, ctx, "branch@heavyiron.test").id == test_supplier.id

    def test_unknown_or_blank(self, db_session, ctx, test_supplier):
        assert svc.find_supplier_by_email(db_session, ctx, "nobody@else.test") is None
        assert svc.find_supplier_by_email(db_session, ctx, "  ") is None

    def test_other_org_supplier_not_matched(self, db_session, test_supplier, other_org):
        foreign = AuthContext(user_id=1, organization_id=other_org.id, role="ADMIN")
        assert svc.find_supplier_by_email(db_session, foreign, test_supplier.email) is None


# ── Inbound ──────────────────────────────────────────────────────────


class TestIngestInbound:
    def test_known_sender_creates_orphan(self, db_session, ctx, test_supplier):
        payload = InboundEmail(**{"from": "Quotes@HeavyIron.test", "subject": "Price list", "body": "attached"})
        thread = svc.ingest_inbound(db_session, ctx, payload)

        assert thread.supplier_id == test_supplier.id
        assert thread.quote_request_id is None
        assert thread.status == "RESPONSE_RECEIVED"
        assert thread.messages[0].from_email == "quotes@heavyiron.test"
        assert [t.id for t in svc.list_orphaned(db_session, ctx)] == [thread.id]

    def test_unknown_sender_is_not_orphaned(self, db_session, ctx):
        thread = svc.ingest_inbound(db_session, ctx, InboundEmail(**{"from": "spam@junk.test"}))
        assert thread.supplier_id is None
        assert svc.list_orphaned(db_session, ctx) == []

    def test_reply_lands_on_sent_thread(self, db_session, ctx, test_quote_request, test_supplier):
        sent = _linked_thread(db_session, test_quote_request, test_supplier)
        payload = InboundEmail(**{
            "from": test_supplier.email,
            "subject": "Re: RFQ",
            "body": "HYD-100 $45",
            "inReplyTo": "<out-1@mail>",
            "attachments": [{"filename": "quote.pdf", "contentType": "application/pdf", "size": 1024}],
        })
        thread = svc.ingest_inbound(db_session, ctx, payload)

        assert thread.id == sent.id
        assert len(thread.messages) == 2
        assert thread.messages[-1].attachments[0].filename == "quote.pdf"
        assert thread.status == "RESPONSE_RECEIVED"
        assert thread.quote_links[0].status == "RESPONDED"
        assert thread.quote_links[0].response_date is not None

    def test_external_thread_id_groups_messages(self, db_session, ctx, test_supplier):
        first = svc.ingest_inbound(
            db_session, ctx, InboundEmail(**{"from": test_supplier.email, "externalThreadId": "gm-77"})
        )
        second = svc.ingest_inbound(
            db_session, ctx, InboundEmail(**{"from": test_supplier.email, "externalThreadId": "gm-77"})
        )
        assert first.id == second.id
        assert len(second.messages) == 2

    def test_sender_must_be_address(self):
        with pytest.raises(ValueError):
            InboundEmail(**{"from": "not-an-address"})


# ── Orphans & candidates ─────────────────────────────────────────────


class TestOrphansAndCandidates:
    def test_assigned_threads_are_not_orphans(self, db_session, ctx, test_quote_request, test_supplier):
        _linked_thread(db_session, test_quote_request, test_supplier)
        orphan = _orphan(db_session, test_supplier)
        assert [t.id for t in svc.list_orphaned(db_session, ctx)] == [orphan.id]

    def test_search_by_subject_or_sender(self, db_session, ctx, test_supplier):
        a = _orphan(db_session, test_supplier, subject="Track links")
        _orphan(db_session, test_supplier, subject="Bucket teeth")
        assert [t.id for t in svc.list_orphaned(db_session, ctx, search="track")] == [a.id]
        assert len(svc.list_orphaned(db_session, ctx, search="heavyiron")) == 2

    def test_candidates_share_the_supplier(
        self, db_session, ctx, test_quote_request, test_supplier, second_supplier, test_vehicle
    ):
        other = QuoteRequest(
            organization_id=ctx.organization_id, quote_number="QR-01-2026-0002", title="Tracks",
            supplier_id=second_supplier.id, vehicle_id=test_vehicle.id,
        )
        also = QuoteRequest(
            organization_id=ctx.organization_id, quote_number="QR-01-2026-0003", title="Filters",
            supplier_id=second_supplier.id, vehicle_id=test_vehicle.id,
            additional_supplier_ids=f'["{test_supplier.id}"]',
        )
        db_session.add_all([other, also])
        db_session.commit()
        orphan = _orphan(db_session, test_supplier)

        ids = {qr.id for qr in svc.candidate_quote_requests(db_session, ctx, orphan.id)}
        assert ids == {test_quote_request.id, also.id}

    def test_candidates_for_thread_without_supplier(self, db_session, ctx):
        thread = svc.ingest_inbound(db_session, ctx, InboundEmail(**{"from": "who@unknown.test"}))
        assert svc.candidate_quote_requests(db_session, ctx, thread.id) == []


# ── Assign ───────────────────────────────────────────────────────────


class TestAssign:
    def test_assign_links_thread(self, db_session, ctx, test_quote_request, test_supplier):
        orphan = _orphan(db_session, test_supplier)
        thread = svc.assign_thread(db_session, ctx, orphan.id, test_quote_request.id)

        assert thread.quote_request_id == test_quote_request.id
        link = db_session.query(QuoteRequestEmailThread).filter_by(email_thread_id=orphan.id).one()
        assert link.status == "RESPONDED"
        assert link.is_primary is True
        assert db_session.query(ActivityLog).filter_by(type="EMAIL_ASSIGNED").count() == 1
        assert svc.list_orphaned(db_session, ctx) == []

    def test_assign_learns_new_sender(self, db_session, ctx, test_quote_request, test_supplier):
        orphan = _orphan(db_session, test_supplier, sender="Counter@HeavyIron.test")
        svc.assign_thread(db_session, ctx, orphan.id, test_quote_request.id)
        assert "counter@heavyiron.test" in test_supplier.known_emails()

    def test_conflict_requires_merge(self, db_session, ctx, test_quote_request, test_supplier):
        existing = _linked_thread(db_session, test_quote_request, test_supplier)
        orphan = _orphan(db_session, test_supplier)
        with pytest.raises(ConflictRequiresMerge) as exc:
            svc.assign_thread(db_session, ctx, orphan.id, test_quote_request.id)

        assert exc.value.status_code == 409
        assert exc.value.details == {
            "targetThreadId": existing.id,
            "sourceThreadId": orphan.id,
            "resolution": "merge",
        }
        db_session.refresh(orphan)
        assert orphan.quote_request_id is None

    def test_supplier_not_on_quote(self, db_session, ctx, test_quote_request, second_supplier):
        orphan = _orphan(db_session, second_supplier)
        with pytest.raises(ValidationFailed, match="not associated"):
            svc.assign_thread(db_session, ctx, orphan.id, test_quote_request.id)

    def test_already_assigned_elsewhere(
        self, db_session, ctx, test_quote_request, test_supplier, test_vehicle
    ):
        elsewhere = QuoteRequest(
            organization_id=ctx.organization_id, quote_number="QR-01-2026-0009", title="Other",
            supplier_id=test_supplier.id, vehicle_id=test_vehicle.id,
        )
        db_session.add(elsewhere)
        db_session.commit()
        thread = _linked_thread(db_session, elsewhere, test_supplier)
        with pytest.raises(ValidationFailed, match="already assigned"):
            svc.assign_thread(db_session, ctx, thread.id, test_quote_request.id)

    def test_thread_from_other_org_not_found(self, db_session, ctx, test_quote_request, other_org):
        thread = EmailThread(organization_id=other_org.id, subject="x")
        db_session.add(thread)
        db_session.commit()
        with pytest.raises(NotFound):
            svc.assign_thread(db_session, ctx, thread.id, test_quote_request.id)


# ── Merge ────────────────────────────────────────────────────────────


class TestMerge:
    def test_merge_moves_messages_and_deletes_source(
        self, db_session, ctx, test_quote_request, test_supplier
    ):
        target = _linked_thread(db_session, test_quote_request, test_supplier)
        source = _orphan(db_session, test_supplier)
        source_id = source.id
        order = Order(organization_id=ctx.organization_id, order_number="ORD-2026-0001",
                      supplier_id=test_supplier.id, email_thread_id=source_id)
        db_session.add(order)
        db_session.commit()

        merged = svc.merge_threads(db_session, ctx, source_id, target.id)

        assert merged.id == target.id
        assert [m.direction for m in merged.messages] == ["OUTBOUND", "INBOUND"]
        assert db_session.get(EmailThread, source_id) is None
        db_session.refresh(order)
        assert order.email_thread_id == target.id
        activity = db_session.query(ActivityLog).filter_by(type="EMAIL_MERGED").one()
        assert activity.details["messagesMoved"] == 1

    def test_merged_messages_interleave_by_time(self, db_session, ctx, test_supplier):
        base = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

        def thread_with(*hours):
            thread = EmailThread(organization_id=ctx.organization_id, supplier_id=test_supplier.id,
                                 subject="HYD-100 pricing", status="RESPONSE_RECEIVED")
            for h in hours:
                thread.messages.append(EmailMessage(direction="INBOUND", from_email=test_supplier.email,
                                                    body=f"t{h}", created_at=base + timedelta(hours=h)))
            db_session.add(thread)
            db_session.commit()
            return thread

        target = thread_with(0, 2)
        source = thread_with(1, 3)

        merged = svc.merge_threads(db_session, ctx, source.id, target.id)

        assert [m.body for m in merged.messages] == ["t0", "t1", "t2", "t3"]
        activity = db_session.query(ActivityLog).filter_by(type="EMAIL_MERGED").one()
        assert activity.details["messagesMoved"] == 2

    def test_merge_after_conflict_resolves_assignment(
        self, db_session, ctx, test_quote_request, test_supplier
    ):
        target = _linked_thread(db_session, test_quote_request, test_supplier)
        orphan = _orphan(db_session, test_supplier)
        with pytest.raises(ConflictRequiresMerge) as exc:
            svc.assign_thread(db_session, ctx, orphan.id, test_quote_request.id)

        details = exc.value.details
        svc.merge_threads(db_session, ctx, details["sourceThreadId"], details["targetThreadId"])
        assert svc.list_orphaned(db_session, ctx) == []
        assert len(target.messages) == 2

    def test_source_links_move_to_target(self, db_session, ctx, test_quote_request, test_supplier):
        source = _linked_thread(db_session, test_quote_request, test_supplier)
        target = _orphan(db_session, test_supplier)
        merged = svc.merge_threads(db_session, ctx, source.id, target.id)

        assert merged.quote_request_id == test_quote_request.id
        link = db_session.query(QuoteRequestEmailThread).one()
        assert link.email_thread_id == target.id

    def test_same_thread_rejected(self, db_session, ctx, test_supplier):
        thread = _orphan(db_session, test_supplier)
        with pytest.raises(ValidationFailed, match="must be different"):
            svc.merge_threads(db_session, ctx, thread.id, thread.id)

    def test_missing_target(self, db_session, ctx, test_supplier):
        thread = _orphan(db_session, test_supplier)
        with pytest.raises(NotFound):
            svc.merge_threads(db_session, ctx, thread.id, 424242)


# ── Parse ────────────────────────────────────────────────────────────


class TestParseMessage:
    @pytest.mark.asyncio
    async def test_forwards_message(self, db_session, ctx, test_supplier):
        thread = _orphan(db_session, test_supplier)
        mock = AsyncMock(return_value={"items": [{"partNumber": "HYD-100", "unitPrice": 45}]})
        with patch("app.services.workflow_client.parse_email", mock):
            result = await svc.parse_message(db_session, ctx, thread.messages[0].id)
        assert result["items"][0]["unitPrice"] == 45
        assert mock.call_args.args[0]["supplierId"] == test_supplier.id

    @pytest.mark.asyncio
    async def test_failure_is_external_error(self, db_session, ctx, test_supplier):
        thread = _orphan(db_session, test_supplier)
        mock = AsyncMock(side_effect=WorkflowRequestError("down"))
        with patch("app.services.workflow_client.parse_email", mock):
            with pytest.raises(ExternalServiceFailure, match="Failed to parse email"):
                await svc.parse_message(db_session, ctx, thread.messages[0].id)

    @pytest.mark.asyncio
    async def test_unknown_message(self, db_session, ctx):
        with pytest.raises(NotFound):
            await svc.parse_message(db_session, ctx, 999)
