"""
test_quote_requests_service.py — Tests for quote-request orchestration

Covers the pure helpers (supplier-id parsing, availability and lead-time
mapping, totals), fan-out send, price refresh scoping, follow-up emails and
quote-to-order conversion. Every workflow call is an AsyncMock patched on
app.services.workflow_client.

Called by: pytest
Depends on: app/services/quote_requests.py, conftest.py
"""

import re
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from app.errors import ExternalServiceFailure, NotFound, ValidationFailed
from app.models import (
    ActivityLog,
    EmailMessage,
    EmailThread,
    Part,
    QuoteRequestEmailThread,
    QuoteRequestItem,
)
from app.schemas.quote_requests import ConvertToOrderRequest, FollowUpRequest
from app.services import quote_requests as svc
from app.services.workflow_client import WorkflowRequestError

_WC = "app.services.workflow_client"


def _email_response(subject="Quote request", message_id="msg-1"):
    return {
        "emailContent": {"subject": subject, "body": "Please quote", "bodyHtml": "<p>Please quote</p>"},
        "messageId": message_id,
    }


def _link_supplier(db, qr, supplier, is_primary=True, with_reply=True) -> EmailThread:
    """Put qr into the state a successful send leaves for `supplier`."""
    svc.ensure_supplier_items(db, qr, supplier.id)
    thread = EmailThread(
        organization_id=qr.organization_id,
        supplier_id=supplier.id,
        quote_request=qr,
        subject=f"RFQ {qr.quote_number}",
        status="SENT",
    )
    thread.messages.append(
        EmailMessage(direction="OUTBOUND", from_email="fleet.admin@ridgeline.test", to_email=supplier.email,
                     subject="RFQ", body="Please quote", external_message_id=f"out-{supplier.id}")
    )
    if with_reply:
        thread.messages.append(
            EmailMessage(direction="INBOUND", from_email=supplier.email, to_email="fleet.admin@ridgeline.test",
                         subject="Re: RFQ", body="HYD-100 is $45.00 each, in stock")
        )
    qr.email_links.append(
        QuoteRequestEmailThread(email_thread=thread, supplier_id=supplier.id, is_primary=is_primary)
    )
    qr.status = "SENT"
    db.add(thread)
    db.commit()
    return thread


def _price_template(db, qr, unit="10.00"):
    template = qr.items[0]
    template.unit_price = Decimal(unit)
    template.total_price = Decimal(unit) * template.quantity
    svc.recalculate_total(qr)
    db.commit()
    return template


def _item_sum(qr):
    return sum((i.total_price for i in qr.items if i.total_price is not None), Decimal("0"))


# ═══════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════


class TestParseSupplierIds:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            (None, []),
            ("", []),
            ('["4", "7"]', ["4", "7"]),
            ("[4, 7]", ["4", "7"]),
            ("4, 7 ,", ["4", "7"]),
            ("  ", []),
            ([3, None, " 5 "], ["3", "5"]),
            ('{"a": 1}', []),
        ],
    )
    def test_parse(self, raw, expected):
        assert svc.parse_supplier_ids(raw) == expected


class TestMapAvailability:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("in stock", "IN_STOCK"),
            ("IN_STOCK", "IN_STOCK"),
            ("available", "IN_STOCK"),
            ("limited", "IN_STOCK"),
            ("partial stock", "IN_STOCK"),
            ("backordered", "BACKORDERED"),
            ("special order", "SPECIAL_ORDER"),
            ("call us", "UNKNOWN"),
            (None, "UNKNOWN"),
        ],
    )
    def test_map(self, raw, expected):
        assert svc.map_availability(raw) == expected


class TestParseLeadTime:
    def test_numeric(self):
        assert svc.parse_lead_time(5) == (5, None)

    def test_text_keeps_note(self):
        assert svc.parse_lead_time("3-5 business days") == (3, "Lead time: 3-5 business days")

    def test_text_without_digits(self):
        assert svc.parse_lead_time("soon") == (None, None)

    def test_bool_is_ignored(self):
        assert svc.parse_lead_time(True) == (None, None)


class TestTotalsAndNumbers:
    def test_recalculate_total_ignores_missing_prices(self, test_quote_request):
        qr = test_quote_request
        qr.items.append(QuoteRequestItem(part_number="F-1", description="Filter", quantity=1,
                                         total_price=Decimal("12.50")))
        qr.items.append(QuoteRequestItem(part_number="F-2", description="Filter", quantity=2,
                                         total_price=Decimal("7.25")))
        assert svc.recalculate_total(qr) == Decimal("19.75")
        assert qr.total_amount == Decimal("19.75")

    def test_quote_number_format(self, db_session, test_org):
        assert re.fullmatch(r"QR-\d{2}-\d{4}-\d{4}", svc.generate_quote_number(db_session, test_org.id))

    def test_order_number_format(self, db_session, test_org):
        assert re.fullmatch(r"ORD-\d{4}-\d{4}", svc.generate_order_number(db_session, test_org.id))

    def test_immutable_status_rejected(self, test_quote_request):
        test_quote_request.status = "CONVERTED_TO_ORDER"
        with pytest.raises(ValidationFailed):
            svc.ensure_mutable(test_quote_request)


class TestFollowUpBranch:
    def test_send_always_accepts(self):
        assert svc.resolve_follow_up_branch("send", "no_response", "") == "accept_quote"

    def test_explicit_branch(self):
        assert svc.resolve_follow_up_branch("preview", "needs_revision", "") == "needs_revision"

    def test_inferred_from_reason(self):
        assert svc.resolve_follow_up_branch("preview", None, "Needs revision on qty") == "needs_revision"
        assert svc.resolve_follow_up_branch("preview", "bogus", "Ready to accept") == "accept_quote"
        assert svc.resolve_follow_up_branch("preview", None, "No reply yet") == "no_response"


class TestApplyItemUpdate:
    def test_full_update(self):
        item = QuoteRequestItem(part_number="HYD-100", description="Seal kit", quantity=2)
        svc.apply_item_update(
            item,
            {
                "unitPrice": 45,
                "availability": "in stock",
                "leadTime": "2 days",
                "supplierNotes": "Ships from Denver",
                "isSuperseded": True,
                "originalPartNumber": "HYD-100",
                "supplierPartNumber": "HYD-100A",
            },
        )
        assert item.unit_price == Decimal("45.00")
        assert item.total_price == Decimal("90.00")
        assert item.availability == "IN_STOCK"
        assert item.lead_time == 2
        assert item.supplier_notes == "Ships from Denver. Lead time: 2 days"
        assert item.is_superseded is True
        assert item.supplier_part_number == "HYD-100A"

    def test_original_part_number_cleared_when_not_superseded(self):
        item = QuoteRequestItem(part_number="X", description="x", quantity=1)
        svc.apply_item_update(item, {"originalPartNumber": "OLD"})
        assert item.original_part_number is None
        assert item.availability == "UNKNOWN"


# ═══════════════════════════════════════════════════════════════════════
#  SEND
# ═══════════════════════════════════════════════════════════════════════


class TestSendQuoteRequest:
    @pytest.mark.asyncio
    async def test_fan_out_to_primary_and_additional(
        self, db_session, ctx, test_quote_request, second_supplier, supplier_no_email, test_supplier
    ):
        qr = test_quote_request
        qr.additional_supplier_ids = f'["{second_supplier.id}", "{supplier_no_email.id}", "99999"]'
        db_session.commit()

        mock = AsyncMock(side_effect=[_email_response(message_id="m-1"), _email_response(message_id="m-2")])
        with patch(f"{_WC}.generate_quote_request_email", mock):
            result = await svc.send_quote_request(db_session, ctx, qr.id)

        assert result["totalSent"] == 2
        assert result["totalFailed"] == 1
        assert result["primary"]["supplierId"] == test_supplier.id
        assert [a["supplierId"] for a in result["additional"]] == [second_supplier.id]
        assert result["errors"] == [
            {"supplierId": supplier_no_email.id, "supplierName": supplier_no_email.name,
             "error": svc.NO_EMAIL_ERROR}
        ]
        assert result["warnings"] == []
        assert qr.status == "SENT"

        # one template item plus one clone per supplier that was emailed
        assert len([i for i in qr.items if i.supplier_id is None]) == 1
        assert {i.supplier_id for i in qr.items if i.supplier_id} == {test_supplier.id, second_supplier.id}

        links = {link.supplier_id: link for link in qr.email_links}
        assert set(links) == {test_supplier.id, second_supplier.id}
        assert links[test_supplier.id].is_primary is True
        assert links[second_supplier.id].is_primary is False
        first_out = links[second_supplier.id].email_thread.messages[0]
        assert first_out.direction == "OUTBOUND"
        assert first_out.to_email == second_supplier.email

    @pytest.mark.asyncio
    async def test_payload_carries_no_prices(self, db_session, ctx, test_quote_request):
        test_quote_request.items[0].unit_price = Decimal("10.00")
        db_session.commit()
        mock = AsyncMock(return_value=_email_response())
        with patch(f"{_WC}.generate_quote_request_email", mock):
            await svc.send_quote_request(db_session, ctx, test_quote_request.id)

        payload = mock.call_args.args[0]
        assert payload["isPrimary"] is True
        assert set(payload["items"][0]) == {"id", "partNumber", "description", "quantity"}
        assert payload["vehicle"]["vehicleId"] == "EX-12"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(
        self, db_session, ctx, test_quote_request, second_supplier
    ):
        qr = test_quote_request
        qr.additional_supplier_ids = f"{second_supplier.id}"
        db_session.commit()
        mock = AsyncMock(side_effect=[WorkflowRequestError("QUOTE_REQUEST webhook timed out"), _email_response()])
        with patch(f"{_WC}.generate_quote_request_email", mock):
            result = await svc.send_quote_request(db_session, ctx, qr.id)

        assert result["totalSent"] == 1
        assert result["totalFailed"] == 1
        assert result["primary"] is None
        assert result["errors"][0]["error"] == "QUOTE_REQUEST webhook timed out"
        assert qr.status == "SENT"

    @pytest.mark.asyncio
    async def test_all_failed_keeps_status(self, db_session, ctx, test_quote_request):
        mock = AsyncMock(side_effect=WorkflowRequestError("down"))
        with patch(f"{_WC}.generate_quote_request_email", mock):
            result = await svc.send_quote_request(db_session, ctx, test_quote_request.id)
        assert result["totalSent"] == 0
        assert test_quote_request.status == "DRAFT"

    @pytest.mark.asyncio
    async def test_resend_does_not_duplicate_clones_or_links(self, db_session, ctx, test_quote_request):
        mock = AsyncMock(return_value=_email_response())
        with patch(f"{_WC}.generate_quote_request_email", mock):
            await svc.send_quote_request(db_session, ctx, test_quote_request.id)
            await svc.send_quote_request(db_session, ctx, test_quote_request.id)

        assert len(test_quote_request.items) == 2
        links = db_session.query(QuoteRequestEmailThread).filter_by(quote_request_id=test_quote_request.id).all()
        assert len(links) == 1

    @pytest.mark.asyncio
    async def test_priced_clones_count_toward_total(self, db_session, ctx, test_quote_request):
        _price_template(db_session, test_quote_request)
        assert test_quote_request.total_amount == Decimal("20.00")

        with patch(f"{_WC}.generate_quote_request_email", AsyncMock(return_value=_email_response())):
            await svc.send_quote_request(db_session, ctx, test_quote_request.id)

        db_session.refresh(test_quote_request)
        assert len(test_quote_request.items) == 2
        assert test_quote_request.total_amount == Decimal("40.00")
        assert test_quote_request.total_amount == _item_sum(test_quote_request)

    @pytest.mark.asyncio
    async def test_converted_quote_cannot_be_sent(self, db_session, ctx, test_quote_request):
        test_quote_request.status = "CONVERTED_TO_ORDER"
        db_session.commit()
        with pytest.raises(ValidationFailed):
            await svc.send_quote_request(db_session, ctx, test_quote_request.id)


# ═══════════════════════════════════════════════════════════════════════
#  PRICE REFRESH
# ═══════════════════════════════════════════════════════════════════════


class TestRefreshPrices:
    @pytest.mark.asyncio
    async def test_updates_only_scoped_supplier_items(
        self, db_session, ctx, test_quote_request, test_supplier, second_supplier
    ):
        qr = test_quote_request
        _link_supplier(db_session, qr, test_supplier)
        _link_supplier(db_session, qr, second_supplier, is_primary=False)
        mine = next(i for i in qr.items if i.supplier_id == test_supplier.id)
        theirs = next(i for i in qr.items if i.supplier_id == second_supplier.id)

        response = {
            "success": True,
            "updatedItems": [
                {"id": mine.id, "unitPrice": 45, "availability": "in stock", "leadTime": 2},
                {"id": theirs.id, "unitPrice": 1},
            ],
            "overallRecommendation": "PICKUP",
        }
        mock = AsyncMock(return_value=response)
        with patch(f"{_WC}.update_part_prices", mock):
            result = await svc.refresh_prices(db_session, ctx, qr.id, supplier_id=test_supplier.id)

        assert result["message"] == svc.PRICES_UPDATED_MESSAGE
        assert mine.unit_price == Decimal("45.00")
        assert mine.total_price == Decimal("90.00")
        assert mine.availability == "IN_STOCK"
        assert theirs.unit_price is None
        assert qr.total_amount == Decimal("90.00")
        assert qr.suggested_fulfillment_method == "PICKUP"

        payload = mock.call_args.args[0]
        assert [i["id"] for i in payload["items"]] == [mine.id]
        assert all("unitPrice" not in i for i in payload["items"])
        assert {m["direction"] for m in payload["emailThread"]} == {"OUTBOUND", "INBOUND"}
        assert db_session.query(ActivityLog).filter_by(type="PRICES_UPDATED").count() == 1

    @pytest.mark.asyncio
    async def test_no_updates_asks_for_manual_review(self, db_session, ctx, test_quote_request, test_supplier):
        _link_supplier(db_session, test_quote_request, test_supplier)
        mock = AsyncMock(return_value={"success": True, "textOutput": "Pump $420", "updatedItems": []})
        with patch(f"{_WC}.update_part_prices", mock):
            result = await svc.refresh_prices(db_session, ctx, test_quote_request.id, supplier_id=test_supplier.id)
        assert result["message"] == svc.MANUAL_REVIEW_MESSAGE
        assert result["textOutput"] == "Pump $420"

    @pytest.mark.asyncio
    async def test_lazy_clones_keep_total_in_step(self, db_session, ctx, test_quote_request, test_supplier):
        _price_template(db_session, test_quote_request)
        mock = AsyncMock(return_value={"success": True, "textOutput": "see email", "updatedItems": []})
        with patch(f"{_WC}.update_part_prices", mock):
            await svc.refresh_prices(db_session, ctx, test_quote_request.id, supplier_id=test_supplier.id)

        db_session.refresh(test_quote_request)
        assert [i.supplier_id for i in test_quote_request.items] == [None, test_supplier.id]
        assert test_quote_request.total_amount == Decimal("40.00")
        assert test_quote_request.total_amount == _item_sum(test_quote_request)

    @pytest.mark.asyncio
    async def test_unscoped_refresh_reaches_supplier_clones(
        self, db_session, ctx, test_quote_request, test_supplier, second_supplier
    ):
        qr = test_quote_request
        _link_supplier(db_session, qr, test_supplier)
        _link_supplier(db_session, qr, second_supplier, is_primary=False)
        template = next(i for i in qr.items if i.supplier_id is None)
        clone = next(i for i in qr.items if i.supplier_id == second_supplier.id)

        mock = AsyncMock(return_value={"updatedItems": [{"id": clone.id, "unitPrice": 45}]})
        with patch(f"{_WC}.update_part_prices", mock):
            result = await svc.refresh_prices(db_session, ctx, qr.id)

        assert result["message"] == svc.PRICES_UPDATED_MESSAGE
        assert {i["id"] for i in mock.call_args.args[0]["items"]} == {i.id for i in qr.items}
        assert clone.total_price == Decimal("90.00")
        assert template.unit_price is None
        assert qr.total_amount == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_operations_update_list_is_accepted(self, db_session, ctx, test_quote_request):
        template = test_quote_request.items[0]
        mock = AsyncMock(return_value={"operations": {"update": [{"id": str(template.id), "unitPrice": "9.99"}]}})
        with patch(f"{_WC}.update_part_prices", mock):
            await svc.refresh_prices(db_session, ctx, test_quote_request.id)
        assert template.unit_price == Decimal("9.99")
        assert test_quote_request.total_amount == Decimal("19.98")

    @pytest.mark.asyncio
    async def test_workflow_failure_is_external_error(self, db_session, ctx, test_quote_request):
        mock = AsyncMock(side_effect=WorkflowRequestError("boom"))
        with patch(f"{_WC}.update_part_prices", mock):
            with pytest.raises(ExternalServiceFailure) as exc:
                await svc.refresh_prices(db_session, ctx, test_quote_request.id)
        assert exc.value.status_code == 500
        assert exc.value.detail == "Failed to update prices"

    @pytest.mark.asyncio
    async def test_reported_errors_fail(self, db_session, ctx, test_quote_request):
        mock = AsyncMock(return_value={"success": False, "validation": {"hasErrors": True}})
        with patch(f"{_WC}.update_part_prices", mock):
            with pytest.raises(ExternalServiceFailure):
                await svc.refresh_prices(db_session, ctx, test_quote_request.id)

    @pytest.mark.asyncio
    async def test_supplier_from_other_org_not_found(
        self, db_session, ctx, test_quote_request, other_org
    ):
        from app.models import Supplier

        foreign = Supplier(organization_id=other_org.id, supplier_id="X-1", name="Foreign", type="OEM_DIRECT")
        db_session.add(foreign)
        db_session.commit()
        with pytest.raises(NotFound):
            await svc.refresh_prices(db_session, ctx, test_quote_request.id, supplier_id=foreign.id)


# ═══════════════════════════════════════════════════════════════════════
#  FOLLOW-UP
# ═══════════════════════════════════════════════════════════════════════


class TestFollowUp:
    @pytest.mark.asyncio
    async def test_preview_does_not_record(self, db_session, ctx, test_quote_request, test_supplier):
        thread = _link_supplier(db_session, test_quote_request, test_supplier)
        mock = AsyncMock(return_value=_email_response(subject="Checking in", message_id="f-1"))
        with patch(f"{_WC}.generate_follow_up_email", mock):
            result = await svc.send_follow_up(
                db_session, ctx, test_quote_request.id, FollowUpRequest(workflowBranch="no_response")
            )
        assert result == {"emailContent": _email_response(subject="Checking in")["emailContent"], "messageId": "f-1"}
        assert len(thread.messages) == 2
        payload = mock.call_args.args[0]
        assert payload["followUpReason"] == "follow_up_no_response"
        assert payload["threadId"] == thread.id

    @pytest.mark.asyncio
    async def test_send_records_outbound_message(self, db_session, ctx, test_quote_request, test_supplier):
        thread = _link_supplier(db_session, test_quote_request, test_supplier)
        mock = AsyncMock(return_value=_email_response(subject="We accept", message_id="f-2"))
        with patch(f"{_WC}.generate_follow_up_email", mock):
            await svc.send_follow_up(db_session, ctx, test_quote_request.id, FollowUpRequest(action="send"))

        assert mock.call_args.args[0]["workflowBranch"] == "accept_quote"
        last = thread.messages[-1]
        assert last.direction == "OUTBOUND"
        assert last.follow_up_reason == "follow_up_accept_quote"
        assert thread.status == "WAITING_RESPONSE"

    @pytest.mark.asyncio
    async def test_missing_thread_is_not_found(self, db_session, ctx, test_quote_request):
        with pytest.raises(NotFound, match="No email thread found"):
            await svc.send_follow_up(db_session, ctx, test_quote_request.id, FollowUpRequest())

    @pytest.mark.asyncio
    async def test_supplier_without_email(self, db_session, ctx, test_quote_request, supplier_no_email):
        body = FollowUpRequest(supplierId=supplier_no_email.id)
        with pytest.raises(ValidationFailed, match=svc.NO_EMAIL_ERROR):
            await svc.send_follow_up(db_session, ctx, test_quote_request.id, body)


# ═══════════════════════════════════════════════════════════════════════
#  CONVERT TO ORDER
# ═══════════════════════════════════════════════════════════════════════


class TestConvertToOrder:
    def _approve(self, db, qr, supplier, second=None):
        thread = _link_supplier(db, qr, supplier)
        if second is not None:
            _link_supplier(db, qr, second, is_primary=False)
        for item in qr.items:
            if item.supplier_id == supplier.id:
                item.unit_price = Decimal("45.00")
                item.total_price = Decimal("90.00")
                item.estimated_delivery_days = 3
        qr.status = "APPROVED"
        db.commit()
        return thread

    @pytest.mark.asyncio
    async def test_requires_approval(self, db_session, ctx, test_quote_request):
        with pytest.raises(ValidationFailed, match="approved"):
            await svc.convert_to_order(db_session, ctx, test_quote_request.id, ConvertToOrderRequest())

    @pytest.mark.asyncio
    async def test_creates_order_from_supplier_items(
        self, db_session, ctx, test_quote_request, test_supplier, second_supplier
    ):
        qr = test_quote_request
        thread = self._approve(db_session, qr, test_supplier, second_supplier)
        mock = AsyncMock(return_value=_email_response(subject="PO confirmation", message_id="c-1"))
        body = ConvertToOrderRequest(
            fulfillmentMethod="DELIVERY",
            shippingAddress={"street": "1 Quarry Rd", "city": "Boulder", "state": "CO", "zipCode": "80301"},
        )
        with patch(f"{_WC}.generate_order_confirmation_email", mock):
            order, warnings = await svc.convert_to_order(db_session, ctx, qr.id, body)

        assert warnings == []
        assert order.status == "PROCESSING"
        assert order.supplier_id == test_supplier.id
        assert order.email_thread_id == thread.id
        assert order.quote_reference == qr.quote_number
        assert order.total == Decimal("90.00")
        assert order.shipping_address["zipCode"] == "80301"
        assert len(order.items) == 1
        assert order.items[0].expected_delivery is not None

        assert qr.status == "CONVERTED_TO_ORDER"
        assert qr.selected_supplier_id == test_supplier.id
        statuses = {link.supplier_id: link.status for link in qr.email_links}
        assert statuses == {test_supplier.id: "ACCEPTED", second_supplier.id: "REJECTED"}

        part = db_session.query(Part).filter_by(part_number="HYD-100").one()
        assert order.items[0].part_id == part.id
        assert thread.status == "CONVERTED_TO_ORDER"
        assert thread.messages[-1].subject == "PO confirmation"

    @pytest.mark.asyncio
    async def test_confirmation_failure_keeps_order(self, db_session, ctx, test_quote_request, test_supplier):
        self._approve(db_session, test_quote_request, test_supplier)
        mock = AsyncMock(side_effect=WorkflowRequestError("timeout"))
        with patch(f"{_WC}.generate_order_confirmation_email", mock):
            order, warnings = await svc.convert_to_order(
                db_session, ctx, test_quote_request.id, ConvertToOrderRequest(fulfillmentMethod="PICKUP")
            )
        assert order.id is not None
        assert warnings == ["Order created, but the confirmation email could not be generated"]
        assert test_quote_request.status == "CONVERTED_TO_ORDER"

    @pytest.mark.asyncio
    async def test_superseded_item_records_supersession(
        self, db_session, ctx, test_quote_request, test_supplier
    ):
        self._approve(db_session, test_quote_request, test_supplier)
        item = next(i for i in test_quote_request.items if i.supplier_id == test_supplier.id)
        item.is_superseded = True
        item.original_part_number = "HYD-100"
        item.supplier_part_number = "HYD-100B"
        db_session.commit()

        with patch(f"{_WC}.generate_order_confirmation_email", AsyncMock(return_value={})):
            order, warnings = await svc.convert_to_order(
                db_session, ctx, test_quote_request.id, ConvertToOrderRequest()
            )
        part = db_session.query(Part).filter_by(part_number="HYD-100B").one()
        assert part.supersedes == "HYD-100"
        assert part.superseded_by == "HYD-100B"
        assert "Superseded" in order.items[0].supplier_notes
        assert warnings == ["Order created, but the confirmation email was empty"]

    def test_split_requires_item_map(self):
        with pytest.raises(ValueError):
            ConvertToOrderRequest(fulfillmentMethod="SPLIT")
