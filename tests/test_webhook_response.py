"""
test_webhook_response.py — Tests for the workflow response normalizer

Covers each response shape the automation workflows are known to produce,
the order in which shapes are tried, and the pass-through fallbacks.

Called by: pytest
Depends on: app/services/webhook_response.py
"""

import json

from app.services.webhook_response import (
    FOLLOW_UP_INTERVAL,
    PLAIN_TEXT_MESSAGE,
    extract_webhook_response,
)


class TestEmptyInput:
    def test_empty_values_become_empty_dict(self):
        for raw in (None, [], {}, ""):
            assert extract_webhook_response(raw) == {}


class TestArrayShapes:
    def test_response_body_is_unwrapped(self):
        raw = [{"response": {"body": {"success": True, "updatedItems": [{"id": 1}]}}}]
        assert extract_webhook_response(raw) == {"success": True, "updatedItems": [{"id": 1}]}

    def test_output_json_in_fenced_block(self):
        payload = {"success": True, "updatedItems": [{"id": 7, "unitPrice": 12.5}]}
        raw = [{"output": f"Here you go:\n```json\n{json.dumps(payload)}\n```"}]
        assert extract_webhook_response(raw) == payload

    def test_output_bare_json(self):
        raw = [{"output": json.dumps({"orderUpdates": {"trackingNumber": "1Z999"}})}]
        assert extract_webhook_response(raw) == {"orderUpdates": {"trackingNumber": "1Z999"}}

    def test_output_not_json_falls_through_to_first_element(self):
        raw = [{"output": "no structured data here"}]
        assert extract_webhook_response(raw) == {"output": "no structured data here"}

    def test_flat_email_element(self):
        raw = [
            {
                "email": {"subject": "RFQ QR-01", "body": "Please quote"},
                "metadata": {"messageId": "msg-42"},
            }
        ]
        result = extract_webhook_response(raw)
        assert result["emailContent"] == {
            "subject": "RFQ QR-01",
            "body": "Please quote",
            "bodyHtml": "Please quote",
        }
        assert result["messageId"] == "msg-42"
        assert result["suggestedNextFollowUp"] == FOLLOW_UP_INTERVAL

    def test_unclaimed_array_returns_first_element(self):
        assert extract_webhook_response([{"foo": 1}, {"bar": 2}]) == {"foo": 1}

    def test_response_body_wins_over_output(self):
        raw = [{"response": {"body": {"a": 1}}, "output": '{"b": 2}'}]
        assert extract_webhook_response(raw) == {"a": 1}


class TestObjectShapes:
    def test_email_content_passes_through(self):
        raw = {"emailContent": {"subject": "S", "body": "B"}, "messageId": "m1"}
        assert extract_webhook_response(raw) is raw

    def test_email_object(self):
        raw = {"email": {"subject": "S", "body": "B", "bodyHtml": "<p>B</p>"}}
        result = extract_webhook_response(raw)
        assert result["emailContent"]["bodyHtml"] == "<p>B</p>"
        assert result["messageId"].startswith("generated-")

    def test_email_missing_body_is_not_an_email(self):
        raw = {"email": {"subject": "S"}}
        assert extract_webhook_response(raw) == raw

    def test_full_response_email(self):
        raw = {
            "fullResponse": {"data": {"email": {"subject": "Order ORD-2026-0001", "body": "Confirmed"}}},
            "metadata": {"messageId": "abc"},
        }
        result = extract_webhook_response(raw)
        assert result["emailContent"]["subject"] == "Order ORD-2026-0001"
        assert result["messageId"] == "abc"

    def test_minimal_email(self):
        raw = {"id": "gmail-1", "threadId": "t-9", "subject": "Re: quote"}
        result = extract_webhook_response(raw)
        assert result["messageId"] == "gmail-1"
        assert result["emailContent"]["subject"] == "Re: quote"
        assert "t-9" in result["emailContent"]["body"]
        assert result["emailContent"]["bodyHtml"].startswith("<p>")

    def test_plain_text_output(self):
        result = extract_webhook_response({"output": "Pump is $420, ships Friday"})
        assert result == {
            "success": True,
            "message": PLAIN_TEXT_MESSAGE,
            "textOutput": "Pump is $420, ships Friday",
            "updatedItems": [],
        }

    def test_unknown_object_passes_through(self):
        raw = {"success": True, "updatedItems": []}
        assert extract_webhook_response(raw) is raw
