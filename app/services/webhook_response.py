"""Webhook response normalizer — turn loosely-shaped workflow output into one dict.

The automation workflows answer in whatever shape the last node produced:
wrapped arrays, JSON inside an LLM "output" string, bare email objects, or
plain text. Each known shape is a (name, predicate, extractor) entry in
RESPONSE_SHAPES, tried in order; the first predicate that matches wins.
Array shapes are matched against the first element only.

Usage:
    from app.services.webhook_response import extract_webhook_response
    data = extract_webhook_response(resp.json())
"""

import json
import logging
import re
import time
from typing import Any, Callable

log = logging.getLogger("fleet.workflow")

_FENCED_JSON = re.compile(r"```json\s*(.*)```", re.DOTALL)

FOLLOW_UP_INTERVAL = "7 days"
PLAIN_TEXT_MESSAGE = "Price update processed by workflow"

class _NoMatch(Exception):
    """Extractor saw the shape but could not use it; try the next one."""


def _first(raw: Any) -> dict | None:
    if isinstance(raw, list) and raw and isinstance(raw[0], dict):
        return raw[0]
    return None


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


def _has_email(obj: Any) -> bool:
    email = obj.get("email") if _is_dict(obj) else None
    return _is_dict(email) and bool(email.get("subject")) and bool(email.get("body"))


def _generated_message_id() -> str:
    return f"generated-{int(time.time() * 1000)}"


def _email_result(email: dict, metadata: Any) -> dict:
    message_id = metadata.get("messageId") if _is_dict(metadata) else None
    return {
        "emailContent": {
            "subject": email.get("subject"),
            "body": email.get("body"),
            "bodyHtml": email.get("bodyHtml") or email.get("body"),
        },
        "messageId": message_id or _generated_message_id(),
        "suggestedNextFollowUp": FOLLOW_UP_INTERVAL,
    }


# ── Array shapes ──────────────────────────────────────────────────────


def _array_response_body(raw):
    return _first(raw)["response"]["body"]


def _array_output_json(raw):
    text = _first(raw)["output"]
    match = _FENCED_JSON.search(text)
    candidates = [match.group(1).strip()] if match else []
    candidates.append(text)
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    log.warning(f"Workflow output is not JSON: {text[:100]}")
    raise _NoMatch


def _array_flat_email(raw):
    first = _first(raw)
    return _email_result(first["email"], first.get("metadata"))


# ── Object shapes ─────────────────────────────────────────────────────


def _object_email(raw):
    return _email_result(raw["email"], raw.get("metadata"))


def _object_full_response(raw):
    return _email_result(raw["fullResponse"]["data"]["email"], raw.get("metadata"))


def _object_minimal_email(raw):
    note = f"Follow-up email regarding quote request. Thread ID: {raw['threadId']}"
    return {
        "emailContent": {
            "subject": raw["subject"],
            "body": note,
            "bodyHtml": f"<p>{note}</p>",
        },
        "messageId": raw["id"],
        "suggestedNextFollowUp": FOLLOW_UP_INTERVAL,
    }


def _object_plain_text(raw):
    return {
        "success": True,
        "message": PLAIN_TEXT_MESSAGE,
        "textOutput": raw["output"],
        "updatedItems": [],
    }


def _has_full_response_email(raw) -> bool:
    full = raw.get("fullResponse")
    data = full.get("data") if _is_dict(full) else None
    return _is_dict(data) and bool(data.get("email"))


Shape = tuple[str, Callable[[Any], bool], Callable[[Any], Any]]

RESPONSE_SHAPES: list[Shape] = [
    (
        "array_response_body",
        lambda r: _first(r) is not None
        and _is_dict(_first(r).get("response"))
        and bool(_first(r)["response"].get("body")),
        _array_response_body,
    ),
    (
        "array_output_json",
        lambda r: _first(r) is not None and isinstance(_first(r).get("output"), str),
        _array_output_json,
    ),
    (
        "array_flat_email",
        lambda r: _first(r) is not None and _has_email(_first(r)),
        _array_flat_email,
    ),
    (
        "object_email_content",
        lambda r: _is_dict(r) and bool(r.get("emailContent")),
        lambda r: r,
    ),
    (
        "object_email",
        lambda r: _is_dict(r) and _has_email(r),
        _object_email,
    ),
    (
        "object_full_response",
        lambda r: _is_dict(r) and _has_full_response_email(r),
        _object_full_response,
    ),
    (
        "object_minimal_email",
        lambda r: _is_dict(r) and bool(r.get("id") and r.get("threadId") and r.get("subject")),
        _object_minimal_email,
    ),
    (
        "object_plain_text",
        lambda r: _is_dict(r) and isinstance(r.get("output"), str) and bool(r.get("output")),
        _object_plain_text,
    ),
]


def extract_webhook_response(raw: Any) -> Any:
    """Normalize a workflow response. Never raises on odd shapes."""
    if raw is None or raw == [] or raw == {} or raw == "":
        return {}

    for name, predicate, extractor in RESPONSE_SHAPES:
        if not predicate(raw):
            continue
        try:
            result = extractor(raw)
        except _NoMatch:
            continue
        log.debug(f"Workflow response matched shape {name}")
        return result

    # Arrays nobody claimed: the first element is the payload
    if isinstance(raw, list):
        return raw[0]
    return raw
