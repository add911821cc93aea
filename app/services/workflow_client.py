"""
workflow_client.py — External Workflow Client (signed webhook calls)

Every outbound call to the automation service goes through _post(): resolve
the named endpoint URL, sign a short-lived bearer token, POST JSON, decode
the body and normalize its shape with extract_webhook_response().

Business Rules:
- A missing endpoint URL is a WorkflowConfigError, never a silent no-op
- Tokens are HS512, valid 5 minutes, with a fixed issuer claim
- Empty body → {}; non-JSON body → WorkflowRequestError (first 200 chars)
- Non-2xx → WorkflowRequestError with the body's "error" field
- Timeouts fail the call; nothing is retried
- Order confirmation waits up to ORDER_CONFIRMATION_TIMEOUT (minutes, not seconds)

Called by: services/quote_requests.py, services/email_reconciliation.py,
           routers/orders.py, routers/support.py
Depends on: config, http_client, services/webhook_response.py
"""

import json
import logging
import time

import httpx
from jose import jwt

from app.config import settings
from app.http_client import http
from app.services.webhook_response import extract_webhook_response

log = logging.getLogger("fleet.workflow")

TOKEN_TTL_SECONDS = 300
TOKEN_ALGORITHM = "HS512"


class WorkflowError(Exception):
    """Base for every failure talking to the automation service."""


class WorkflowConfigError(WorkflowError):
    """The endpoint URL is not configured."""


class WorkflowRequestError(WorkflowError):
    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# ── Transport ─────────────────────────────────────────────────────────


def _sign_token() -> str:
    now = int(time.time())
    claims = {
        "source": settings.webhook_token_issuer,
        "timestamp": int(time.time() * 1000),
        "iat": now,
        "exp": now + TOKEN_TTL_SECONDS,
        "iss": settings.webhook_token_issuer,
    }
    return jwt.encode(claims, settings.n8n_webhook_secret, algorithm=TOKEN_ALGORITHM)


def _decode_body(resp: httpx.Response):
    text = resp.text
    if not text or not text.strip():
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        raise WorkflowRequestError(
            f"Failed to parse response as JSON: {text[:200]}",
            status_code=resp.status_code,
            body=text[:200],
        )


async def _post(name: str, payload: dict, timeout: float | None = None):
    """POST payload to the named endpoint and return the normalized response."""
    url = settings.webhook_url(name)
    if not url:
        raise WorkflowConfigError(f"{name} webhook URL not configured")

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {_sign_token()}",
    }
    started = time.monotonic()
    try:
        resp = await http.post(
            url,
            json=payload,
            headers=headers,
            timeout=timeout or settings.webhook_timeout,
        )
    except httpx.TimeoutException as e:
        log.error(f"{name} webhook timed out after {time.monotonic() - started:.1f}s")
        raise WorkflowRequestError(f"{name} webhook timed out") from e
    except httpx.HTTPError as e:
        log.error(f"{name} webhook request failed: {e}")
        raise WorkflowRequestError(f"{name} webhook request failed: {e}") from e

    if resp.status_code < 200 or resp.status_code >= 300:
        try:
            data = resp.json()
        except ValueError:
            data = {}
        message = data.get("error") if isinstance(data, dict) else None
        log.warning(f"{name} webhook returned {resp.status_code}")
        raise WorkflowRequestError(
            message or "An unknown error occurred",
            status_code=resp.status_code,
            body=resp.text[:200],
        )

    raw = _decode_body(resp)
    log.info(f"{name} webhook answered in {time.monotonic() - started:.1f}s")
    return extract_webhook_response(raw)


# ── Named operations ──────────────────────────────────────────────────


async def search_parts(data: dict):
    return await _post("PARTS_SEARCH", data)


async def generate_quote_request_email(data: dict):
    return await _post("QUOTE_REQUEST", data)


async def parse_email(data: dict):
    return await _post("EMAIL_PARSER", data)


async def generate_follow_up_email(data: dict) -> dict:
    """Generate a follow-up email for a quote-request thread.

    Custom content supplied by the user is stamped as an OUTBOUND message from
    the user to the supplier. The needs_revision branch always carries a
    missingInformation list. A result without emailContent subject and body
    is rejected.
    """
    payload = dict(data)
    custom = payload.get("customEmailContent")
    if custom and custom.get("subject") and custom.get("body"):
        user = payload.get("user") or {}
        supplier = payload.get("supplier") or {}
        payload["customEmailContent"] = {
            **custom,
            "direction": "OUTBOUND",
            "from": user.get("email") or "system@example.com",
            "to": supplier.get("email"),
        }

    if payload.get("workflowBranch") == "needs_revision" and not payload.get("missingInformation"):
        extra = payload.get("additionalMessage")
        payload["missingInformation"] = [extra] if extra else []

    result = await _post("FOLLOW_UP", payload)
    if not result:
        raise WorkflowRequestError("Empty response received from follow-up webhook")

    content = result.get("emailContent") if isinstance(result, dict) else None
    if not isinstance(content, dict) or not content.get("subject") or not content.get("body"):
        raise WorkflowRequestError(
            "Invalid response format from follow-up webhook: missing email content"
        )
    return result


async def generate_order_confirmation_email(data: dict):
    return await _post(
        "ORDER_CONFIRMATION", data, timeout=settings.order_confirmation_timeout
    )


async def process_customer_support_query(data: dict):
    return await _post("CUSTOMER_SUPPORT", data)


async def update_part_prices(data: dict):
    return await _post("PRICE_UPDATE", data)


async def post_order_update(data: dict):
    return await _post("POST_ORDER", data)


async def generate_order_follow_up_email(data: dict):
    return await _post("ORDER_FOLLOW_UP", data)
