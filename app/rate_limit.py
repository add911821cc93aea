"""Shared rate limiter (in-memory storage, per client address).

Workflow-backed routes (quote send, price refresh) take a tighter limit
because each call fans out to the external automation service.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

WORKFLOW_LIMIT = settings.rate_limit_workflow
