"""
errors.py — API error taxonomy

Every error a handler or service raises maps to one HTTP status. All of them
are HTTPException subclasses so the handler in main.py renders them into the
shared {error, status_code, request_id, details} body.

Business Rules:
- Validation and auth errors are raised before any work is done
- ExternalServiceFailure carries a generic message; the cause is logged, not returned
- ConflictRequiresMerge is the only 409: assignment needs an explicit merge

Called by: dependencies.py, services/*, routers/*
Depends on: fastapi
"""

from fastapi import HTTPException


class ApiError(HTTPException):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, details: dict | list | None = None):
        super().__init__(self.status_code, message or self.default_message)
        self.details = details


class AuthenticationRequired(ApiError):
    status_code = 401
    default_message = "Not authenticated"


class AuthorizationDenied(ApiError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation error"


class ExternalServiceFailure(ApiError):
    status_code = 500
    default_message = "External service request failed"


class ConflictRequiresMerge(ApiError):
    status_code = 409
    default_message = "Quote request already has an email thread for this supplier"

    def __init__(self, target_thread_id: int, source_thread_id: int):
        super().__init__(
            details={
                "targetThreadId": target_thread_id,
                "sourceThreadId": source_thread_id,
                "resolution": "merge",
            }
        )
        self.target_thread_id = target_thread_id
        self.source_thread_id = source_thread_id
