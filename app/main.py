"""
main.py — Fleet Parts Procurement API

Assembles the FastAPI app: lifespan (logging, schema bootstrap, HTTP client
shutdown), session + request-id middleware, rate limiting, the shared
error handlers and the resource routers.

Business Rules:
- Every response carries X-Request-ID and the standard security headers
- Every error body is {error, status_code, request_id, details?}
- Request validation failures are 400, not FastAPI's default 422
- Unhandled exceptions are logged with traceback and returned as a bare 500

Called by: uvicorn (app.main:app)
Depends on: config, logging_config, startup, http_client, rate_limit, routers/*
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from .config import APP_VERSION, settings
from .http_client import close_clients
from .logging_config import setup_logging
from .rate_limit import limiter
from .routers import (
    activity,
    emails,
    maintenance,
    orders,
    parts,
    quote_requests,
    suppliers,
    support,
    vehicles,
)
from .schemas.errors import ErrorResponse
from .startup import run_startup_migrations


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    run_startup_migrations()
    logger.info(f"Fleet parts API {APP_VERSION} started")
    yield
    await close_clients()
    logger.info("Fleet parts API stopped")


app = FastAPI(title="Fleet Parts Procurement", version=APP_VERSION, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.secret_key,
    https_only=settings.app_url.startswith("https"),
    same_site="lax",
)


# ── Middleware ────────────────────────────────────────────────────────


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["X-API-Version"] = "v1"
    return response


# ── Error handlers ────────────────────────────────────────────────────


def _error_response(request: Request, status_code: int, message: str, details=None) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", ""),
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    details = getattr(exc, "details", None)
    if details is None and not isinstance(exc.detail, str):
        details = exc.detail
    return _error_response(request, exc.status_code, message, details)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return _error_response(request, 400, "Validation error", details)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error(
        f"Unhandled error on {request.method} {request.url.path}: {exc!r}"
    )
    return _error_response(request, 500, "Internal server error")


# ── Routes ────────────────────────────────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "version": APP_VERSION}


for module in (
    suppliers,
    vehicles,
    maintenance,
    parts,
    quote_requests,
    orders,
    emails,
    support,
    activity,
):
    app.include_router(module.router)
