"""
dependencies.py — Shared FastAPI Dependencies

Reusable dependency functions for authentication, role checks and
organization-scoped lookups. All routers import from here instead of
defining their own auth logic.

Business Rules:
- get_user returns None if not logged in (non-throwing)
- require_user raises 401 if not logged in, 403 if deactivated
- AuthContext is built once per request and passed to every service call
- require_roles(...) raises 403 when the caller's role is not listed
- get_owned() treats rows of another organization exactly like missing rows (404)

Called by: all routers
Depends on: models, database, errors
"""

import logging
import math
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database import get_db
from .errors import AuthenticationRequired, AuthorizationDenied, NotFound
from .models import User
from .models.enums import Role

log = logging.getLogger("fleet.auth")


# ── Authentication ────────────────────────────────────────────────────


def get_user(request: Request, db: Session) -> User | None:
    """Return current user from session, or None if not logged in."""
    uid = request.session.get("user_id")
    if not uid:
        return None
    return db.get(User, uid)


def require_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Dependency: raises 401 if no authenticated user, 403 if deactivated."""
    user = get_user(request, db)
    if not user:
        raise AuthenticationRequired()
    if not getattr(user, "is_active", True):
        request.session.clear()
        raise AuthorizationDenied("Account deactivated — contact an administrator")
    return user


@dataclass(frozen=True)
class AuthContext:
    """Who is calling, on behalf of which organization."""

    user_id: int
    organization_id: int
    role: str
    email: str = ""
    name: str = ""

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


def get_auth_context(user: User = Depends(require_user)) -> AuthContext:
    if not user.organization_id:
        raise AuthorizationDenied("Your session is missing organization information")
    return AuthContext(
        user_id=user.id,
        organization_id=user.organization_id,
        role=(user.role or Role.USER.value).upper(),
        email=user.email or "",
        name=user.name or "",
    )


# ── Authorization ─────────────────────────────────────────────────────


def require_roles(*roles: Role):
    """Dependency factory: AuthContext for callers holding one of `roles`."""
    allowed = {r.value for r in roles}

    def _dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in allowed:
            log.info(f"User {ctx.user_id} ({ctx.role}) denied; needs one of {sorted(allowed)}")
            raise AuthorizationDenied()
        return ctx

    return _dependency


ALL_ROLES = (Role.ADMIN, Role.MANAGER, Role.TECHNICIAN, Role.USER)

require_reader = require_roles(*ALL_ROLES)
require_technician = require_roles(Role.ADMIN, Role.MANAGER, Role.TECHNICIAN)
require_manager = require_roles(Role.ADMIN, Role.MANAGER)
require_admin = require_roles(Role.ADMIN)


# ── Query Helpers ─────────────────────────────────────────────────────


def get_owned(db: Session, model, entity_id: int, ctx: AuthContext, label: str | None = None):
    """Fetch a tenant-owned row by primary key, or raise NotFound.

    A row owned by another organization is reported as missing so callers
    never learn it exists.
    """
    row = (
        db.query(model)
        .filter(model.id == entity_id, model.organization_id == ctx.organization_id)
        .first()
    )
    if row is None:
        raise NotFound(f"{label or model.__name__} not found")
    return row


def paginate(query, page: int, limit: int) -> tuple[list, dict]:
    """Apply page/limit to a query; return (rows, meta) in the list-endpoint shape."""
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = math.ceil(total / limit) if limit else 0
    meta = {
        "totalCount": total,
        "page": page,
        "limit": limit,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPreviousPage": page > 1,
    }
    return rows, meta
