"""
startup.py — Database Startup Migrations (Idempotent)

Tables, columns, and indexes are defined in the ORM models and created via
Base.metadata.create_all(checkfirst=True). This file only adds what the ORM
can't express portably: PostgreSQL CHECK constraints on money and rating
columns.

Called by: main.py lifespan
Depends on: database.py (engine), models (Base)
"""

import logging
import os

from sqlalchemy import text as sqltext

from .database import engine

log = logging.getLogger("fleet.startup")

_CHECK_CONSTRAINTS = [
    ("quote_requests", "ck_quote_requests_total_nonneg", "total_amount >= 0"),
    ("quote_request_items", "ck_qri_quantity_pos", "quantity > 0"),
    ("suppliers", "ck_suppliers_rating_range", "rating IS NULL OR (rating >= 0 AND rating <= 5)"),
    ("vehicles", "ck_vehicles_health_range", "health_score >= 0 AND health_score <= 100"),
    ("order_items", "ck_order_items_quantity_pos", "quantity > 0"),
]


def run_startup_migrations() -> None:
    """Execute all idempotent startup operations. Safe to call on every app boot."""
    if os.environ.get("TESTING"):
        log.info("TESTING mode — skipping startup migrations")
        return

    from .models import Base
    Base.metadata.create_all(bind=engine, checkfirst=True)
    log.info("ORM schema sync complete (create_all checkfirst=True)")

    if engine.dialect.name == "postgresql":
        with engine.connect() as conn:
            _add_check_constraints(conn)

    log.info("Startup migrations complete")


def _exec(conn, stmt: str) -> None:
    """Execute a single DDL statement with rollback on failure."""
    try:
        conn.execute(sqltext(stmt))
        conn.commit()
    except Exception as e:
        conn.rollback()
        log.warning("DDL failed: %s", e)


def _add_check_constraints(conn) -> None:
    for table, name, expr in _CHECK_CONSTRAINTS:
        exists = conn.execute(
            sqltext("SELECT 1 FROM pg_constraint WHERE conname = :name"), {"name": name}
        ).first()
        if exists:
            continue
        _exec(conn, f"ALTER TABLE {table} ADD CONSTRAINT {name} CHECK ({expr})")
