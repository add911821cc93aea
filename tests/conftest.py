"""
conftest.py — Shared Test Fixtures for the Fleet Parts API

Provides an in-memory SQLite database, FastAPI TestClient with auth
overrides, and factory fixtures for core models (Organization, User,
Supplier, Vehicle, QuoteRequest).

Business Rules:
- All tests run against isolated in-memory DB (no prod data risk)
- Auth is overridden so tests don't need a signed session cookie
- Each test function gets a fresh DB (tables created and dropped per test)
- Webhook URLs point at a dummy host; tests patch the calls they exercise

Called by: all test files via pytest autodiscovery
Depends on: app.models (Base), app.database (get_db), app.dependencies
"""

import os
os.environ["TESTING"] = "1"  # Must be set before importing app modules
os.environ["RATE_LIMIT_ENABLED"] = "false"
for _name in (
    "PARTS_SEARCH", "QUOTE_REQUEST", "EMAIL_PARSER", "FOLLOW_UP", "ORDER_CONFIRMATION",
    "CUSTOMER_SUPPORT", "PRICE_UPDATE", "POST_ORDER", "ORDER_FOLLOW_UP",
):
    os.environ.setdefault(f"{_name}_WEBHOOK_URL", f"http://workflow.test/webhook/{_name.lower()}")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.dependencies import AuthContext
from app.models import (
    Base, Organization, QuoteRequest, QuoteRequestItem, Supplier, User, Vehicle,
)

# ── In-memory SQLite engine ──────────────────────────────────────────

TEST_DB_URL = "sqlite://"  # in-memory, fresh per session

engine = create_engine(
    TEST_DB_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@event.listens_for(engine, "connect")
def _enable_fk(dbapi_conn, _):
    """SQLite ignores FKs by default — turn them on."""
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def ctx_for(user: User) -> AuthContext:
    """AuthContext for calling services directly, as get_auth_context builds it."""
    return AuthContext(
        user_id=user.id,
        organization_id=user.organization_id,
        role=user.role,
        email=user.email,
        name=user.name or "",
    )


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def db_session():
    """Create all tables, yield a session, then tear down."""
    Base.metadata.create_all(bind=engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def test_org(db_session: Session) -> Organization:
    org = Organization(name="Ridge Line Earthworks", billing_email="ap@ridgeline.test")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture()
def other_org(db_session: Session) -> Organization:
    """A second tenant, for isolation checks."""
    org = Organization(name="Valley Farms Co-op")
    db_session.add(org)
    db_session.commit()
    db_session.refresh(org)
    return org


@pytest.fixture()
def test_user(db_session: Session, test_org: Organization) -> User:
    """An ADMIN user in test_org."""
    user = User(
        email="fleet.admin@ridgeline.test",
        name="Fleet Admin",
        role="ADMIN",
        organization_id=test_org.id,
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def basic_user(db_session: Session, test_org: Organization) -> User:
    """A USER-role account (read and quote access only)."""
    user = User(
        email="operator@ridgeline.test",
        name="Site Operator",
        role="USER",
        organization_id=test_org.id,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture()
def ctx(test_user: User) -> AuthContext:
    return ctx_for(test_user)


@pytest.fixture()
def test_supplier(db_session: Session, test_org: Organization) -> Supplier:
    """Primary supplier with an email address."""
    s = Supplier(
        organization_id=test_org.id,
        supplier_id="SUP-001",
        name="Heavy Iron Parts",
        type="DISTRIBUTOR",
        email="quotes@heavyiron.test",
        contact_person="Dana Reyes",
    )
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture()
def second_supplier(db_session: Session, test_org: Organization) -> Supplier:
    s = Supplier(
        organization_id=test_org.id,
        supplier_id="SUP-002",
        name="Prairie Equipment Supply",
        type="LOCAL_DEALER",
        email="parts@prairie.test",
    )
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture()
def supplier_no_email(db_session: Session, test_org: Organization) -> Supplier:
    s = Supplier(
        organization_id=test_org.id,
        supplier_id="SUP-003",
        name="Walk-in Counter Only",
        type="LOCAL_DEALER",
    )
    db_session.add(s)
    db_session.commit()
    db_session.refresh(s)
    return s


@pytest.fixture()
def test_vehicle(db_session: Session, test_org: Organization) -> Vehicle:
    v = Vehicle(
        organization_id=test_org.id,
        vehicle_id="EX-12",
        serial_number="CAT0320FKXX01234",
        make="Caterpillar",
        model="320",
        year=2019,
        type="EXCAVATOR",
    )
    db_session.add(v)
    db_session.commit()
    db_session.refresh(v)
    return v


@pytest.fixture()
def test_quote_request(
    db_session: Session, test_user: User, test_supplier: Supplier, test_vehicle: Vehicle
) -> QuoteRequest:
    """A DRAFT quote request with one template item (HYD-100 × 2)."""
    qr = QuoteRequest(
        organization_id=test_user.organization_id,
        quote_number="QR-01-2026-0001",
        title="Hydraulic pump rebuild",
        status="DRAFT",
        supplier_id=test_supplier.id,
        vehicle_id=test_vehicle.id,
        created_by_id=test_user.id,
    )
    qr.items.append(
        QuoteRequestItem(part_number="HYD-100", description="Hydraulic pump seal kit", quantity=2)
    )
    db_session.add(qr)
    db_session.commit()
    db_session.refresh(qr)
    return qr


def _make_client(db_session: Session, user: User) -> TestClient:
    from app.database import get_db
    from app.dependencies import require_user
    from app.main import app

    def _override_db():
        yield db_session

    def _override_user():
        return user

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[require_user] = _override_user
    return TestClient(app)


@pytest.fixture()
def client(db_session: Session, test_user: User) -> TestClient:
    """FastAPI TestClient with auth overridden to return test_user (ADMIN).

    Overrides get_db to use the test session and require_user to skip the
    session cookie entirely.
    """
    from app.main import app

    yield _make_client(db_session, test_user)
    app.dependency_overrides.clear()


@pytest.fixture()
def basic_client(db_session: Session, basic_user: User) -> TestClient:
    """TestClient acting as a USER-role account."""
    from app.main import app

    yield _make_client(db_session, basic_user)
    app.dependency_overrides.clear()


@pytest.fixture()
def unauthenticated_client(db_session: Session) -> TestClient:
    """TestClient with only the DB overridden; require_user runs for real."""
    from app.database import get_db
    from app.main import app

    def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db
    yield TestClient(app)
    app.dependency_overrides.clear()
