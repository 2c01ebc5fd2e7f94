"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- Database fixtures (in-memory and file-based SQLite)
- Seeded tenants, users, customers and packages
- A scriptable fake payment gateway
- Order intent and config factories
"""

import dataclasses
import hashlib
import hmac
import os
import tempfile
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orderflow.config import AppConfig, CalendarConfig, GeocodingConfig, StripeConfig
from orderflow.db.connection import configure_sqlite_engine, sqlite_connect_args
from orderflow.db.models import (
    Base,
    Customer,
    Organization,
    OrganizationMember,
    OrgRole,
    OrgType,
    PackageAddOn,
    PaymentMode,
    ServicePackage,
    User,
)
from orderflow.services.address_resolver import AddressResolver
from orderflow.services.authorization import AuthenticatedUser, OrgContext
from orderflow.services.calendar_sync import CalendarSyncService
from orderflow.services.order_payload import OrderIntent
from orderflow.services.payment_gateway import (
    PENDING_ORDER_METADATA_KEY,
    CheckoutSession,
)

# Slot every scheduling test starts from
SLOT = datetime(2030, 1, 15, 10, 0)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests that use a file database across threads"
    )


# ============================================================================
# Database Fixtures
# ============================================================================


def make_engine(url: str = "sqlite:///:memory:", wal: bool = False) -> Engine:
    """Create a SQLite engine with the service's connection hooks installed."""
    kwargs = {"connect_args": sqlite_connect_args(url)}
    if url.endswith(":memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    configure_sqlite_engine(engine, wal=wal)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """In-memory SQLite session with all tables created."""
    engine = make_engine()
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def file_based_db() -> Generator[str, None, None]:
    """Create a file-based SQLite database for integration tests.

    Unlike in-memory databases, this persists across connections
    and can be shared by several threads with their own sessions.
    """
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = make_engine(f"sqlite:///{path}", wal=True)
    engine.dispose()

    yield path

    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


# ============================================================================
# Seed Data
# ============================================================================


@dataclass
class SeedData:
    """Tenants and people shared by the service and API tests.

    - ``company``: NO_PAYMENT company with an owner and a technician
    - ``provider``: UPFRONT_PAYMENT company with a package and an add-on
    - ``personal``: personal org owned by ``solo``
    - ``agent``: customer of both companies, member of neither
    """

    company: Organization
    provider: Organization
    personal: Organization
    owner: User
    technician: User
    solo: User
    agent: User
    outsider: User
    agent_at_company: Customer
    agent_at_provider: Customer
    company_customer: Customer
    package: ServicePackage
    add_on: PackageAddOn
    foreign_package: ServicePackage


def seed_database(db: Session) -> SeedData:
    """Insert the standard seed rows and commit."""
    company = Organization(name="Bright Homes Media", type=OrgType.company.value)
    provider = Organization(
        name="Prime Shots",
        type=OrgType.company.value,
        payment_mode=PaymentMode.upfront_payment.value,
    )
    personal = Organization(name="Solo Studio", type=OrgType.personal.value)
    db.add_all([company, provider, personal])

    owner = User(email="owner@brighthomes.test", name="Olivia Owner")
    technician = User(
        email="tech@brighthomes.test", name="Theo Tech", calendar_id="cal_theo"
    )
    solo = User(email="solo@solostudio.test", name="Sam Solo", calendar_id="cal_sam")
    agent = User(email="agent@realty.test", name="Ava Agent")
    outsider = User(email="outsider@example.test", name="Oscar Outsider")
    db.add_all([owner, technician, solo, agent, outsider])
    db.flush()

    db.add_all([
        OrganizationMember(org_id=company.id, user_id=owner.id, role=OrgRole.owner.value),
        OrganizationMember(
            org_id=company.id, user_id=technician.id, role=OrgRole.technician.value
        ),
        OrganizationMember(org_id=provider.id, user_id=owner.id, role=OrgRole.owner.value),
        OrganizationMember(org_id=personal.id, user_id=solo.id, role=OrgRole.owner.value),
    ])

    agent_at_company = Customer(
        org_id=company.id, user_id=agent.id, name="Ava Agent", email="agent@realty.test"
    )
    agent_at_provider = Customer(
        org_id=provider.id, user_id=agent.id, name="Ava Agent", email="agent@realty.test"
    )
    company_customer = Customer(
        org_id=company.id, name="Carla Client", email="carla@client.test"
    )
    db.add_all([agent_at_company, agent_at_provider, company_customer])

    package = ServicePackage(org_id=provider.id, name="Essentials", price_cents=15000)
    add_on = PackageAddOn(org_id=provider.id, name="Drone", price_cents=5000)
    foreign_package = ServicePackage(
        org_id=company.id, name="Elsewhere", price_cents=9900
    )
    db.add_all([package, add_on, foreign_package])
    db.commit()

    return SeedData(
        company=company,
        provider=provider,
        personal=personal,
        owner=owner,
        technician=technician,
        solo=solo,
        agent=agent,
        outsider=outsider,
        agent_at_company=agent_at_company,
        agent_at_provider=agent_at_provider,
        company_customer=company_customer,
        package=package,
        add_on=add_on,
        foreign_package=foreign_package,
    )


@pytest.fixture
def seed(db_session: Session) -> SeedData:
    """Standard seed rows in the in-memory database."""
    return seed_database(db_session)


@pytest.fixture
def seed_factory() -> Callable[[Session], SeedData]:
    """Seeds an arbitrary session, for tests that manage their own engine."""
    return seed_database


@pytest.fixture
def engine_factory() -> Callable[..., Engine]:
    """Builds engines with the service's SQLite hooks installed."""
    return make_engine


def as_user(user: User) -> AuthenticatedUser:
    return AuthenticatedUser(id=user.id, email=user.email, name=user.name)


@pytest.fixture
def company_ctx(seed: SeedData) -> OrgContext:
    """The company owner's context."""
    return OrgContext(
        org_id=seed.company.id,
        org_type=OrgType.company.value,
        effective_role=OrgRole.owner.value,
    )


@pytest.fixture
def owner(seed: SeedData) -> AuthenticatedUser:
    return as_user(seed.owner)


@pytest.fixture
def agent(seed: SeedData) -> AuthenticatedUser:
    return as_user(seed.agent)


# ============================================================================
# Order Intents and Config
# ============================================================================


@pytest.fixture
def make_intent() -> Callable[..., OrderIntent]:
    """Factory for order intents with sensible defaults."""

    def _make(**overrides) -> OrderIntent:
        data = {
            "address_line1": "12 Harbour Street",
            "city": "Sydney",
            "region": "NSW",
            "postal_code": "2000",
            "country_code": "AU",
            "scheduled_time": SLOT,
            "media_types": ["photo"],
        }
        data.update(overrides)
        return OrderIntent(**data)

    return _make


@pytest.fixture
def app_config() -> AppConfig:
    """Config with payments and webhooks enabled, geocoding and calendar off."""
    return AppConfig(
        stripe=StripeConfig(secret_key="sk_test_123", webhook_secret="whsec_test"),
        geocoding=GeocodingConfig(mapbox_token=""),
        frontend_url="https://app.orderflow.test",
        internal_job_token="i" * 40,
    )


@pytest.fixture
def address_resolver() -> AddressResolver:
    """Resolver with geocoding disabled; addresses pass through unchanged."""
    return AddressResolver(GeocodingConfig(mapbox_token=""))


@pytest.fixture
def calendar_sync() -> CalendarSyncService:
    """Calendar sync with no provider token configured."""
    return CalendarSyncService(CalendarConfig(access_token=""))


# ============================================================================
# Payment Gateway
# ============================================================================


class FakeGateway:
    """In-memory PaymentGateway that records calls.

    Sessions start open and unpaid. Tests move them with ``mark_paid`` and
    ``mark_expired``, or make calls fail through ``create_error`` and
    ``retrieve_error``.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, CheckoutSession] = {}
        self.create_calls: list[dict] = []
        self.retrieve_calls: list[str] = []
        self.create_error: Exception | None = None
        self.retrieve_error: Exception | None = None

    def create_checkout_session(
        self,
        pending_order_id: str,
        amount: int,
        currency: str,
        customer_email: str | None,
        description: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
    ) -> CheckoutSession:
        self.create_calls.append({
            "pending_order_id": pending_order_id,
            "amount": amount,
            "currency": currency,
            "customer_email": customer_email,
            "description": description,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        })
        if self.create_error is not None:
            raise self.create_error

        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.stripe.test/{session_id}",
            status="open",
            payment_status="unpaid",
            amount_total=amount,
            currency=currency,
            metadata={**(metadata or {}), PENDING_ORDER_METADATA_KEY: pending_order_id},
        )
        self.sessions[session_id] = session
        return session

    def get_checkout_session(self, session_id: str) -> CheckoutSession:
        self.retrieve_calls.append(session_id)
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return self.sessions[session_id]

    def mark_paid(self, session_id: str, payment_intent: str = "pi_test_1") -> None:
        self.sessions[session_id] = dataclasses.replace(
            self.sessions[session_id],
            status="complete",
            payment_status="paid",
            payment_intent=payment_intent,
        )

    def mark_expired(self, session_id: str) -> None:
        self.sessions[session_id] = dataclasses.replace(
            self.sessions[session_id], status="expired"
        )


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sign_stripe_payload() -> Callable[..., str]:
    """Builds a ``stripe-signature`` header the SDK's verifier accepts."""

    def _sign(payload: bytes, secret: str, timestamp: int | None = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.".encode() + payload
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
