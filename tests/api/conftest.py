"""Pytest fixtures for API tests.

Provides a TestClient wired to the in-memory test database, the fake
payment gateway and pass-through address resolution, plus header helpers
for the upstream identity headers.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from orderflow.api.deps import (
    get_address_resolver,
    get_calendar_sync,
    get_payment_gateway,
)
from orderflow.api.main import app
from orderflow.db.connection import get_db
from orderflow.db.models import Organization, OrganizationMember, OrgRole, OrgType


@pytest.fixture
def client(
    db_session: Session,
    app_config,
    fake_gateway,
    address_resolver,
    calendar_sync,
) -> Generator[TestClient, None, None]:
    """Create a TestClient with overridden dependencies.

    The lifespan is not entered, so config is placed on ``app.state``
    directly and no tables are created in the default database.

    Yields:
        TestClient configured for testing.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.state.config = app_config
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_address_resolver] = lambda: address_resolver
    app.dependency_overrides[get_calendar_sync] = lambda: calendar_sync
    yield TestClient(app)
    app.dependency_overrides.clear()
    del app.state.config


def headers_for(user, org=None) -> dict[str, str]:
    headers = {"X-User-Id": user.id}
    if org is not None:
        headers["X-Org-Id"] = org.id
    return headers


@pytest.fixture
def owner_headers(seed) -> dict[str, str]:
    """Company owner acting in the company org."""
    return headers_for(seed.owner, seed.company)


@pytest.fixture
def agent_headers(db_session: Session, seed) -> dict[str, str]:
    """Agent acting in their own personal org."""
    own_org = Organization(name="Ava's Listings", type=OrgType.personal.value)
    db_session.add(own_org)
    db_session.flush()
    db_session.add(
        OrganizationMember(
            org_id=own_org.id, user_id=seed.agent.id, role=OrgRole.owner.value
        )
    )
    db_session.commit()
    return headers_for(seed.agent, own_org)
