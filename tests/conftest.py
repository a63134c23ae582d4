"""
Shared fixtures.

Every test gets its own in-memory SQLite database. No network calls:
email goes to LoggingEmailSender and the LLM is a fake object.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from family_budget.audit import AuditLogger
from family_budget.categories import DEFAULT_CATEGORIES
from family_budget.config import DatabaseSettings
from family_budget.models import Family, FamilyMember, MonthlyOverview, RequestIdentity
from family_budget.services.storage import (
    SQLAlchemyAuditStorage,
    SQLAlchemyBudgetStorage,
    create_engine_from_settings,
    create_session_factory,
)


def run(coro):
    """Run a coroutine to completion in a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def session_factory():
    engine = create_engine_from_settings(DatabaseSettings(url="sqlite://"))
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def storage(session_factory):
    return SQLAlchemyBudgetStorage(session_factory)


@pytest.fixture
def audit_storage(session_factory):
    return SQLAlchemyAuditStorage(session_factory)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def make_family(storage):
    """Create a family with a verified owner and the default categories."""

    def factory(name: str = "Alex", email: str = None) -> RequestIdentity:
        family = Family(name=f"{name}'s Family")
        owner = FamilyMember(
            family_id=family.id,
            email=email or f"{name.lower()}@example.com",
            name=name,
            is_verified=True,
            verified_at=datetime.utcnow(),
        )
        run(storage.create_family_with_owner(family, owner, DEFAULT_CATEGORIES))
        return RequestIdentity(user_id=owner.id, family_id=family.id, user_name=name)

    return factory


@pytest.fixture
def identity(make_family) -> RequestIdentity:
    return make_family()


@pytest.fixture
def other_identity(make_family) -> RequestIdentity:
    """A second, unrelated family."""
    return make_family("Robin")


@pytest.fixture
def make_member(storage):
    """Add a member to an existing family."""

    def factory(identity: RequestIdentity, name: str, verified: bool = True) -> FamilyMember:
        member = FamilyMember(
            family_id=identity.family_id,
            email=f"{name.lower()}@example.com",
            name=name,
            is_verified=verified,
        )
        return run(storage.add_member(member))

    return factory


@pytest.fixture
def make_overview(storage):
    """
    Insert an active overview with an explicit creation time.

    Later calls get later timestamps so "newest" is deterministic.
    """
    base = datetime(2025, 1, 1)
    counter = {"n": 0}

    def factory(identity: RequestIdentity, name: str) -> MonthlyOverview:
        counter["n"] += 1
        overview = MonthlyOverview(
            family_id=identity.family_id,
            name=name,
            created_at=base + timedelta(days=counter["n"]),
        )
        return run(storage.create_overview(overview))

    return factory
