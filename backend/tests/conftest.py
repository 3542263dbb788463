"""Pytest fixtures for lifecycle engine tests.

Provides reusable test fixtures for:
- An in-memory SQLite database with all lifecycle tables
- A ``unit_records`` table targeted by retention strategies in tests
- In-memory fakes for change capture, approvals, audit, metrics and storage

Usage:
    def test_policy_runs(session_factory, change_data_capture):
        service = RetentionEnforcementService(session_factory, registry,
                                              change_data_capture=change_data_capture)
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

# Adjust imports based on your project structure
backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))
sys.path.insert(0, str(Path(__file__).parent))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers every table on Base.metadata)
from database import create_session_factory
from models.base import Base
from fixtures.lifecycle import (
    FakeApprovalStore,
    FakeAuditService,
    FakeChangeDataCapture,
    FakeClock,
    FakeMetrics,
    FakeScheduler,
    FakeStorage,
)
from fixtures.tables import target_metadata


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory SQLite database shared by every session of one test."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    target_metadata.create_all(bind=test_engine)

    try:
        yield test_engine
    finally:
        target_metadata.drop_all(bind=test_engine)
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 6, 15, 3, 0, tzinfo=timezone.utc))


@pytest.fixture
def change_data_capture():
    return FakeChangeDataCapture()


@pytest.fixture
def approval_store():
    return FakeApprovalStore()


@pytest.fixture
def audit_service():
    return FakeAuditService()


@pytest.fixture
def metrics():
    return FakeMetrics()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def storage():
    return FakeStorage()
