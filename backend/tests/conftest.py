"""Shared test fixtures for audit engine tests."""

import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure backend is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from audit_engine.adapters.memory import (
    InMemoryAssetDirectory,
    InMemoryAuditTrail,
    RecordingNotifier,
    StaticUserDirectory,
)
from audit_engine.clock import FixedClock
from audit_engine.db.database import create_db_and_tables, make_engine
from audit_engine.models.schemas import Requester
from audit_engine.ports import UserRef
from audit_engine.registry import ScheduledAuditRegistry
from audit_engine.reminders.sweep import ReminderScheduler
from audit_engine.runs.engine import AuditRunEngine
from sqlalchemy.pool import StaticPool

ADMIN = Requester(id="admin-1", role="ADMIN")
MANAGER = Requester(id="mgr-1", role="INVENTORY_MANAGER")
AUDITOR = Requester(id="aud-1", role="AUDITOR")
OTHER_AUDITOR = Requester(id="aud-2", role="AUDITOR")
OUTSIDER = Requester(id="user-9", role="USER")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def definition_spec(**overrides) -> dict:
    """Create-request payload for a monthly IT department audit."""
    spec = {
        "name": "IT monthly count",
        "recurrence_type": "monthly",
        "start_date": utc(2024, 1, 15),
        "scope_type": "department",
        "scope_config": {"department": "IT"},
        "assigned_auditors": [AUDITOR.id, OTHER_AUDITOR.id],
        "notification_recipients": ["mgr-1"],
    }
    spec.update(overrides)
    return spec


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test."""
    engine = make_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(utc(2024, 1, 15, 9, 0))


@pytest.fixture
def assets():
    """Three live IT assets, one disposed IT asset, two Finance assets."""
    return InMemoryAssetDirectory([
        {"id": "it-1", "department": "IT", "location": "HQ", "category": "Laptop", "status": "Active"},
        {"id": "it-2", "department": "IT", "location": "HQ", "category": "Monitor", "status": "Active"},
        {"id": "it-3", "department": "IT", "location": "Lab", "category": "Laptop", "status": "In Repair"},
        {"id": "it-old", "department": "IT", "location": "HQ", "category": "Laptop", "status": "Disposed"},
        {"id": "fin-1", "department": "Finance", "location": "HQ", "category": "Laptop", "status": "Active"},
        {"id": "fin-2", "department": "Finance", "location": "Branch", "category": "Printer", "status": "Active"},
    ])


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def trail():
    return InMemoryAuditTrail()


@pytest.fixture
def users():
    return StaticUserDirectory([
        UserRef(id=AUDITOR.id, name="Ana Auditor", email="ana@example.com"),
        UserRef(id=OTHER_AUDITOR.id, name="Ben Auditor", email="ben@example.com"),
        UserRef(id="mgr-1", name="Max Manager", email="max@example.com"),
        UserRef(id="no-mail", name="No Mail"),
    ])


@pytest.fixture
def registry(db_engine, trail, clock):
    return ScheduledAuditRegistry(audit_trail=trail, db_engine=db_engine, clock=clock)


@pytest.fixture
def run_engine(db_engine, assets, notifier, trail, clock):
    return AuditRunEngine(
        asset_directory=assets,
        notifier=notifier,
        audit_trail=trail,
        db_engine=db_engine,
        clock=clock,
    )


@pytest.fixture
def reminders(db_engine, notifier, users, clock):
    return ReminderScheduler(
        notifier=notifier,
        user_directory=users,
        db_engine=db_engine,
        clock=clock,
    )
