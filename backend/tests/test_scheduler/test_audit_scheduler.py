"""Tests for AuditScheduler — periodic due-run triggering and reminder sweep."""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from datetime import date

from conftest import ADMIN, definition_spec

from audit_engine.scheduler import AuditScheduler, build_scheduler


def test_scheduler_init(run_engine, reminders):
    """Scheduler should initialize with correct defaults."""
    scheduler = AuditScheduler(engine=run_engine, reminders=reminders)
    assert scheduler.check_interval_seconds == 3600
    assert scheduler.enabled is True
    assert scheduler.is_running is False
    assert scheduler.last_sweep_date is None
    print("  PASS: Scheduler init")


def test_scheduler_disabled(run_engine, reminders):
    """Disabled scheduler should not start."""
    scheduler = AuditScheduler(engine=run_engine, reminders=reminders, enabled=False)
    asyncio.run(scheduler.start())
    assert scheduler.is_running is False
    print("  PASS: Scheduler disabled")


def test_scheduler_start_stop(run_engine, reminders, clock):
    """Scheduler should start and stop cleanly."""
    scheduler = AuditScheduler(
        engine=run_engine, reminders=reminders, check_interval_minutes=0.001, clock=clock,
    )

    async def _test():
        await scheduler.start()
        assert scheduler.is_running is True
        await scheduler.start()  # second start is a no-op
        await asyncio.sleep(0.05)
        scheduler.stop()
        assert scheduler.is_running is False

    asyncio.run(_test())
    assert scheduler.last_sweep_date == date(2024, 1, 15)
    print("  PASS: Scheduler start/stop")


def test_tick_triggers_due_and_sweeps_once_a_day(registry, run_engine, reminders, notifier, clock):
    """tick() triggers due definitions and sweeps reminders once per date."""
    audit = asyncio.run(registry.create(definition_spec(recurrence_type="daily"), ADMIN))
    scheduler = AuditScheduler(engine=run_engine, reminders=reminders, clock=clock)

    asyncio.run(scheduler.tick())
    assert scheduler.last_trigger_report.triggered == []
    assert scheduler.last_sweep_report.sent == 1

    # Same day: no second sweep
    asyncio.run(scheduler.tick())
    assert len(notifier.in_app_of_type("audit_reminder")) == 1

    clock.advance(days=1)
    asyncio.run(scheduler.tick())
    assert len(scheduler.last_trigger_report.triggered) == 1
    assert scheduler.last_sweep_date == date(2024, 1, 16)
    runs = asyncio.run(run_engine.list_runs(audit.id))
    assert runs.total == 1
    print("  PASS: tick triggers and sweeps")


def test_get_status(run_engine, reminders):
    """get_status() should return a health-check dict."""
    scheduler = AuditScheduler(engine=run_engine, reminders=reminders, check_interval_minutes=15)
    status = scheduler.get_status()
    assert status == {
        "enabled": True,
        "running": False,
        "check_interval_minutes": 15,
        "last_sweep_date": None,
    }
    print("  PASS: get_status()")


def test_build_scheduler_uses_settings(assets, notifier, users, trail):
    """build_scheduler() wires the engine and sweep from settings."""
    from audit_engine.config import settings

    scheduler = build_scheduler(assets, notifier, users, audit_trail=trail)
    assert scheduler.enabled is settings.scheduler_enabled
    assert scheduler.check_interval_seconds == settings.scheduler_check_interval_minutes * 60
    assert scheduler.engine.asset_directory is assets
    assert scheduler.engine.audit_trail is trail
    assert scheduler.reminders.user_directory is users
