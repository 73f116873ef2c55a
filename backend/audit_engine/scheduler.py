"""Audit Scheduler — periodic due-run triggering and daily reminder sweep.

Follows the Backup/Digest scheduler pattern: an asyncio background task
that wakes every `check_interval_minutes`, triggers every definition whose
next run is due, and runs the reminder sweep once per calendar day.

Usage:
    scheduler = AuditScheduler(engine=run_engine, reminders=reminder_scheduler)
    await scheduler.start()
    # ... app runs ...
    scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date

from audit_engine.clock import Clock, utc_now
from audit_engine.config import settings
from audit_engine.models.schemas import SweepReport, TriggerReport
from audit_engine.ports import AssetDirectory, AuditTrail, Notifier, UserDirectory
from audit_engine.reminders.sweep import ReminderScheduler
from audit_engine.runs.engine import AuditRunEngine

logger = logging.getLogger(__name__)


class AuditScheduler:
    """Drives AuditRunEngine.trigger_due_runs and ReminderScheduler.run_daily_sweep."""

    def __init__(
        self,
        engine: AuditRunEngine,
        reminders: ReminderScheduler,
        check_interval_minutes: float = 60.0,
        enabled: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self.engine = engine
        self.reminders = reminders
        self.check_interval_seconds = check_interval_minutes * 60
        self.enabled = enabled
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._running = False
        self.last_sweep_date: date | None = None
        self.last_trigger_report: TriggerReport | None = None
        self.last_sweep_report: SweepReport | None = None

    async def start(self) -> None:
        """Start the audit scheduler as a background task."""
        if not self.enabled:
            logger.info("Audit scheduler disabled")
            return

        if self._running:
            logger.warning("Audit scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Audit scheduler started (check interval: %.1f min)",
            self.check_interval_seconds / 60,
        )

    def stop(self) -> None:
        """Stop the audit scheduler."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Audit scheduler stopped")

    async def _loop(self) -> None:
        """Main scheduling loop: tick immediately, then every interval."""
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self.check_interval_seconds)
                if not self._running:
                    break
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Audit scheduler error: %s", e, exc_info=True)
                await asyncio.sleep(60)

    async def tick(self) -> None:
        """One pass: trigger due runs, then sweep reminders if the day changed."""
        now = self._clock()
        self.last_trigger_report = await self.engine.trigger_due_runs(now)

        today = now.date()
        if self.last_sweep_date != today:
            self.last_sweep_report = await self.reminders.run_daily_sweep(today)
            self.last_sweep_date = today

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    def get_status(self) -> dict:
        """Get scheduler status for health checks."""
        return {
            "enabled": self.enabled,
            "running": self.is_running,
            "check_interval_minutes": self.check_interval_seconds / 60,
            "last_sweep_date": self.last_sweep_date.isoformat() if self.last_sweep_date else None,
        }


def build_scheduler(
    asset_directory: AssetDirectory,
    notifier: Notifier,
    user_directory: UserDirectory,
    audit_trail: AuditTrail | None = None,
) -> AuditScheduler:
    """Wire engine, reminder sweep and scheduler from application settings."""
    run_engine = AuditRunEngine(
        asset_directory=asset_directory,
        notifier=notifier,
        audit_trail=audit_trail,
    )
    reminders = ReminderScheduler(notifier=notifier, user_directory=user_directory)
    return AuditScheduler(
        engine=run_engine,
        reminders=reminders,
        check_interval_minutes=settings.scheduler_check_interval_minutes,
        enabled=settings.scheduler_enabled,
    )
