"""Reminder sweep — advance notice for upcoming audit runs.

Once a day, every active definition with reminders enabled is checked:
when its next run is exactly `days_before` calendar days away, one email
batch and/or one in-app batch goes to its auditors and recipients.

Each channel of a (definition, due date) reminder is claimed by inserting a
ReminderMarker row before it is sent. The primary key makes each claim
succeed at most once, so repeated or concurrent sweeps on the same day send
nothing new. A failed channel releases only its own claim, so a later sweep
retries that channel without repeating the ones that went out.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from audit_engine.clock import Clock, as_utc, utc_now
from audit_engine.config import settings
from audit_engine.db.database import engine as default_engine
from audit_engine.models.audit_run import ReminderMarker
from audit_engine.models.scheduled_audit import ScheduledAudit
from audit_engine.models.schemas import SweepFailure, SweepReport
from audit_engine.ports import InAppMessage, Notifier, UserDirectory

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Dispatches audit reminders exactly once per definition per due date.

    Usage:
        reminders = ReminderScheduler(notifier=notifier, user_directory=users)
        report = await reminders.run_daily_sweep()
    """

    def __init__(
        self,
        notifier: Notifier,
        user_directory: UserDirectory,
        db_engine: Engine | None = None,
        clock: Clock = utc_now,
        email_template: str | None = None,
    ) -> None:
        self.notifier = notifier
        self.user_directory = user_directory
        self._engine = db_engine or default_engine
        self._clock = clock
        self.email_template = email_template or settings.reminder_email_template

    async def run_daily_sweep(self, today: date | None = None) -> SweepReport:
        """Send reminders for definitions due in exactly `days_before` days.

        Never raises for a single definition's failure; those are reported
        in SweepReport.failures.
        """
        today = today or self._clock().date()
        with Session(self._engine) as session:
            candidates = session.exec(
                select(ScheduledAudit)
                .where(ScheduledAudit.status == "active")
                .where(ScheduledAudit.next_run_date.isnot(None))
            ).all()
            for audit in candidates:
                session.expunge(audit)

        report = SweepReport()
        for audit in candidates:
            prefs = audit.reminders
            if not prefs.enabled:
                continue
            due_date = as_utc(audit.next_run_date).date()
            if (due_date - today).days != prefs.days_before:
                continue

            channels = []
            if prefs.send_email:
                channels.append("email")
            if prefs.send_notification:
                channels.append("in_app")
            if not channels:
                continue

            claimed = [c for c in channels if self._claim(audit.id, due_date, c)]
            if not claimed:
                report.skipped += 1
                continue

            errors = []
            for channel in claimed:
                try:
                    await self._deliver(channel, audit, due_date)
                except Exception as e:
                    logger.error("Failed to send %s reminder for audit %s: %s", channel, audit.id, e)
                    self._release(audit.id, due_date, channel)
                    errors.append(f"{channel}: {e}")

            if errors:
                report.failures.append(
                    SweepFailure(audit_id=audit.id, audit_name=audit.name, error="; ".join(errors))
                )
            if len(errors) < len(claimed):
                report.sent += 1

        logger.info(
            "Reminder sweep for %s: %d sent, %d already sent, %d failed",
            today.isoformat(), report.sent, report.skipped, len(report.failures),
        )
        return report

    async def _deliver(self, channel: str, audit: ScheduledAudit, due_date: date) -> None:
        user_ids = list(dict.fromkeys(
            [*(audit.assigned_auditors or []), *(audit.notification_recipients or [])]
        ))
        if not user_ids:
            return

        if channel == "email":
            users = await self.user_directory.resolve(user_ids)
            emails = list(dict.fromkeys(u.email for u in users if u.email))
            if emails:
                await self.notifier.send_email(
                    emails,
                    self.email_template,
                    {
                        "audit_id": audit.id,
                        "audit_name": audit.name,
                        "audit_date": due_date.isoformat(),
                        "audit_type": audit.audit_type,
                        "assets_count": "TBD",  # Snapshot is taken at trigger time
                    },
                )
        else:
            await self.notifier.send_in_app(
                user_ids,
                InAppMessage(
                    type="audit_reminder",
                    title=f"Upcoming Audit: {audit.name}",
                    message=f"Audit scheduled for {due_date.isoformat()}",
                    related_entity="scheduled_audit",
                    related_id=audit.id,
                    priority="medium",
                ),
            )

        logger.info("%s reminder sent for audit '%s' due %s", channel, audit.name, due_date)

    def _claim(self, audit_id: str, due_date: date, channel: str) -> bool:
        """Insert the marker; False if this channel was already claimed for the due date."""
        with Session(self._engine) as session:
            session.add(
                ReminderMarker(
                    scheduled_audit_id=audit_id,
                    due_date=due_date,
                    channel=channel,
                    sent_at=self._clock(),
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    def _release(self, audit_id: str, due_date: date, channel: str) -> None:
        with Session(self._engine) as session:
            marker = session.get(ReminderMarker, (audit_id, due_date, channel))
            if marker is not None:
                session.delete(marker)
                session.commit()
