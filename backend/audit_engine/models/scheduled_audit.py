"""Scheduled audit definition models.

Includes: ScheduledAudit (SQL table), ReminderSettings (Pydantic),
          ChecklistItem (Pydantic).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column, SQLModel
from sqlmodel import Field as SQLField

RecurrenceType = Literal["once", "daily", "weekly", "monthly", "quarterly", "yearly"]

ScopeType = Literal["all", "department", "location", "category", "custom_filter"]

AuditType = Literal["full", "partial", "spot_check", "condition", "location"]

DefinitionStatus = Literal["active", "paused", "archived"]

DEFINITION_STATUSES = ("active", "paused", "archived")


class ReminderSettings(BaseModel):
    """Advance-notice configuration for a definition."""

    enabled: bool = True
    days_before: int = Field(default=1, ge=0, le=365)
    send_email: bool = True
    send_notification: bool = True


class ChecklistItem(BaseModel):
    """One item of the checklist template auditors answer per asset."""

    item: str = Field(min_length=1, max_length=500)
    is_required: bool = False
    order: int = 0


class ScheduledAudit(SQLModel, table=True):
    """A recurring audit campaign's configuration."""

    __tablename__ = "scheduled_audit"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    description: str = ""

    # Schedule
    recurrence_type: str  # RecurrenceType
    start_date: datetime
    end_date: datetime | None = None
    next_run_date: datetime | None = SQLField(default=None, index=True)
    last_run_date: datetime | None = None

    # Audit configuration
    audit_type: str = "full"  # AuditType
    scope_type: str  # ScopeType
    scope_config: dict = SQLField(default_factory=dict, sa_column=Column(JSON))

    # Assignments
    assigned_auditors: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    auto_assign: bool = False
    notification_recipients: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))

    reminder_settings: dict = SQLField(
        default_factory=lambda: ReminderSettings().model_dump(),
        sa_column=Column(JSON),
    )
    checklist_items: list[dict] = SQLField(default_factory=list, sa_column=Column(JSON))

    status: str = SQLField(default="active", index=True)  # DefinitionStatus

    # Completion tracking
    total_runs: int = 0
    completed_runs: int = 0

    created_by: str = SQLField(index=True)
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def reminders(self) -> ReminderSettings:
        return ReminderSettings.model_validate(self.reminder_settings or {})

    def is_visible_to(self, user_id: str) -> bool:
        """Creator or assigned auditor."""
        return self.created_by == user_id or user_id in (self.assigned_auditors or [])
