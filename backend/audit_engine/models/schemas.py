"""Request / response models for the engine's exposed operations.

Includes: Requester, ScheduledAuditCreate, ScheduledAuditUpdate, ScheduledAuditDetail,
          ObservationInput, DefinitionFilters, RunFilters, Page,
          ProgressResult, TriggerReport, SweepReport.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from audit_engine.models.audit_run import ChecklistResponse, Outcome
from audit_engine.models.scheduled_audit import AuditType, ChecklistItem, ReminderSettings


class Requester(BaseModel):
    """The authenticated caller, as resolved by the surrounding application."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: str = "USER"


# === Definitions ===


class ScheduledAuditCreate(BaseModel):
    """Request to create a scheduled audit.

    recurrence_type and scope_type stay plain strings so unknown values
    surface as InvalidRecurrenceType / InvalidScopeType.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    recurrence_type: str
    start_date: datetime
    end_date: datetime | None = None
    audit_type: AuditType = "full"
    scope_type: str
    scope_config: dict[str, Any] = Field(default_factory=dict)
    assigned_auditors: list[str] = Field(default_factory=list)
    auto_assign: bool = False
    reminder_settings: ReminderSettings = Field(default_factory=ReminderSettings)
    checklist_items: list[ChecklistItem] = Field(default_factory=list)
    notification_recipients: list[str] = Field(default_factory=list)


class ScheduledAuditUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    recurrence_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    audit_type: AuditType | None = None
    scope_type: str | None = None
    scope_config: dict[str, Any] | None = None
    assigned_auditors: list[str] | None = None
    auto_assign: bool | None = None
    reminder_settings: ReminderSettings | None = None
    checklist_items: list[ChecklistItem] | None = None
    notification_recipients: list[str] | None = None
    status: str | None = Field(default=None, pattern=r"^(active|paused|archived)$")


class DefinitionFilters(BaseModel):
    status: str | None = Field(default=None, pattern=r"^(active|paused|archived)$")
    recurrence_type: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)


# === Runs ===


class ObservationInput(BaseModel):
    """What an auditor submits for one asset."""

    model_config = ConfigDict(extra="forbid")

    outcome: Outcome
    condition: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=200)
    notes: str | None = Field(default=None, max_length=2000)
    checklist_responses: list[ChecklistResponse] = Field(default_factory=list)


class RunFilters(BaseModel):
    status: str | None = Field(
        default=None,
        pattern=r"^(pending|in_progress|completed|cancelled)$",
    )
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)


class ProgressResult(BaseModel):
    completion_percentage: float
    is_complete: bool


class Page(BaseModel):
    """One page of a listing."""

    items: list[Any]
    total: int
    page: int
    limit: int

    @computed_field
    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ScheduledAuditDetail(BaseModel):
    """A definition together with its most recent runs, newest first."""

    audit: Any  # ScheduledAudit
    recent_runs: list[Any]  # AuditRun


# === Batch reports ===


class TriggerFailure(BaseModel):
    audit_id: str
    error: str


class TriggerReport(BaseModel):
    """Outcome of triggering every due definition."""

    triggered: list[str] = Field(default_factory=list)  # run ids
    failures: list[TriggerFailure] = Field(default_factory=list)


class SweepFailure(BaseModel):
    audit_id: str
    audit_name: str = ""
    error: str


class SweepReport(BaseModel):
    """Outcome of one daily reminder sweep."""

    sent: int = 0  # definitions with at least one channel delivered this sweep
    skipped: int = 0  # due, but every channel already reminded for this due date
    failures: list[SweepFailure] = Field(default_factory=list)
