"""Audit run models.

Includes: AuditRun (SQL table), ReminderMarker (SQL table),
          Observation (Pydantic), ChecklistResponse (Pydantic).

AuditRun rows are append-only history: edits or deletion of the owning
ScheduledAudit never touch them.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlmodel import JSON, Column, SQLModel, select
from sqlmodel import Field as SQLField

RunStatus = Literal["pending", "in_progress", "completed", "cancelled"]

Outcome = Literal["found", "not_found", "damaged", "missing"]

OUTCOME_COUNTERS: dict[str, str] = {
    "found": "assets_found",
    "not_found": "assets_not_found",
    "damaged": "assets_damaged",
    "missing": "assets_missing",
}


class ChecklistResponse(BaseModel):
    item: str
    response: Any = None
    completed: bool = False


class Observation(BaseModel):
    """One auditor-submitted outcome for a single asset within a run."""

    asset_id: str
    audited_at: datetime
    audited_by: str
    outcome: Outcome
    condition: str | None = None
    location: str | None = None
    notes: str | None = None
    checklist_responses: list[ChecklistResponse] = Field(default_factory=list)


class AuditRun(SQLModel, table=True):
    """One concrete execution of a ScheduledAudit over a frozen asset snapshot."""

    __tablename__ = "scheduled_audit_run"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True)
    scheduled_audit_id: str = SQLField(index=True)  # ScheduledAudit.id, no cascade
    run_date: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    status: str = SQLField(default="pending", index=True)  # RunStatus

    # Scope snapshot, fixed at trigger time
    assets_to_audit: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))
    total_assets: int = 0
    assigned_auditors: list[str] = SQLField(default_factory=list, sa_column=Column(JSON))

    # asset_id -> Observation.model_dump(mode="json")
    observations: dict[str, dict] = SQLField(default_factory=dict, sa_column=Column(JSON))

    # Derived from observations
    assets_found: int = 0
    assets_not_found: int = 0
    assets_damaged: int = 0
    assets_missing: int = 0
    completion_percentage: float = 0.0

    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))

    def get_observation(self, asset_id: str) -> Observation | None:
        raw = (self.observations or {}).get(asset_id)
        return Observation.model_validate(raw) if raw is not None else None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "cancelled")


def runs_of(audit_id: str, status: str | None = None):
    """Select one definition's runs, newest first."""
    stmt = select(AuditRun).where(AuditRun.scheduled_audit_id == audit_id)
    if status:
        stmt = stmt.where(AuditRun.status == status)
    return stmt.order_by(AuditRun.run_date.desc())


class ReminderMarker(SQLModel, table=True):
    """Records that one channel of the reminder for a due date went out.

    The composite primary key lets exactly one sweep claim each
    (definition, due date, channel).
    """

    __tablename__ = "scheduled_audit_reminder"

    scheduled_audit_id: str = SQLField(primary_key=True)
    due_date: date = SQLField(primary_key=True)
    channel: str = SQLField(primary_key=True)  # "email" | "in_app"
    sent_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))
