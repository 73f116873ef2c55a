"""Ports to the surrounding asset-management application.

The engine never talks to asset storage, mail transport, notification
storage or the audit log directly; it awaits these interfaces. Concrete
adapters are wired in by the host application (in-memory versions live in
audit_engine.adapters.memory).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from audit_engine.engines.scope import AssetFilter


class AssetAuditUpdate(BaseModel):
    """Latest audit facts mirrored onto the external asset record."""

    last_audit_date: datetime
    last_audited_by: str
    condition: str | None = None


class InAppMessage(BaseModel):
    """An in-app notification, one copy per recipient."""

    type: str  # "audit_scheduled" | "audit_reminder" | "audit_completed"
    title: str
    message: str
    related_entity: str  # "audit_run" | "scheduled_audit"
    related_id: str
    priority: str = "medium"


class AuditTrailEntry(BaseModel):
    actor: str
    action: str
    entity_type: str
    entity_id: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UserRef(BaseModel):
    id: str
    name: str = ""
    email: str | None = None


@runtime_checkable
class AssetDirectory(Protocol):
    async def query(self, asset_filter: AssetFilter) -> set[str]: ...

    async def update(self, asset_id: str, update: AssetAuditUpdate) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    async def send_email(
        self, recipients: list[str], template: str, payload: dict[str, Any]
    ) -> None: ...

    async def send_in_app(self, user_ids: list[str], message: InAppMessage) -> None: ...


@runtime_checkable
class AuditTrail(Protocol):
    async def append(self, entry: AuditTrailEntry) -> None: ...


@runtime_checkable
class UserDirectory(Protocol):
    async def resolve(self, user_ids: list[str]) -> list[UserRef]: ...
