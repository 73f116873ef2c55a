"""In-memory port adapters for tests and local wiring.

Every adapter keeps a call log so callers can assert on what the engine
sent, and can be told to fail.

Usage:
    assets = InMemoryAssetDirectory([
        {"id": "a1", "department": "IT", "status": "Active"},
    ])
    notifier = RecordingNotifier()
    engine = AuditRunEngine(asset_directory=assets, notifier=notifier)
"""

from __future__ import annotations

from typing import Any, Iterable

from audit_engine.engines.scope import AssetFilter
from audit_engine.ports import AssetAuditUpdate, AuditTrailEntry, InAppMessage, UserRef


class PortFailure(RuntimeError):
    """Raised by an adapter configured to fail."""


class InMemoryAssetDirectory:
    """Asset records keyed by id; queries evaluate the AssetFilter predicate."""

    def __init__(self, assets: Iterable[dict[str, Any]] = ()) -> None:
        self.assets: dict[str, dict[str, Any]] = {a["id"]: dict(a) for a in assets}
        self.updates: list[tuple[str, AssetAuditUpdate]] = []
        self.fail_updates = False

    def add(self, asset: dict[str, Any]) -> None:
        self.assets[asset["id"]] = dict(asset)

    def set_status(self, asset_id: str, status: str) -> None:
        self.assets[asset_id]["status"] = status

    async def query(self, asset_filter: AssetFilter) -> set[str]:
        return {asset_id for asset_id, asset in self.assets.items() if asset_filter.matches(asset)}

    async def update(self, asset_id: str, update: AssetAuditUpdate) -> None:
        if self.fail_updates:
            raise PortFailure(f"asset directory unavailable for {asset_id}")
        self.updates.append((asset_id, update))
        record = self.assets.get(asset_id)
        if record is not None:
            record["last_audit_date"] = update.last_audit_date
            record["last_audited_by"] = update.last_audited_by
            if update.condition:
                record["condition"] = update.condition


class RecordingNotifier:
    """Records email and in-app batches instead of delivering them."""

    def __init__(self) -> None:
        self.emails: list[dict[str, Any]] = []
        self.in_app: list[tuple[list[str], InAppMessage]] = []
        self.fail_email = False
        self.fail_in_app = False

    async def send_email(self, recipients: list[str], template: str, payload: dict[str, Any]) -> None:
        if self.fail_email:
            raise PortFailure("smtp unavailable")
        self.emails.append({"recipients": list(recipients), "template": template, "payload": dict(payload)})

    async def send_in_app(self, user_ids: list[str], message: InAppMessage) -> None:
        if self.fail_in_app:
            raise PortFailure("notification store unavailable")
        self.in_app.append((list(user_ids), message))

    def in_app_of_type(self, message_type: str) -> list[tuple[list[str], InAppMessage]]:
        return [(ids, m) for ids, m in self.in_app if m.type == message_type]


class InMemoryAuditTrail:
    def __init__(self) -> None:
        self.entries: list[AuditTrailEntry] = []
        self.fail = False

    async def append(self, entry: AuditTrailEntry) -> None:
        if self.fail:
            raise PortFailure("audit trail unavailable")
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]


class StaticUserDirectory:
    """Resolves ids against a fixed user table; unknown ids are dropped."""

    def __init__(self, users: Iterable[UserRef] = ()) -> None:
        self.users: dict[str, UserRef] = {u.id: u for u in users}

    async def resolve(self, user_ids: list[str]) -> list[UserRef]:
        return [self.users[uid] for uid in user_ids if uid in self.users]
