"""Audit Run Engine — creates runs from definitions and accounts progress.

trigger_run freezes the definition's scope into an asset-id snapshot and
reschedules the definition. record_progress upserts one observation per
asset and advances the run pending -> in_progress -> completed.

Concurrency: record_progress calls for the same run are serialized by a
per-run asyncio.Lock held only around the database update; a run's lock
entry lives only while some caller holds or awaits it. Port I/O
(asset directory, notifier, audit trail) happens outside the lock, after
the domain change has committed; its failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from audit_engine.clock import Clock, utc_now
from audit_engine.config import settings
from audit_engine.db.database import engine as default_engine
from audit_engine.engines.scope import build_filter
from audit_engine.errors import (
    ActiveRunExists,
    AssetNotInScope,
    Forbidden,
    NotActive,
    NotFound,
    RunAlreadyCompleted,
)
from audit_engine.models.audit_run import OUTCOME_COUNTERS, AuditRun, Observation, runs_of
from audit_engine.models.scheduled_audit import ScheduledAudit
from audit_engine.models.schemas import (
    ObservationInput,
    Page,
    ProgressResult,
    Requester,
    RunFilters,
    TriggerFailure,
    TriggerReport,
)
from audit_engine.ports import (
    AssetAuditUpdate,
    AssetDirectory,
    AuditTrail,
    AuditTrailEntry,
    InAppMessage,
    Notifier,
)
from audit_engine.registry import is_privileged, parse_request, schedule_next
from audit_engine.runs.state_machine import OPEN_STATES, transition

logger = logging.getLogger(__name__)


def recompute_progress(run: AuditRun) -> int:
    """Derive outcome counters and completion from the observation map.

    Returns the number of snapshot assets that have an observation.
    """
    in_scope = set(run.assets_to_audit or [])
    observed = [o for asset_id, o in (run.observations or {}).items() if asset_id in in_scope]

    for counter in OUTCOME_COUNTERS.values():
        setattr(run, counter, 0)
    for obs in observed:
        counter = OUTCOME_COUNTERS[obs["outcome"]]
        setattr(run, counter, getattr(run, counter) + 1)

    if run.total_assets:
        run.completion_percentage = len(observed) / run.total_assets * 100
    else:
        run.completion_percentage = 100.0
    return len(observed)


def _unique(*groups: list[str]) -> list[str]:
    return list(dict.fromkeys(uid for group in groups for uid in (group or [])))


@dataclass
class _RunLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # callers holding or waiting on the lock


class AuditRunEngine:
    """Executes scheduled audits.

    Usage:
        engine = AuditRunEngine(asset_directory=assets, notifier=notifier, audit_trail=trail)
        run = await engine.trigger_run(audit_id)
        result = await engine.record_progress(run.id, "auditor-1", "asset-9", {"outcome": "found"})
    """

    def __init__(
        self,
        asset_directory: AssetDirectory,
        notifier: Notifier | None = None,
        audit_trail: AuditTrail | None = None,
        db_engine: Engine | None = None,
        clock: Clock = utc_now,
        reject_overlapping_runs: bool | None = None,
    ) -> None:
        self.asset_directory = asset_directory
        self.notifier = notifier
        self.audit_trail = audit_trail
        self._engine = db_engine or default_engine
        self._clock = clock
        self.reject_overlapping_runs = (
            settings.reject_overlapping_runs
            if reject_overlapping_runs is None
            else reject_overlapping_runs
        )
        self._run_locks: dict[str, _RunLock] = {}

    # === Trigger ===

    async def trigger_run(self, audit_id: str, actor: str = "system") -> AuditRun:
        """Snapshot the definition's scope into a new pending run.

        Raises:
            NotFound: Unknown definition.
            NotActive: Definition is paused or archived.
            ActiveRunExists: Overlapping runs are rejected and one is open.
            InvalidScopeType / ValidationError: Stored scope is unusable.
        """
        with Session(self._engine) as session:
            audit = self._load_definition(session, audit_id)
            self._check_can_trigger(session, audit)
            asset_filter = build_filter(audit.scope_type, audit.scope_config)

        # Resolve the snapshot before touching any state
        asset_ids = sorted(set(await self.asset_directory.query(asset_filter)))

        now = self._clock()
        with Session(self._engine) as session:
            audit = self._load_definition(session, audit_id)
            self._check_can_trigger(session, audit)

            run = AuditRun(
                scheduled_audit_id=audit.id,
                run_date=now,
                status="pending",
                assets_to_audit=asset_ids,
                total_assets=len(asset_ids),
                assigned_auditors=list(audit.assigned_auditors or []),
                created_at=now,
                updated_at=now,
            )
            if not asset_ids:
                recompute_progress(run)
                transition(run, "completed", now)
                audit.completed_runs += 1

            audit.total_runs += 1
            audit.last_run_date = now
            schedule_next(audit)
            audit.updated_at = now

            session.add(run)
            session.add(audit)
            session.commit()
            session.refresh(run)
            session.expunge(run)

            audit_name = audit.name
            recipients = _unique(audit.assigned_auditors, audit.notification_recipients)
            next_run = audit.next_run_date

        logger.info(
            "Audit run %s triggered for '%s' (%d assets, next run %s)",
            run.id, audit_name, run.total_assets, next_run,
        )

        await self._notify(
            recipients,
            InAppMessage(
                type="audit_scheduled",
                title=f"Audit Run Started: {audit_name}",
                message=f"A new audit run has been triggered with {run.total_assets} assets to audit.",
                related_entity="audit_run",
                related_id=run.id,
                priority="high",
            ),
        )
        await self._record(
            AuditTrailEntry(
                actor=actor,
                action="audit_run_triggered",
                entity_type="audit_run",
                entity_id=run.id,
                details={
                    "audit_id": audit_id,
                    "audit_name": audit_name,
                    "assets_count": run.total_assets,
                },
                timestamp=now,
            )
        )
        return run

    async def trigger_due_runs(self, now: datetime | None = None) -> TriggerReport:
        """Trigger every active definition whose next run is due.

        Per-definition errors are collected, never raised.
        """
        now = now or self._clock()
        with Session(self._engine) as session:
            due_ids = session.exec(
                select(ScheduledAudit.id)
                .where(ScheduledAudit.status == "active")
                .where(ScheduledAudit.next_run_date.isnot(None))
                .where(ScheduledAudit.next_run_date <= now)
                .order_by(ScheduledAudit.next_run_date)
            ).all()

        report = TriggerReport()
        for audit_id in due_ids:
            try:
                run = await self.trigger_run(audit_id)
                report.triggered.append(run.id)
            except Exception as e:
                logger.warning("Scheduled trigger failed for audit %s: %s", audit_id, e)
                report.failures.append(TriggerFailure(audit_id=audit_id, error=str(e)))

        if due_ids:
            logger.info(
                "Due trigger pass: %d triggered, %d failed",
                len(report.triggered), len(report.failures),
            )
        return report

    # === Progress ===

    async def record_progress(
        self,
        run_id: str,
        auditor_id: str,
        asset_id: str,
        observation: ObservationInput | Mapping[str, Any],
    ) -> ProgressResult:
        """Record one auditor's observation of one asset.

        Raises:
            NotFound: Unknown run.
            Forbidden: Auditor not assigned to the run.
            RunAlreadyCompleted: Run is completed or cancelled.
            AssetNotInScope: Asset is not in the run's snapshot.
        """
        submitted: ObservationInput = parse_request(ObservationInput, observation)

        async with self._serialized(run_id):
            now = self._clock()
            with Session(self._engine) as session:
                run = self._load_run(session, run_id)
                if auditor_id not in (run.assigned_auditors or []):
                    raise Forbidden(
                        "You are not assigned to this audit run",
                        run_id=run_id,
                        auditor_id=auditor_id,
                    )
                if run.is_terminal:
                    raise RunAlreadyCompleted(run_id, run.status)
                if asset_id not in set(run.assets_to_audit or []):
                    raise AssetNotInScope(run_id, asset_id)

                entry = Observation(
                    asset_id=asset_id,
                    audited_at=now,
                    audited_by=auditor_id,
                    **submitted.model_dump(),
                )
                observations = dict(run.observations or {})
                observations[asset_id] = entry.model_dump(mode="json")
                run.observations = observations

                observed = recompute_progress(run)
                if run.status == "pending":
                    transition(run, "in_progress", now)
                just_completed = observed >= run.total_assets
                if just_completed:
                    transition(run, "completed", now)
                run.updated_at = now

                audit = session.get(ScheduledAudit, run.scheduled_audit_id)
                if just_completed and audit is not None:
                    audit.completed_runs += 1
                    session.add(audit)
                audit_name = audit.name if audit else ""
                completion_recipients = (
                    _unique([audit.created_by], audit.notification_recipients) if audit else []
                )

                session.add(run)
                session.commit()
                result = ProgressResult(
                    completion_percentage=run.completion_percentage,
                    is_complete=run.status == "completed",
                )
        if just_completed:
            logger.info("Audit run %s completed", run_id)

        await self._mirror_asset(
            asset_id,
            AssetAuditUpdate(
                last_audit_date=now,
                last_audited_by=auditor_id,
                condition=submitted.condition,
            ),
        )
        await self._record(
            AuditTrailEntry(
                actor=auditor_id,
                action="asset_audited",
                entity_type="asset",
                entity_id=asset_id,
                details={
                    "audit_run_id": run_id,
                    "outcome": submitted.outcome,
                    "condition": submitted.condition,
                    "location": submitted.location,
                },
                timestamp=now,
            )
        )
        if just_completed:
            await self._notify(
                completion_recipients,
                InAppMessage(
                    type="audit_completed",
                    title=f"Audit Run Completed: {audit_name}",
                    message="Every asset in the audit run has been audited.",
                    related_entity="audit_run",
                    related_id=run_id,
                    priority="medium",
                ),
            )
        return result

    async def cancel_run(self, run_id: str, requester: Requester) -> AuditRun:
        """Cancel an open run (definition creator or privileged requester)."""
        async with self._serialized(run_id):
            now = self._clock()
            with Session(self._engine) as session:
                run = self._load_run(session, run_id)
                audit = session.get(ScheduledAudit, run.scheduled_audit_id)
                owner = audit.created_by if audit else None
                if not is_privileged(requester) and requester.id != owner:
                    raise Forbidden(
                        "Only the audit's creator or an admin can cancel this run",
                        run_id=run_id,
                        requester_id=requester.id,
                    )
                if run.is_terminal:
                    raise RunAlreadyCompleted(run_id, run.status)

                transition(run, "cancelled", now)
                session.add(run)
                session.commit()
                session.refresh(run)
                session.expunge(run)

        logger.info("Audit run %s cancelled by %s", run_id, requester.id)
        await self._record(
            AuditTrailEntry(
                actor=requester.id,
                action="audit_run_cancelled",
                entity_type="audit_run",
                entity_id=run_id,
                details={"audit_id": run.scheduled_audit_id},
                timestamp=now,
            )
        )
        return run

    # === Queries ===

    async def get_run(self, run_id: str) -> AuditRun:
        with Session(self._engine) as session:
            run = self._load_run(session, run_id)
            session.expunge(run)
        return run

    async def list_runs(
        self,
        audit_id: str,
        filters: RunFilters | Mapping[str, Any] | None = None,
    ) -> Page:
        """Runs of one definition, newest first. Works after the definition is deleted."""
        query: RunFilters = parse_request(RunFilters, filters or {})
        limit = min(query.limit or settings.run_page_limit, settings.max_page_limit)

        stmt = runs_of(audit_id, query.status)

        with Session(self._engine) as session:
            total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
            runs = session.exec(stmt.offset((query.page - 1) * limit).limit(limit)).all()
            for r in runs:
                session.expunge(r)

        return Page(items=list(runs), total=total, page=query.page, limit=limit)

    # === Helpers ===

    @asynccontextmanager
    async def _serialized(self, run_id: str):
        """Hold the run's lock; the entry is dropped once no caller holds or awaits it."""
        entry = self._run_locks.setdefault(run_id, _RunLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._run_locks[run_id]

    @staticmethod
    def _load_definition(session: Session, audit_id: str) -> ScheduledAudit:
        audit = session.get(ScheduledAudit, audit_id)
        if audit is None:
            raise NotFound("ScheduledAudit", audit_id)
        return audit

    @staticmethod
    def _load_run(session: Session, run_id: str) -> AuditRun:
        run = session.get(AuditRun, run_id)
        if run is None:
            raise NotFound("AuditRun", run_id)
        return run

    def _check_can_trigger(self, session: Session, audit: ScheduledAudit) -> None:
        if audit.status != "active":
            raise NotActive(audit.id, audit.status)
        if not self.reject_overlapping_runs:
            return
        open_run = session.exec(
            select(AuditRun.id)
            .where(AuditRun.scheduled_audit_id == audit.id)
            .where(AuditRun.status.in_(OPEN_STATES))
        ).first()
        if open_run is not None:
            raise ActiveRunExists(audit.id, open_run)

    async def _notify(self, user_ids: list[str], message: InAppMessage) -> None:
        if self.notifier is None or not user_ids:
            return
        try:
            await self.notifier.send_in_app(user_ids, message)
        except Exception as e:
            logger.warning("In-app notification '%s' failed for %s: %s", message.type, message.related_id, e)

    async def _mirror_asset(self, asset_id: str, update: AssetAuditUpdate) -> None:
        try:
            await self.asset_directory.update(asset_id, update)
        except Exception as e:
            logger.warning("Asset record update failed for %s: %s", asset_id, e)

    async def _record(self, entry: AuditTrailEntry) -> None:
        if self.audit_trail is None:
            return
        try:
            await self.audit_trail.append(entry)
        except Exception as e:
            logger.warning("Audit trail append failed for %s on %s: %s", entry.action, entry.entity_id, e)
