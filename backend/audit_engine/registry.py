"""Scheduled audit registry — create/update/delete/list/get definitions.

Access rules:
- create: requester role in creator roles (ADMIN, INVENTORY_MANAGER by default)
- update/delete: the creator, or a privileged requester (ADMIN)
- list/get: privileged requesters see everything; others only definitions
  they created or are assigned to audit. Invisible definitions are filtered
  out of listings and reported as NotFound by get.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Engine
from sqlmodel import Session, func, select

from audit_engine.clock import Clock, as_utc, utc_now
from audit_engine.config import get_creator_roles, get_privileged_roles, settings
from audit_engine.db.database import engine as default_engine
from audit_engine.engines.recurrence import (
    compute_next_run,
    initial_run_date,
    validate_recurrence_type,
    within_end_date,
)
from audit_engine.engines.scope import parse_scope
from audit_engine.errors import Forbidden, NotFound, ValidationError
from audit_engine.models.audit_run import runs_of
from audit_engine.models.scheduled_audit import ScheduledAudit
from audit_engine.models.schemas import (
    DefinitionFilters,
    Page,
    Requester,
    ScheduledAuditCreate,
    ScheduledAuditDetail,
    ScheduledAuditUpdate,
)
from audit_engine.ports import AuditTrail, AuditTrailEntry

logger = logging.getLogger(__name__)

# Fields whose change moves the schedule
SCHEDULE_FIELDS = {"recurrence_type", "start_date", "end_date", "status"}


def parse_request(model: type[BaseModel], data: BaseModel | Mapping[str, Any]) -> BaseModel:
    """Validate a request payload, mapping pydantic errors to ValidationError."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors() if err["type"] == "missing"]
        message = (
            f"Missing required fields: {', '.join(missing)}"
            if missing
            else f"Invalid {model.__name__} request"
        )
        raise ValidationError(
            message,
            errors=e.errors(include_url=False, include_context=False, include_input=False),
        ) from e


def is_privileged(requester: Requester) -> bool:
    return requester.role in get_privileged_roles()


def schedule_next(audit: ScheduledAudit) -> None:
    """Recompute next_run_date from the definition's current state.

    Inactive definitions carry no next run. A definition that has never run
    is scheduled from its start date; otherwise from its last run.
    """
    if audit.status != "active":
        audit.next_run_date = None
        return

    start = as_utc(audit.start_date)
    last_run = as_utc(audit.last_run_date)
    if last_run is None:
        candidate = initial_run_date(start, audit.recurrence_type)
    else:
        candidate = compute_next_run(start, audit.recurrence_type, last_run)
    audit.next_run_date = within_end_date(candidate, as_utc(audit.end_date))


class ScheduledAuditRegistry:
    """Owns audit definitions.

    Usage:
        registry = ScheduledAuditRegistry(audit_trail=trail)
        audit = await registry.create(
            {"name": "IT quarterly", "recurrence_type": "quarterly",
             "start_date": "2024-01-15T00:00:00Z", "scope_type": "department",
             "scope_config": {"department": "IT"}},
            requester=Requester(id="u1", role="ADMIN"),
        )
    """

    def __init__(
        self,
        audit_trail: AuditTrail | None = None,
        db_engine: Engine | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.audit_trail = audit_trail
        self._engine = db_engine or default_engine
        self._clock = clock

    # === Commands ===

    async def create(
        self,
        spec: ScheduledAuditCreate | Mapping[str, Any],
        requester: Requester,
    ) -> ScheduledAudit:
        """Create an active definition and compute its first run date."""
        if requester.role not in get_creator_roles():
            raise Forbidden(
                "Only admins or inventory managers can create scheduled audits",
                requester_id=requester.id,
            )

        request: ScheduledAuditCreate = parse_request(ScheduledAuditCreate, spec)
        validate_recurrence_type(request.recurrence_type)
        parse_scope(request.scope_type, request.scope_config)

        start_date = as_utc(request.start_date)
        end_date = as_utc(request.end_date)
        if end_date is not None and end_date < start_date:
            raise ValidationError("end_date must not be before start_date")

        now = self._clock()
        audit = ScheduledAudit(
            name=request.name,
            description=request.description,
            recurrence_type=request.recurrence_type,
            start_date=start_date,
            end_date=end_date,
            audit_type=request.audit_type,
            scope_type=request.scope_type,
            scope_config=dict(request.scope_config),
            assigned_auditors=list(dict.fromkeys(request.assigned_auditors)),
            auto_assign=request.auto_assign,
            reminder_settings=request.reminder_settings.model_dump(),
            checklist_items=[c.model_dump() for c in request.checklist_items],
            notification_recipients=list(dict.fromkeys(request.notification_recipients)),
            status="active",
            created_by=requester.id,
            created_at=now,
            updated_at=now,
        )
        schedule_next(audit)

        with Session(self._engine) as session:
            session.add(audit)
            session.commit()
            session.refresh(audit)
            session.expunge(audit)

        logger.info(
            "Scheduled audit '%s' created (%s, next run %s)",
            audit.name, audit.recurrence_type, audit.next_run_date,
        )
        await self._record(
            requester.id,
            "scheduled_audit_created",
            audit.id,
            {
                "audit_name": audit.name,
                "recurrence_type": audit.recurrence_type,
                "next_run_date": audit.next_run_date.isoformat() if audit.next_run_date else None,
            },
        )
        return audit

    async def update(
        self,
        audit_id: str,
        patch: ScheduledAuditUpdate | Mapping[str, Any],
        requester: Requester,
    ) -> ScheduledAudit:
        """Apply a partial update; schedule changes recompute next_run_date."""
        request: ScheduledAuditUpdate = parse_request(ScheduledAuditUpdate, patch)
        changes = request.model_dump(exclude_unset=True)
        for required in ("name", "recurrence_type", "start_date", "scope_type", "status"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be cleared")
        if changes.get("recurrence_type") is not None:
            validate_recurrence_type(changes["recurrence_type"])

        with Session(self._engine) as session:
            audit = self._load(session, audit_id)
            self._check_owner(audit, requester, "update")

            scope_type = changes.get("scope_type", audit.scope_type)
            scope_config = changes.get("scope_config", audit.scope_config)
            if "scope_type" in changes or "scope_config" in changes:
                parse_scope(scope_type, scope_config)

            for field, value in changes.items():
                if field in ("start_date", "end_date"):
                    value = as_utc(value)
                elif field in ("assigned_auditors", "notification_recipients"):
                    value = list(dict.fromkeys(value or []))
                elif field == "scope_config":
                    value = dict(value or {})
                setattr(audit, field, value)

            start_date = as_utc(audit.start_date)
            end_date = as_utc(audit.end_date)
            if end_date is not None and end_date < start_date:
                raise ValidationError("end_date must not be before start_date")

            if SCHEDULE_FIELDS & changes.keys():
                schedule_next(audit)

            audit.updated_at = self._clock()
            session.add(audit)
            session.commit()
            session.refresh(audit)
            session.expunge(audit)

        logger.info("Scheduled audit %s updated (%s)", audit_id, ", ".join(sorted(changes)))
        await self._record(
            requester.id,
            "scheduled_audit_updated",
            audit_id,
            {"audit_name": audit.name, "updates": sorted(changes)},
        )
        return audit

    async def delete(self, audit_id: str, requester: Requester) -> None:
        """Delete a definition. Its AuditRun history is left in place."""
        with Session(self._engine) as session:
            audit = self._load(session, audit_id)
            self._check_owner(audit, requester, "delete")
            name = audit.name
            session.delete(audit)
            session.commit()

        logger.info("Scheduled audit %s ('%s') deleted", audit_id, name)
        await self._record(requester.id, "scheduled_audit_deleted", audit_id, {"audit_name": name})

    # === Queries ===

    async def list(
        self,
        filters: DefinitionFilters | Mapping[str, Any] | None,
        requester: Requester,
    ) -> Page:
        """List definitions visible to the requester, soonest next run first."""
        query: DefinitionFilters = parse_request(DefinitionFilters, filters or {})
        if query.recurrence_type is not None:
            validate_recurrence_type(query.recurrence_type)
        limit = min(query.limit or settings.definition_page_limit, settings.max_page_limit)
        offset = (query.page - 1) * limit

        stmt = select(ScheduledAudit)
        if query.status:
            stmt = stmt.where(ScheduledAudit.status == query.status)
        if query.recurrence_type:
            stmt = stmt.where(ScheduledAudit.recurrence_type == query.recurrence_type)
        ordered = stmt.order_by(
            ScheduledAudit.next_run_date.is_(None),
            ScheduledAudit.next_run_date,
            ScheduledAudit.created_at,
        )

        with Session(self._engine) as session:
            if is_privileged(requester):
                total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
                items = session.exec(ordered.offset(offset).limit(limit)).all()
            else:
                # Membership in a JSON list is not portable SQL; filter here
                visible = [a for a in session.exec(ordered).all() if a.is_visible_to(requester.id)]
                total = len(visible)
                items = visible[offset:offset + limit]
            for item in items:
                session.expunge(item)

        return Page(items=list(items), total=total, page=query.page, limit=limit)

    async def get(self, audit_id: str, requester: Requester) -> ScheduledAudit:
        with Session(self._engine) as session:
            audit = self._load_visible(session, audit_id, requester)
            session.expunge(audit)
        return audit

    async def get_with_recent_runs(
        self,
        audit_id: str,
        requester: Requester,
        limit: int | None = None,
    ) -> ScheduledAuditDetail:
        """Definition plus its latest runs (default settings.recent_runs_limit), newest first."""
        limit = limit or settings.recent_runs_limit
        with Session(self._engine) as session:
            audit = self._load_visible(session, audit_id, requester)
            runs = session.exec(runs_of(audit_id).limit(limit)).all()
            session.expunge(audit)
            for run in runs:
                session.expunge(run)
        return ScheduledAuditDetail(audit=audit, recent_runs=list(runs))

    # === Helpers ===

    @staticmethod
    def _load(session: Session, audit_id: str) -> ScheduledAudit:
        audit = session.get(ScheduledAudit, audit_id)
        if audit is None:
            raise NotFound("ScheduledAudit", audit_id)
        return audit

    def _load_visible(self, session: Session, audit_id: str, requester: Requester) -> ScheduledAudit:
        audit = self._load(session, audit_id)
        if not is_privileged(requester) and not audit.is_visible_to(requester.id):
            raise NotFound("ScheduledAudit", audit_id)
        return audit

    @staticmethod
    def _check_owner(audit: ScheduledAudit, requester: Requester, action: str) -> None:
        if is_privileged(requester) or audit.created_by == requester.id:
            return
        raise Forbidden(
            f"Only the creator or an admin can {action} this audit",
            audit_id=audit.id,
            requester_id=requester.id,
        )

    async def _record(self, actor: str, action: str, audit_id: str, details: dict) -> None:
        """Append to the audit trail; failures never undo the committed change."""
        if self.audit_trail is None:
            return
        try:
            await self.audit_trail.append(
                AuditTrailEntry(
                    actor=actor,
                    action=action,
                    entity_type="scheduled_audit",
                    entity_id=audit_id,
                    details=details,
                    timestamp=self._clock(),
                )
            )
        except Exception as e:
            logger.warning("Audit trail append failed for %s on %s: %s", action, audit_id, e)
