"""Error taxonomy for the audit engine.

Every operation either returns a typed value or raises one of these.
Validation, authorization and state errors are never retried.

    AuditEngineError
    ├── ValidationError
    │   ├── InvalidRecurrenceType
    │   └── InvalidScopeType
    ├── NotFound
    ├── Forbidden
    ├── NotActive
    │   └── ActiveRunExists
    ├── AssetNotInScope
    └── RunAlreadyCompleted
"""

from __future__ import annotations


class AuditEngineError(Exception):
    """Base class for all audit engine errors."""

    code = "audit_engine_error"

    def __init__(self, message: str, **details) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(AuditEngineError):
    """Missing or malformed request fields."""

    code = "validation_error"


class InvalidRecurrenceType(ValidationError):
    code = "invalid_recurrence_type"

    def __init__(self, recurrence_type) -> None:
        self.recurrence_type = recurrence_type
        super().__init__(
            f"Unknown recurrence type: {recurrence_type!r}",
            recurrence_type=recurrence_type,
        )


class InvalidScopeType(ValidationError):
    code = "invalid_scope_type"

    def __init__(self, scope_type) -> None:
        self.scope_type = scope_type
        super().__init__(f"Unknown scope type: {scope_type!r}", scope_type=scope_type)


class NotFound(AuditEngineError):
    """Unknown definition or run id."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, entity_id=entity_id)


class Forbidden(AuditEngineError):
    """Unassigned auditor or unauthorized requester."""

    code = "forbidden"


class NotActive(AuditEngineError):
    """Trigger attempted on a definition that is not active."""

    code = "not_active"

    def __init__(self, audit_id: str, status: str, message: str | None = None) -> None:
        self.audit_id = audit_id
        self.status = status
        super().__init__(
            message or f"Scheduled audit {audit_id} is not active (status: {status})",
            audit_id=audit_id,
            status=status,
        )


class ActiveRunExists(NotActive):
    """A pending or in-progress run already exists for the definition."""

    code = "active_run_exists"

    def __init__(self, audit_id: str, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(
            audit_id,
            "active",
            message=f"Scheduled audit {audit_id} already has an open run: {run_id}",
        )
        self.details["run_id"] = run_id


class AssetNotInScope(AuditEngineError):
    code = "asset_not_in_scope"

    def __init__(self, run_id: str, asset_id: str) -> None:
        self.run_id = run_id
        self.asset_id = asset_id
        super().__init__(
            f"Asset {asset_id} is not part of audit run {run_id}",
            run_id=run_id,
            asset_id=asset_id,
        )


class RunAlreadyCompleted(AuditEngineError):
    """The run is terminal (completed or cancelled) and accepts no mutation."""

    code = "run_already_completed"

    def __init__(self, run_id: str, status: str = "completed") -> None:
        self.run_id = run_id
        self.status = status
        super().__init__(f"Audit run {run_id} is already {status}", run_id=run_id, status=status)
