"""Audit run state machine — transition table + guarded transitions.

Runs only move forward. Terminal states accept no further mutation.
"""

from __future__ import annotations

from datetime import datetime

from audit_engine.models.audit_run import AuditRun

# === State Transition Table ===
# Key: (from_state, to_state) -> guard description
# Absent pair -> illegal transition

LEGAL_TRANSITIONS: dict[tuple[str, str], str] = {
    ("pending", "in_progress"): "First observation recorded",
    ("pending", "completed"): "Snapshot is empty, nothing to observe",
    ("pending", "cancelled"): "Cancelled before any observation",
    ("in_progress", "completed"): "Every snapshot asset has an observation",
    ("in_progress", "cancelled"): "Cancelled mid-run",
    # Terminal states: completed, cancelled — no transitions out
}

TERMINAL_STATES = {"completed", "cancelled"}

OPEN_STATES = ("pending", "in_progress")


class IllegalTransitionError(Exception):
    """Raised when attempting an illegal run state transition."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Illegal transition: {from_state} → {to_state}")


def transition(run: AuditRun, to_state: str, now: datetime) -> None:
    """Move a run to a new state, stamping the matching timestamp.

    Raises:
        IllegalTransitionError: If the transition is not legal.
    """
    from_state = run.status
    if from_state in TERMINAL_STATES or (from_state, to_state) not in LEGAL_TRANSITIONS:
        raise IllegalTransitionError(from_state, to_state)

    run.status = to_state
    if to_state == "in_progress":
        run.started_at = now
    elif to_state == "completed":
        run.completed_at = now
    elif to_state == "cancelled":
        run.cancelled_at = now
    run.updated_at = now
