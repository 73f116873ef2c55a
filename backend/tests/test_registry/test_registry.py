"""Tests for ScheduledAuditRegistry: lifecycle, scheduling and access control."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

import pytest
from conftest import ADMIN, AUDITOR, MANAGER, OUTSIDER, definition_spec, utc

from audit_engine.clock import as_utc
from audit_engine.errors import (
    Forbidden,
    InvalidRecurrenceType,
    InvalidScopeType,
    NotFound,
    ValidationError,
)
from audit_engine.models.schemas import Requester, ScheduledAuditUpdate

OTHER_MANAGER = Requester(id="mgr-2", role="INVENTORY_MANAGER")


# === create ===


@pytest.mark.asyncio
async def test_create_schedules_first_run(registry, trail):
    audit = await registry.create(definition_spec(), MANAGER)

    assert audit.id
    assert audit.status == "active"
    assert audit.created_by == MANAGER.id
    assert audit.total_runs == 0
    assert audit.completed_runs == 0
    assert as_utc(audit.next_run_date) == utc(2024, 2, 15)
    assert audit.reminders.enabled is True
    assert audit.reminders.days_before == 1
    assert trail.actions() == ["scheduled_audit_created"]
    assert trail.entries[0].actor == MANAGER.id
    print("  PASS: create schedules first run one period after start")


@pytest.mark.asyncio
async def test_create_once_runs_on_start_date(registry):
    audit = await registry.create(definition_spec(recurrence_type="once"), ADMIN)
    assert as_utc(audit.next_run_date) == utc(2024, 1, 15)


@pytest.mark.asyncio
async def test_create_past_end_date_has_no_next_run(registry):
    audit = await registry.create(definition_spec(end_date=utc(2024, 2, 1)), ADMIN)
    assert audit.next_run_date is None
    assert audit.status == "active"


@pytest.mark.asyncio
async def test_create_accepts_iso_strings(registry):
    audit = await registry.create(
        definition_spec(start_date="2024-03-31T00:00:00Z", recurrence_type="monthly"),
        ADMIN,
    )
    assert as_utc(audit.next_run_date) == utc(2024, 4, 30)


@pytest.mark.asyncio
async def test_create_dedupes_assignments(registry):
    audit = await registry.create(
        definition_spec(assigned_auditors=["aud-1", "aud-1", "aud-2"]),
        ADMIN,
    )
    assert audit.assigned_auditors == ["aud-1", "aud-2"]


@pytest.mark.asyncio
async def test_create_requires_creator_role(registry, trail):
    with pytest.raises(Forbidden):
        await registry.create(definition_spec(), AUDITOR)
    assert trail.entries == []


@pytest.mark.asyncio
async def test_create_reports_missing_fields(registry):
    spec = definition_spec()
    del spec["name"]
    del spec["scope_type"]
    with pytest.raises(ValidationError) as exc:
        await registry.create(spec, ADMIN)
    assert "name" in exc.value.message
    assert "scope_type" in exc.value.message
    assert exc.value.code == "validation_error"


@pytest.mark.asyncio
async def test_create_rejects_unknown_types(registry):
    with pytest.raises(InvalidRecurrenceType):
        await registry.create(definition_spec(recurrence_type="hourly"), ADMIN)
    with pytest.raises(InvalidScopeType):
        await registry.create(definition_spec(scope_type="building"), ADMIN)


@pytest.mark.asyncio
async def test_create_rejects_incomplete_scope_config(registry):
    with pytest.raises(ValidationError):
        await registry.create(definition_spec(scope_config={}), ADMIN)


@pytest.mark.asyncio
async def test_create_rejects_end_before_start(registry):
    with pytest.raises(ValidationError):
        await registry.create(definition_spec(end_date=utc(2024, 1, 1)), ADMIN)


@pytest.mark.asyncio
async def test_create_rejects_unknown_fields(registry):
    with pytest.raises(ValidationError):
        await registry.create(definition_spec(status="paused"), ADMIN)


@pytest.mark.asyncio
async def test_trail_failure_does_not_undo_create(registry, trail):
    trail.fail = True
    audit = await registry.create(definition_spec(), ADMIN)
    assert (await registry.get(audit.id, ADMIN)).name == audit.name


# === update ===


@pytest.mark.asyncio
async def test_update_recurrence_recomputes_next_run(registry, trail):
    audit = await registry.create(definition_spec(), MANAGER)
    updated = await registry.update(audit.id, {"recurrence_type": "weekly"}, MANAGER)

    assert updated.recurrence_type == "weekly"
    assert as_utc(updated.next_run_date) == utc(2024, 1, 22)
    assert trail.actions()[-1] == "scheduled_audit_updated"
    assert trail.entries[-1].details["updates"] == ["recurrence_type"]


@pytest.mark.asyncio
async def test_update_non_schedule_field_keeps_next_run(registry):
    audit = await registry.create(definition_spec(), MANAGER)
    updated = await registry.update(
        audit.id, ScheduledAuditUpdate(name="Renamed", description="d"), MANAGER
    )
    assert updated.name == "Renamed"
    assert as_utc(updated.next_run_date) == utc(2024, 2, 15)


@pytest.mark.asyncio
async def test_pause_clears_and_reactivate_recomputes(registry):
    audit = await registry.create(definition_spec(), MANAGER)

    paused = await registry.update(audit.id, {"status": "paused"}, MANAGER)
    assert paused.status == "paused"
    assert paused.next_run_date is None

    active = await registry.update(audit.id, {"status": "active"}, MANAGER)
    assert as_utc(active.next_run_date) == utc(2024, 2, 15)


@pytest.mark.asyncio
async def test_archive_clears_next_run(registry):
    audit = await registry.create(definition_spec(), ADMIN)
    archived = await registry.update(audit.id, {"status": "archived"}, ADMIN)
    assert archived.next_run_date is None


@pytest.mark.asyncio
async def test_update_end_date_can_end_schedule(registry):
    audit = await registry.create(definition_spec(), ADMIN)
    updated = await registry.update(audit.id, {"end_date": utc(2024, 2, 10)}, ADMIN)
    assert updated.next_run_date is None


@pytest.mark.asyncio
async def test_update_validates(registry):
    audit = await registry.create(definition_spec(), ADMIN)
    with pytest.raises(ValidationError):
        await registry.update(audit.id, {"name": None}, ADMIN)
    with pytest.raises(ValidationError):
        await registry.update(audit.id, {"status": "deleted"}, ADMIN)
    with pytest.raises(InvalidRecurrenceType):
        await registry.update(audit.id, {"recurrence_type": "never"}, ADMIN)
    with pytest.raises(InvalidScopeType):
        await registry.update(audit.id, {"scope_type": "room"}, ADMIN)
    with pytest.raises(ValidationError):
        await registry.update(audit.id, {"end_date": utc(2023, 12, 1)}, ADMIN)

    unchanged = await registry.get(audit.id, ADMIN)
    assert unchanged.name == "IT monthly count"
    assert unchanged.end_date is None


@pytest.mark.asyncio
async def test_update_scope_must_match_type(registry):
    audit = await registry.create(definition_spec(), ADMIN)
    with pytest.raises(ValidationError):
        await registry.update(audit.id, {"scope_type": "location"}, ADMIN)
    updated = await registry.update(
        audit.id, {"scope_type": "location", "scope_config": {"location": "HQ"}}, ADMIN
    )
    assert updated.scope_config == {"location": "HQ"}


@pytest.mark.asyncio
async def test_update_access_control(registry):
    audit = await registry.create(definition_spec(), MANAGER)

    with pytest.raises(Forbidden):
        await registry.update(audit.id, {"name": "x"}, OTHER_MANAGER)
    with pytest.raises(Forbidden):
        await registry.update(audit.id, {"name": "x"}, AUDITOR)

    updated = await registry.update(audit.id, {"name": "By admin"}, ADMIN)
    assert updated.name == "By admin"


@pytest.mark.asyncio
async def test_update_unknown_definition(registry):
    with pytest.raises(NotFound):
        await registry.update("missing", {"name": "x"}, ADMIN)


# === delete ===


@pytest.mark.asyncio
async def test_delete(registry, trail):
    audit = await registry.create(definition_spec(), MANAGER)

    with pytest.raises(Forbidden):
        await registry.delete(audit.id, OTHER_MANAGER)

    await registry.delete(audit.id, MANAGER)
    with pytest.raises(NotFound):
        await registry.get(audit.id, ADMIN)
    with pytest.raises(NotFound):
        await registry.delete(audit.id, MANAGER)
    assert trail.actions()[-1] == "scheduled_audit_deleted"


# === list / get ===


@pytest.mark.asyncio
async def test_list_orders_by_next_run(registry):
    monthly = await registry.create(definition_spec(name="monthly"), ADMIN)
    weekly = await registry.create(definition_spec(name="weekly", recurrence_type="weekly"), ADMIN)
    paused = await registry.create(definition_spec(name="paused"), ADMIN)
    await registry.update(paused.id, {"status": "paused"}, ADMIN)

    page = await registry.list(None, ADMIN)
    assert [a.id for a in page.items] == [weekly.id, monthly.id, paused.id]
    assert page.total == 3
    assert page.limit == 50


@pytest.mark.asyncio
async def test_list_filters_and_paginates(registry):
    for i in range(5):
        await registry.create(definition_spec(name=f"audit {i}"), ADMIN)
    await registry.create(definition_spec(name="yearly", recurrence_type="yearly"), ADMIN)

    first = await registry.list({"recurrence_type": "monthly", "limit": 2}, ADMIN)
    assert first.total == 5
    assert len(first.items) == 2
    assert first.pages == 3

    last = await registry.list({"recurrence_type": "monthly", "limit": 2, "page": 3}, ADMIN)
    assert len(last.items) == 1

    paused = await registry.list({"status": "paused"}, ADMIN)
    assert paused.total == 0


@pytest.mark.asyncio
async def test_list_caps_limit(registry):
    page = await registry.list({"limit": 10_000}, ADMIN)
    assert page.limit == 200


@pytest.mark.asyncio
async def test_list_visibility(registry):
    assigned = await registry.create(definition_spec(name="assigned"), ADMIN)
    await registry.create(definition_spec(name="other", assigned_auditors=["aud-7"]), ADMIN)
    mine = await registry.create(definition_spec(name="mine", assigned_auditors=[]), MANAGER)

    auditor_page = await registry.list({}, AUDITOR)
    assert {a.id for a in auditor_page.items} == {assigned.id}
    assert auditor_page.total == 1

    manager_page = await registry.list({}, MANAGER)
    assert {a.id for a in manager_page.items} == {mine.id}

    outsider_page = await registry.list({}, OUTSIDER)
    assert outsider_page.total == 0
    assert outsider_page.items == []


@pytest.mark.asyncio
async def test_get_visibility(registry):
    audit = await registry.create(definition_spec(), MANAGER)

    assert (await registry.get(audit.id, AUDITOR)).id == audit.id
    assert (await registry.get(audit.id, MANAGER)).id == audit.id
    assert (await registry.get(audit.id, ADMIN)).id == audit.id
    with pytest.raises(NotFound):
        await registry.get(audit.id, OUTSIDER)
    with pytest.raises(NotFound):
        await registry.get("missing", ADMIN)


@pytest.mark.asyncio
async def test_list_rejects_unknown_recurrence_filter(registry):
    await registry.create(definition_spec(), ADMIN)
    with pytest.raises(InvalidRecurrenceType):
        await registry.list({"recurrence_type": "fortnightly"}, ADMIN)


@pytest.mark.asyncio
async def test_page_dump_includes_page_count(registry):
    for i in range(3):
        await registry.create(definition_spec(name=f"audit {i}"), ADMIN)
    page = await registry.list({"limit": 2}, ADMIN)
    dumped = page.model_dump(exclude={"items"})
    assert dumped == {"total": 3, "page": 1, "limit": 2, "pages": 2}


# === get_with_recent_runs ===


@pytest.mark.asyncio
async def test_get_with_recent_runs(registry, run_engine, clock):
    audit = await registry.create(definition_spec(), MANAGER)
    run_ids = []
    for _ in range(12):
        run_ids.append((await run_engine.trigger_run(audit.id)).id)
        clock.advance(days=1)

    detail = await registry.get_with_recent_runs(audit.id, AUDITOR)
    assert detail.audit.id == audit.id
    assert detail.audit.total_runs == 12
    assert [r.id for r in detail.recent_runs] == list(reversed(run_ids))[:10]

    short = await registry.get_with_recent_runs(audit.id, ADMIN, limit=3)
    assert [r.id for r in short.recent_runs] == list(reversed(run_ids))[:3]

    with pytest.raises(NotFound):
        await registry.get_with_recent_runs(audit.id, OUTSIDER)


@pytest.mark.asyncio
async def test_get_with_recent_runs_without_runs(registry):
    audit = await registry.create(definition_spec(), ADMIN)
    detail = await registry.get_with_recent_runs(audit.id, ADMIN)
    assert detail.recent_runs == []
