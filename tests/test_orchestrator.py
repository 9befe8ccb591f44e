import asyncio
import datetime as dt

import pytest

from allocation_planner.allocation_models import Project, RecurringPattern
from allocation_planner.errors import (
    AllocationError,
    BatchWriteError,
    ConfirmationRequired,
    ExclusivityError,
    PatternValidationError,
)
from allocation_planner.orchestrator import AllocationOrchestrator
from allocation_planner.store import InMemoryAllocationStore

START = dt.date(2024, 1, 1)
MONDAYS = RecurringPattern.weekly(1)


def _project(end=dt.date(2024, 4, 10), hours=100.0, continuous=False):
    return Project(id="p1", name="Site build", start_date=START, end_date=end, estimated_hours=hours, continuous=continuous)


def _phase_record(id, start, end, hours=5.0):
    return {
        "id": id,
        "project_id": "p1",
        "name": f"Phase {id.upper()}",
        "start_date": start,
        "end_date": end,
        "due_date": end,
        "time_allocation": hours,
        "is_recurring": False,
    }


def _template_record(id="t1"):
    return {
        "id": id,
        "project_id": "p1",
        "name": "Standup",
        "due_date": START,
        "time_allocation": 2.0,
        "is_recurring": True,
        "recurring_type": "weekly",
        "recurring_interval": 1,
        "weekly_day_of_week": 1,
    }


def _milestone_record(id="m1"):
    return {"id": id, "project_id": "p1", "name": "Launch", "due_date": dt.date(2024, 3, 1), "order": 1}


def _orchestrator(records=None):
    store = InMemoryAllocationStore(records)
    return store, AllocationOrchestrator(store)


def _plan(orchestrator, project=None):
    return asyncio.run(orchestrator.load_plan(project or _project()))


def test_split_on_empty_project_creates_two_phases():
    store, orchestrator = _orchestrator()

    result = asyncio.run(orchestrator.split_estimate(_project()))

    assert len(result.created) == 2
    assert all(phase.id for phase in result.created)
    assert store.writes() == [("create", None), ("create", None)]
    plan = _plan(orchestrator)
    assert plan.mode == "split"
    assert [(p.start_date, p.end_date) for p in plan.phases] == [
        (START, dt.date(2024, 2, 20)),
        (dt.date(2024, 2, 21), dt.date(2024, 4, 10)),
    ]
    assert asyncio.run(orchestrator.analyze(_project())).total_allocated == 100


def test_split_with_milestones_requires_confirmation():
    store, orchestrator = _orchestrator([_milestone_record()])

    with pytest.raises(ConfirmationRequired):
        asyncio.run(orchestrator.split_estimate(_project()))
    assert store.writes() == []

    result = asyncio.run(orchestrator.split_estimate(_project(), confirm=True))

    assert result.deleted == 1
    plan = _plan(orchestrator)
    assert plan.milestones == []
    assert len(plan.phases) == 2


def test_split_twice_is_rejected_with_add_phase_remedy():
    _, orchestrator = _orchestrator()
    asyncio.run(orchestrator.split_estimate(_project()))

    with pytest.raises(ExclusivityError) as info:
        asyncio.run(orchestrator.split_estimate(_project(), confirm=True))

    assert info.value.decision.remedy == "Add Phase"


def test_add_phase_shrinks_last_phase_and_keeps_continuity():
    store, orchestrator = _orchestrator()
    asyncio.run(orchestrator.split_estimate(_project()))

    result = asyncio.run(orchestrator.add_phase(_project()))

    assert result.updated == 1
    plan = _plan(orchestrator)
    assert [p.name for p in plan.phases] == ["Phase 1", "Phase 2", "Phase 3"]
    assert plan.phases[1].end_date == dt.date(2024, 4, 4)
    assert (plan.phases[2].start_date, plan.phases[2].end_date) == (dt.date(2024, 4, 4), dt.date(2024, 4, 10))
    assert plan.phases[2].time_allocation == 0
    health = asyncio.run(orchestrator.validate(_project()))
    assert health.continuity.is_valid
    assert health.remedy is None


def test_add_phase_without_phases_is_rejected():
    _, orchestrator = _orchestrator()

    with pytest.raises(ExclusivityError) as info:
        asyncio.run(orchestrator.add_phase(_project()))

    assert info.value.decision.remedy == "Split estimate into phases"


def test_repair_pulls_back_earlier_phase_and_is_idempotent():
    store, orchestrator = _orchestrator(
        [_phase_record("a", START, dt.date(2024, 1, 11)), _phase_record("b", dt.date(2024, 1, 6), dt.date(2024, 1, 21))]
    )
    assert asyncio.run(orchestrator.validate(_project())).remedy == "Fix Overlaps"

    result = asyncio.run(orchestrator.repair_phases(_project()))

    assert result.updated == 1
    phase_a = _plan(orchestrator).phases[0]
    assert phase_a.end_date == dt.date(2024, 1, 6)
    writes = len(store.writes())
    again = asyncio.run(orchestrator.repair_phases(_project()))
    assert again.updated == 0
    assert len(store.writes()) == writes


def test_partial_repair_failure_reports_and_retry_finishes():
    store, orchestrator = _orchestrator(
        [
            _phase_record("a", START, dt.date(2024, 1, 11)),
            _phase_record("b", dt.date(2024, 1, 6), dt.date(2024, 1, 21)),
            _phase_record("c", dt.date(2024, 1, 16), dt.date(2024, 1, 31)),
        ]
    )
    store.fail_on("update", "b")

    with pytest.raises(BatchWriteError) as info:
        asyncio.run(orchestrator.repair_phases(_project()))

    assert info.value.succeeded == 1
    assert len(info.value.failures) == 1
    assert "Fix Overlaps" in info.value.remedy
    retry = asyncio.run(orchestrator.repair_phases(_project()))
    assert retry.updated == 1
    assert asyncio.run(orchestrator.validate(_project())).continuity.overlaps == []


def test_create_recurring_generates_instances_silently():
    store, orchestrator = _orchestrator()

    result = asyncio.run(
        orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 1, 22))
    )

    assert len(result.created) == 4
    plan = _plan(orchestrator)
    assert plan.mode == "recurring"
    assert [i.due_date for i in plan.instances] == [dt.date(2024, 1, 1), dt.date(2024, 1, 8), dt.date(2024, 1, 15)]
    assert all(i.template_id == plan.template.id for i in plan.instances)
    assert store.notifications == ["Created 'Standup'"]


def test_coverage_is_idempotent_and_extends_monotonically():
    store, orchestrator = _orchestrator()
    asyncio.run(orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 1, 22)))
    writes = len(store.writes())

    same = asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 1, 22)))
    assert same.created == []
    assert len(store.writes()) == writes

    fresh = AllocationOrchestrator(store)
    assert asyncio.run(fresh.ensure_recurring_coverage(_project(), dt.date(2024, 1, 22))).created == []

    more = asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 2, 5)))
    assert [i.name for i in more.created] == ["Standup 4", "Standup 5"]
    assert len(_plan(orchestrator).instances) == 5


def test_coverage_horizon_is_clamped_to_project_end():
    short = _project(end=dt.date(2024, 1, 20))
    _, orchestrator = _orchestrator()
    asyncio.run(orchestrator.create_recurring(short, "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 3, 1)))
    assert len(_plan(orchestrator, short).instances) == 3

    continuous = _project(end=dt.date(2024, 1, 20), continuous=True)
    _, orchestrator = _orchestrator()
    asyncio.run(orchestrator.create_recurring(continuous, "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 3, 1)))
    assert len(_plan(orchestrator, continuous).instances) == 9


def test_ensure_coverage_without_template_is_a_no_op():
    store, orchestrator = _orchestrator()

    result = asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 2, 1)))

    assert result.created == []
    assert store.writes() == []


def test_failed_instance_batch_can_be_regenerated():
    store, orchestrator = _orchestrator([_template_record()])
    store.fail_on("create")

    with pytest.raises(BatchWriteError) as info:
        asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 1, 22)))
    assert info.value.succeeded == 2

    retry = asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 1, 22)))

    assert len(retry.created) == 1
    dates = [i.due_date for i in _plan(orchestrator).instances]
    assert sorted(set(dates)) == sorted(dates)
    assert len(dates) == 3


def test_create_recurring_over_phases_requires_confirmation():
    store, orchestrator = _orchestrator()
    asyncio.run(orchestrator.split_estimate(_project()))
    writes = len(store.writes())

    with pytest.raises(ConfirmationRequired):
        asyncio.run(orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 1, 22)))
    assert len(store.writes()) == writes

    result = asyncio.run(
        orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, confirm=True, horizon=dt.date(2024, 1, 22))
    )
    assert result.deleted == 2
    plan = _plan(orchestrator)
    assert plan.phases == []
    assert plan.mode == "recurring"


def test_second_template_is_rejected():
    _, orchestrator = _orchestrator([_template_record()])

    with pytest.raises(ExclusivityError):
        asyncio.run(orchestrator.create_recurring(_project(), "Review", 1.0, MONDAYS, confirm=True))


def test_invalid_pattern_writes_nothing():
    store, orchestrator = _orchestrator()

    with pytest.raises(PatternValidationError) as info:
        asyncio.run(orchestrator.create_recurring(_project(), "Standup", 2.0, RecurringPattern.monthly_on_date(40)))

    assert info.value.errors
    assert store.writes() == []


def test_change_load_updates_template_and_instances_only():
    store, orchestrator = _orchestrator()
    asyncio.run(orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 1, 22)))
    before = [i.due_date for i in _plan(orchestrator).instances]

    result = asyncio.run(orchestrator.change_recurring_load(_project(), 3.5))

    assert result.updated == 4
    plan = _plan(orchestrator)
    assert plan.template.time_allocation == 3.5
    assert [i.time_allocation for i in plan.instances] == [3.5, 3.5, 3.5]
    assert [i.due_date for i in plan.instances] == before
    assert store.notifications == ["Created 'Standup'", "Updated 'Standup'"]

    with pytest.raises(PatternValidationError):
        asyncio.run(orchestrator.change_recurring_load(_project(), -1))


def test_change_pattern_regenerates_instances():
    _, orchestrator = _orchestrator()
    asyncio.run(orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 1, 22)))

    result = asyncio.run(
        orchestrator.change_recurring_pattern(_project(), RecurringPattern.monthly_on_date(15), dt.date(2024, 4, 1))
    )

    assert result.deleted == 4
    plan = _plan(orchestrator)
    assert plan.template.pattern == RecurringPattern.monthly_on_date(15)
    assert plan.template.name == "Standup"
    assert [(i.name, i.due_date) for i in plan.instances] == [
        ("Standup 1", dt.date(2024, 1, 15)),
        ("Standup 2", dt.date(2024, 2, 15)),
        ("Standup 3", dt.date(2024, 3, 15)),
    ]


def test_delete_recurring_clears_template_and_instances():
    _, orchestrator = _orchestrator([_milestone_record()])
    asyncio.run(orchestrator.create_recurring(_project(), "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 1, 22)))

    result = asyncio.run(orchestrator.delete_recurring(_project()))

    assert result.deleted == 4
    plan = _plan(orchestrator)
    assert plan.mode == "none"
    assert len(plan.milestones) == 1
    with pytest.raises(AllocationError):
        asyncio.run(orchestrator.delete_recurring(_project()))


def test_mixed_modes_are_reported_and_reset_keeps_milestones():
    _, orchestrator = _orchestrator(
        [_phase_record("a", START, dt.date(2024, 4, 10)), _template_record(), _milestone_record()]
    )

    health = asyncio.run(orchestrator.validate(_project()))
    assert not health.is_healthy
    assert health.remedy == "Delete All & Reset"

    result = asyncio.run(orchestrator.delete_all_and_reset(_project()))

    assert result.deleted == 2
    plan = _plan(orchestrator)
    assert plan.mode == "none"
    assert [m.name for m in plan.milestones] == ["Launch"]


def test_retry_refills_earliest_occurrence_when_latest_exists():
    store, orchestrator = _orchestrator([_template_record()])
    store.fail_on("create")

    with pytest.raises(BatchWriteError):
        asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 1, 16)))
    retry = asyncio.run(orchestrator.ensure_recurring_coverage(_project(), dt.date(2024, 1, 16)))

    assert [i.due_date for i in retry.created] == [dt.date(2024, 1, 1)]
    assert [i.due_date for i in _plan(orchestrator).instances] == [
        dt.date(2024, 1, 1),
        dt.date(2024, 1, 8),
        dt.date(2024, 1, 15),
    ]


def test_occurrence_on_last_project_day_is_generated():
    two_weeks = _project(end=dt.date(2024, 1, 15))
    _, orchestrator = _orchestrator()

    asyncio.run(orchestrator.create_recurring(two_weeks, "Standup", 2.0, MONDAYS, horizon=dt.date(2024, 3, 1)))

    assert [i.due_date for i in _plan(orchestrator, two_weeks).instances] == [
        dt.date(2024, 1, 1),
        dt.date(2024, 1, 8),
        dt.date(2024, 1, 15),
    ]


def test_change_pattern_on_mixed_plan_writes_nothing():
    store, orchestrator = _orchestrator([_phase_record("a", START, dt.date(2024, 4, 10)), _template_record()])

    with pytest.raises(ExclusivityError) as info:
        asyncio.run(orchestrator.change_recurring_pattern(_project(), RecurringPattern.monthly_on_date(15)))

    assert info.value.decision.remedy == "Delete All & Reset"
    assert store.writes() == []
    assert _plan(orchestrator).template.id == "t1"
