"""End to end scheduling flow against the SQLite store."""

import pytest

from convoflow.contracts import (
    InvalidTransitionError,
    OptimizationType,
    TaskStatus,
    WorkflowContext,
    WorkflowNotFoundError,
    WorkflowStatus,
)
from convoflow.engine import WorkflowEngine
from convoflow.execute import RunStatus
from convoflow.persistence import SQLiteWorkflowRepository
from convoflow.providers import InMemoryActionExecutor

MESSAGE = "Can you schedule a meeting with Sarah tomorrow?"


class BrokenEdges(SQLiteWorkflowRepository):
    async def create_dependency(self, dependency):
        raise RuntimeError("foreign key violation")


async def _engine(path, repo_cls=SQLiteWorkflowRepository, **kwargs) -> WorkflowEngine:
    engine = WorkflowEngine(repository=repo_cls(path), **kwargs)
    await engine.seed_templates()
    return engine


def _context(**existing) -> WorkflowContext:
    return WorkflowContext(
        conversation_id="conv-1",
        user_id="user-1",
        capabilities=["calendar"],
        existing_data=existing,
    )


@pytest.mark.asyncio
async def test_schedule_meeting_end_to_end(tmp_path):
    executor = InMemoryActionExecutor()
    engine = await _engine(tmp_path / "wf.db", executor=executor)

    workflow = await engine.start_workflow(
        MESSAGE, _context(attendees=["sarah@example.com"])
    )
    assert workflow.template_id == "schedule-meeting"
    assert workflow.skipped_steps == ["gather_attendees"]

    outcome = await engine.run_workflow(workflow)
    assert outcome.status is RunStatus.AWAITING_INPUT
    assert outcome.step_id == "gather_datetime"
    assert outcome.missing == ["startTime", "endTime"]

    outcome = await engine.run_workflow(
        workflow, {"startTime": "2026-10-20T09:30:00", "endTime": "2026-10-20T10:00:00"}
    )
    assert outcome.status is RunStatus.COMPLETED
    assert [r.type for r in executor.requests] == [
        "check_availability",
        "schedule_meeting",
        "send_notification",
    ]
    assert executor.requests[1].payload["startTime"] == "2026-10-20T09:30:00"
    assert executor.requests[1].payload["attendees"] == ["sarah@example.com"]

    stored = await engine.repository.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.COMPLETED
    template = await engine.repository.get_template("schedule-meeting")
    assert template.success_rate == 100.0
    patterns = await engine.repository.list_patterns("schedule-meeting")
    assert {p.pattern_type for p in patterns} >= {"scheduling_preference"}


@pytest.mark.asyncio
async def test_workflow_resumes_after_restart(tmp_path):
    path = tmp_path / "wf.db"
    first = await _engine(path)
    workflow = await first.start_workflow(MESSAGE, _context())
    outcome = await first.run_workflow(workflow)
    assert outcome.step_id == "gather_attendees"

    second = await _engine(path)
    loaded = await second.load_workflow(workflow.id)
    assert loaded.status is WorkflowStatus.ACTIVE
    assert [s.id for s in loaded.steps] == [s.id for s in workflow.steps]
    assert loaded.task_ids == workflow.task_ids
    assert loaded.context.capabilities == ["calendar"]

    missing = await second.identify_missing_info(loaded, loaded.task_ids["gather_attendees"])
    assert [r.field for r in missing] == ["attendees"]

    outcome = await second.run_workflow(
        loaded,
        {
            "attendees": ["Sarah@Example.com", "tom@example.com"],
            "startTime": "2026-10-20T14:00:00",
            "endTime": "2026-10-20T15:00:00",
        },
    )
    assert outcome.status is RunStatus.COMPLETED
    attendees = await second.repository.get_task(loaded.task_ids["gather_attendees"])
    assert attendees.data_collected == {
        "attendees": ["sarah@example.com", "tom@example.com"]
    }


@pytest.mark.asyncio
async def test_degraded_dependencies_survive_reload(tmp_path):
    path = tmp_path / "wf.db"
    engine = await _engine(path, repo_cls=BrokenEdges)
    workflow = await engine.start_workflow(MESSAGE, _context())

    assert workflow.status is WorkflowStatus.ACTIVE
    assert len(workflow.degraded_edges) == 9

    loaded = await (await _engine(path)).load_workflow(workflow.id)
    assert loaded.degraded_edges == workflow.degraded_edges


@pytest.mark.asyncio
async def test_cancel_workflow(tmp_path):
    engine = await _engine(tmp_path / "wf.db")
    workflow = await engine.start_workflow(MESSAGE, _context())

    await engine.cancel_workflow(workflow.id, "user changed their mind")

    stored = await engine.repository.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.CANCELLED
    assert stored.failure_reason == "user changed their mind"
    with pytest.raises(InvalidTransitionError):
        await engine.cancel_workflow(workflow.id)
    with pytest.raises(WorkflowNotFoundError):
        await engine.cancel_workflow("missing")
    with pytest.raises(WorkflowNotFoundError):
        await engine.load_workflow("missing")


@pytest.mark.asyncio
async def test_repeated_skips_are_suggested(tmp_path):
    engine = await _engine(tmp_path / "wf.db")
    for _ in range(2):
        workflow = await engine.start_workflow(
            MESSAGE, _context(attendees=["sarah@example.com"])
        )

    suggestions = await engine.suggest_optimizations(workflow)
    skip = next(s for s in suggestions if s.type is OptimizationType.SKIP_STEP)
    assert skip.suggestion["stepsToRemove"] == ["gather_attendees"]
    assert skip.suggestion["skipCounts"] == {"gather_attendees": 2}


@pytest.mark.asyncio
async def test_tasks_are_claimed_once(tmp_path):
    path = tmp_path / "wf.db"
    engine = await _engine(path)
    workflow = await engine.start_workflow(MESSAGE, _context())
    task_id = workflow.task_ids["gather_datetime"]

    # a second engine over the same store loses the claim
    other = await _engine(path)
    claimed = await engine.scheduler.activate_task(task_id)
    again = await other.scheduler.activate_task(task_id)
    assert claimed.status is TaskStatus.ACTIVE
    assert again.started_at == claimed.started_at

    started = await engine.repository.list_executions(workflow.id, action="task_started")
    assert [e.task_id for e in started].count(task_id) == 1
