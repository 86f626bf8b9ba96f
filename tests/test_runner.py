import pytest

import convoflow.execute as execute
from convoflow.contracts import TaskStatus, WorkflowContext, WorkflowStatus, WorkflowTemplate
from convoflow.engine import WorkflowEngine
from convoflow.execute import RunStatus
from convoflow.persistence import InMemoryWorkflowRepository
from convoflow.providers import ActionResult, InMemoryActionExecutor
from convoflow.registry import default_scheduling_template, seed_templates, to_template


async def _engine(executor=None, **kwargs) -> WorkflowEngine:
    repo = InMemoryWorkflowRepository()
    await seed_templates(repo)
    return WorkflowEngine(repository=repo, executor=executor, **kwargs)


async def _start(engine: WorkflowEngine, template_id: str, **existing):
    template = to_template(await engine.repository.get_template(template_id))
    context = WorkflowContext(conversation_id="conv-1", existing_data=existing)
    return await engine.generate_workflow(template, context)


async def _no_wait(attempt, base=1.5, jitter=0.5):
    return 0.0


@pytest.mark.asyncio
async def test_run_stops_for_missing_information():
    engine = await _engine()
    workflow = await _start(engine, "create-support-ticket")

    outcome = await engine.run_workflow(workflow)

    assert outcome.status is RunStatus.AWAITING_INPUT
    assert outcome.step_id == "gather_issue"
    assert outcome.missing == ["issue_description", "severity"]
    assert len(outcome.prompts) >= 1
    assert outcome.completed_steps == []


@pytest.mark.asyncio
async def test_answers_complete_the_workflow():
    executor = InMemoryActionExecutor()
    engine = await _engine(executor)
    workflow = await _start(engine, "create-support-ticket")

    outcome = await engine.run_workflow(
        workflow,
        {
            "issue_description": "Printer is on fire",
            "severity": "high",
            "contact_email": "  Bob@Example.COM ",
        },
    )

    assert outcome.status is RunStatus.COMPLETED
    assert outcome.completed_steps == [
        "gather_issue",
        "gather_contact",
        "categorize",
        "create_ticket",
        "send_confirmation",
    ]
    assert [r.type for r in executor.requests] == ["create_ticket", "send_email"]
    assert executor.requests[0].payload["contact_email"] == "bob@example.com"
    assert executor.requests[0].workflow_id == workflow.id

    stored = await engine.repository.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.COMPLETED
    template = await engine.repository.get_template("create-support-ticket")
    assert template.success_rate == 100.0


@pytest.mark.asyncio
async def test_invalid_answer_is_reported_per_field():
    engine = await _engine()
    workflow = await _start(
        engine, "create-support-ticket", issue_description="Broken", severity="low"
    )
    # gather_issue was skipped, so gather_contact is first
    assert workflow.skipped_steps == ["gather_issue"]

    outcome = await engine.run_workflow(workflow, {"contact_email": "not-an-email"})

    assert outcome.status is RunStatus.AWAITING_INPUT
    assert outcome.step_id == "gather_contact"
    assert outcome.missing == ["contact_email"]
    assert outcome.errors == {"contact_email": ["Invalid email address format"]}

    task = await engine.repository.get_task(outcome.task_id)
    assert task.status is TaskStatus.ACTIVE


@pytest.mark.asyncio
async def test_failed_action_fails_the_workflow():
    executor = InMemoryActionExecutor(
        {"create_ticket": lambda req: ActionResult(success=False, error="ticket system down")}
    )
    engine = await _engine(executor)
    workflow = await _start(
        engine,
        "create-support-ticket",
        issue_description="Broken",
        severity="low",
        contact_email="bob@example.com",
    )

    outcome = await engine.run_workflow(workflow)

    assert outcome.status is RunStatus.FAILED
    assert outcome.step_id == "create_ticket"
    assert outcome.error == "ticket system down"
    assert len(executor.requests) == 1

    stored = await engine.repository.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.FAILED
    assert stored.failure_reason == "ticket system down"
    task = await engine.repository.get_task(outcome.task_id)
    assert task.status is TaskStatus.FAILED

    again = await engine.run_workflow(workflow)
    assert again.status is RunStatus.FAILED


@pytest.mark.asyncio
async def test_retryable_action_is_retried(monkeypatch):
    monkeypatch.setattr(execute, "schedule_retry", _no_wait)
    calls = []

    def flaky(request):
        calls.append(request)
        if len(calls) < 3:
            raise ConnectionError("calendar unavailable")
        return ActionResult(success=True, data={"eventId": "evt-1"})

    executor = InMemoryActionExecutor({"schedule_meeting": flaky})
    engine = await _engine(executor)
    workflow = await _start(
        engine,
        "schedule-meeting",
        attendees=["sarah@example.com"],
        startTime="2026-10-20T10:00:00",
        endTime="2026-10-20T10:30:00",
    )
    assert workflow.skipped_steps == ["gather_attendees", "gather_datetime"]

    outcome = await engine.run_workflow(workflow)

    assert outcome.status is RunStatus.COMPLETED
    assert len(calls) == 3
    assert outcome.completed_steps[-2:] == ["book_meeting", "notify_success"]
    book = await engine.repository.get_task(workflow.task_ids["book_meeting"])
    assert book.data_collected == {"eventId": "evt-1"}


@pytest.mark.asyncio
async def test_retries_give_up_after_max_attempts(monkeypatch):
    monkeypatch.setattr(execute, "schedule_retry", _no_wait)
    executor = InMemoryActionExecutor(
        {"schedule_meeting": lambda req: ActionResult(success=False, error="busy")}
    )
    engine = await _engine(executor)
    workflow = await _start(
        engine,
        "schedule-meeting",
        attendees=["sarah@example.com"],
        startTime="2026-10-20T10:00:00",
        endTime="2026-10-20T10:30:00",
    )

    outcome = await engine.run_workflow(workflow)

    assert outcome.status is RunStatus.FAILED
    assert outcome.step_id == "book_meeting"
    booking = [r for r in executor.requests if r.type == "schedule_meeting"]
    assert len(booking) == engine.config.engine.max_action_attempts


@pytest.mark.asyncio
async def test_confirmation_is_requested_when_required():
    engine = await _engine(require_confirmation=True)
    workflow = await _start(
        engine,
        "send-team-update",
        recipients="team",
        subject="Release",
        message="Shipped!",
    )

    outcome = await engine.run_workflow(workflow)
    assert outcome.status is RunStatus.AWAITING_INPUT
    assert outcome.step_id == "review"
    assert outcome.missing == ["confirmed"]
    assert len(outcome.prompts) == 1

    declined = await engine.run_workflow(workflow, {"confirmed": "no"})
    assert declined.status is RunStatus.AWAITING_INPUT

    done = await engine.run_workflow(workflow, {"confirmed": "Yes"})
    assert done.status is RunStatus.COMPLETED
    assert done.completed_steps == ["review", "send"]


@pytest.mark.asyncio
async def test_validate_step_checks_time_range():
    engine = await _engine()
    template = WorkflowTemplate(
        id="range-check",
        name="Range Check",
        category="custom",
        base_structure={
            "steps": [{"id": "check_range", "type": "validate", "title": "Check times"}]
        },
    )
    context = WorkflowContext(
        conversation_id="conv-1",
        existing_data={
            "startTime": "2026-10-20T10:00:00",
            "endTime": "2026-10-20T09:00:00",
        },
    )
    workflow = await engine.generate_workflow(template, context)

    outcome = await engine.run_workflow(workflow)

    assert outcome.status is RunStatus.FAILED
    assert outcome.error == "End time must be after start time"


@pytest.mark.asyncio
async def test_answered_times_are_checked_by_validate_step():
    engine = await _engine()
    template = WorkflowTemplate(
        id="answered-range",
        name="Answered Range",
        category="custom",
        base_structure={
            "steps": [
                {
                    "id": "gather_start",
                    "type": "gather",
                    "title": "Start",
                    "requiredData": ["startTime"],
                    "prerequisites": [
                        {"field": "startTime", "type": "datetime", "required": True}
                    ],
                },
                {
                    "id": "gather_end",
                    "type": "gather",
                    "title": "End",
                    "requiredData": ["endTime"],
                    "dependsOn": ["gather_start"],
                    "prerequisites": [
                        {"field": "endTime", "type": "datetime", "required": True}
                    ],
                },
                {
                    "id": "check_range",
                    "type": "validate",
                    "title": "Check times",
                    "dependsOn": ["gather_start", "gather_end"],
                },
            ]
        },
    )
    workflow = await engine.generate_workflow(
        template, WorkflowContext(conversation_id="conv-1")
    )

    outcome = await engine.run_workflow(
        workflow,
        {"startTime": "2025-03-10T14:00:00", "endTime": "2025-03-10T13:00:00"},
    )

    assert outcome.status is RunStatus.FAILED
    assert outcome.step_id == "check_range"
    assert outcome.error == "End time must be after start time"
    assert outcome.completed_steps == ["gather_start", "gather_end"]


@pytest.mark.asyncio
async def test_reversed_meeting_times_are_asked_again():
    executor = InMemoryActionExecutor()
    engine = await _engine(executor)
    context = WorkflowContext(
        conversation_id="conv-1", existing_data={"attendees": ["sarah@example.com"]}
    )
    workflow = await engine.generate_workflow(default_scheduling_template(), context)

    outcome = await engine.run_workflow(
        workflow,
        {"startTime": "2025-03-10T14:00:00", "endTime": "2025-03-10T13:00:00"},
    )

    assert outcome.status is RunStatus.AWAITING_INPUT
    assert outcome.step_id == "gather_datetime"
    assert outcome.missing == ["endTime"]
    assert outcome.errors == {"endTime": ["End time must be after start time"]}
    assert executor.requests == []

    outcome = await engine.run_workflow(
        workflow,
        {"startTime": "2025-03-10T14:00:00Z", "endTime": "2025-03-10T15:00:00Z"},
    )

    assert outcome.status is RunStatus.COMPLETED
    booking = [r for r in executor.requests if r.type == "schedule_meeting"]
    assert booking[0].payload["startTime"] == "2025-03-10T14:00:00+00:00"
