import pytest

from convoflow.contracts import (
    MemoryEntry,
    StepDefinition,
    TaskStatus,
    TemplateStructureError,
    WorkflowContext,
    WorkflowStatus,
    WorkflowTemplate,
)
from convoflow.generator import WorkflowGenerator, can_skip_step, plan_steps
from convoflow.persistence import InMemoryWorkflowRepository
from convoflow.providers import InMemoryTaskBoard
from convoflow.registry import default_scheduling_template
from convoflow.scheduler import TaskScheduler


class FlakyDependencies(InMemoryWorkflowRepository):
    async def create_dependency(self, dependency):
        raise RuntimeError("constraint violation")


def _step(**data) -> StepDefinition:
    data.setdefault("title", data["id"])
    return StepDefinition.model_validate(data)


def _context(**existing) -> WorkflowContext:
    return WorkflowContext(conversation_id="conv-1", existing_data=existing)


def test_can_skip_step_requires_all_fields_known():
    gather = _step(id="g", type="gather", requiredData=["email", "phone"])
    assert not can_skip_step(gather, _context(email="a@b.co"), 0.7)
    assert can_skip_step(gather, _context(email="a@b.co", phone="123"), 0.7)


def test_can_skip_step_kinds_and_empty_requirements():
    execute = _step(id="e", type="execute", requiredData=["email"])
    flagged = _step(id="f", type="execute", requiredData=["email"], skip_if_known=True)
    nothing = _step(id="n", type="gather")
    context = _context(email="a@b.co")

    assert not can_skip_step(execute, context, 0.7)
    assert can_skip_step(flagged, context, 0.7)
    assert not can_skip_step(nothing, context, 0.7)


def test_can_skip_step_uses_user_info_memories():
    step = _step(id="g", type="gather", requiredData=["email"])
    context = WorkflowContext(
        conversation_id="c",
        memories=[MemoryEntry(type="user_info", content={"email": "a@b.co"})],
    )
    assert can_skip_step(step, context, 0.7)

    unrelated = WorkflowContext(
        conversation_id="c",
        memories=[MemoryEntry(type="note", content={"email": "a@b.co"})],
    )
    assert not can_skip_step(step, unrelated, 0.7)


def test_plan_steps_only_links_to_earlier_steps():
    steps = [
        _step(id="a", type="gather", requiredData=["x"], dependsOn=["b"]),
        _step(id="b", type="gather", requiredData=["y"], dependsOn=["a", "ghost"]),
        _step(id="c", type="execute", dependsOn=["a", "b"]),
    ]
    adapted, skipped = plan_steps(steps, _context(), 0.7)

    assert skipped == []
    deps = {s.id: s.depends_on for s in adapted}
    assert deps == {"a": [], "b": ["a"], "c": ["a", "b"]}


def test_plan_steps_removes_skipped_dependencies():
    steps = [
        _step(id="a", type="gather", requiredData=["x"]),
        _step(id="b", type="execute", dependsOn=["a"]),
    ]
    adapted, skipped = plan_steps(steps, _context(x=1), 0.7)
    assert skipped == ["a"]
    assert [s.id for s in adapted] == ["b"]
    assert adapted[0].depends_on == []


@pytest.mark.asyncio
async def test_known_context_skips_gather_steps():
    repo = InMemoryWorkflowRepository()
    generator = WorkflowGenerator(repo)
    context = _context(
        attendees=["sarah@example.com"],
        startTime="2024-03-15T14:00:00",
        endTime="2024-03-15T15:00:00",
    )

    workflow = await generator.generate_workflow(default_scheduling_template(), context)

    assert workflow.status is WorkflowStatus.ACTIVE
    assert workflow.template_id is None
    assert workflow.skipped_steps == ["gather_attendees", "gather_datetime"]
    assert [s.id for s in workflow.steps] == [
        "check_availability",
        "confirm_details",
        "book_meeting",
    ]

    next_task = await TaskScheduler(repo).get_next_task(workflow.id)
    assert next_task.step_id == "check_availability"
    assert next_task.status is TaskStatus.ACTIVE

    skipped = await repo.list_executions(workflow.id, action="task_skipped")
    assert [e.input_data["step_id"] for e in skipped] == workflow.skipped_steps
    created = await repo.list_executions(workflow.id, action="workflow_created")
    assert created[0].input_data == {"template": "Schedule Meeting", "stepsCount": 3}


@pytest.mark.asyncio
async def test_generated_graph_is_persisted():
    repo = InMemoryWorkflowRepository()
    workflow = await WorkflowGenerator(repo).generate_workflow(
        default_scheduling_template(), _context()
    )

    tasks = await repo.list_tasks(workflow.id)
    assert [t.step_id for t in tasks] == [
        "gather_attendees",
        "gather_datetime",
        "check_availability",
        "confirm_details",
        "book_meeting",
    ]
    assert tasks[0].prerequisites == [
        {"field": "attendees", "type": None, "required": True, "options": None, "constraints": {}}
    ]
    assert tasks[-1].metadata == {"action": "schedule_meeting"}

    step_of = {t.id: t.step_id for t in tasks}
    edges = {
        (step_of[d.task_id], step_of[d.depends_on_task_id])
        for d in await repo.list_workflow_dependencies(workflow.id)
    }
    assert edges == {
        ("check_availability", "gather_datetime"),
        ("confirm_details", "gather_attendees"),
        ("confirm_details", "gather_datetime"),
        ("book_meeting", "confirm_details"),
        ("book_meeting", "check_availability"),
    }

    stored = await repo.get_workflow(workflow.id)
    assert stored.status is WorkflowStatus.ACTIVE
    assert stored.started_at is not None
    assert [s["id"] for s in stored.plan] == [s.id for s in workflow.steps]


@pytest.mark.asyncio
async def test_dependency_failures_degrade_instead_of_aborting():
    repo = FlakyDependencies()
    workflow = await WorkflowGenerator(repo).generate_workflow(
        default_scheduling_template(), _context()
    )

    assert workflow.status is WorkflowStatus.ACTIVE
    assert len(workflow.degraded_edges) == 5
    assert all("constraint violation" in e.reason for e in workflow.degraded_edges)
    logged = await repo.list_executions(workflow.id, action="dependency_failed")
    assert len(logged) == 5
    assert await repo.list_workflow_dependencies(workflow.id) == []


@pytest.mark.asyncio
async def test_non_json_structure_raises_for_non_scheduling():
    template = WorkflowTemplate(
        id="support-broken",
        name="Broken Support",
        category="support",
        base_structure="this is not json",
    )
    repo = InMemoryWorkflowRepository()
    with pytest.raises(TemplateStructureError):
        await WorkflowGenerator(repo).generate_workflow(template, _context())
    assert await repo.list_workflows() == []


@pytest.mark.asyncio
async def test_non_json_scheduling_template_uses_default_steps():
    template = WorkflowTemplate(
        id="sched-broken",
        name="Broken Scheduling",
        category="scheduling",
        base_structure="this is not json",
    )
    workflow = await WorkflowGenerator(InMemoryWorkflowRepository()).generate_workflow(
        template, _context()
    )
    assert workflow.template_id == "sched-broken"
    assert len(workflow.steps) == 5


@pytest.mark.asyncio
async def test_steps_are_adapted_and_mirrored():
    template = WorkflowTemplate(
        id="call",
        name="Call",
        category="scheduling",
        base_structure={
            "steps": [
                {"id": "ask_topic", "type": "gather", "title": "Topic", "requiredData": ["topic"]},
                {"id": "schedule_call", "type": "execute", "title": "Call", "dependsOn": ["ask_topic"], "critical": True},
            ]
        },
    )
    board = InMemoryTaskBoard()
    context = WorkflowContext(conversation_id="c9", timezone="Europe/Paris", language="fr")
    workflow = await WorkflowGenerator(InMemoryWorkflowRepository(), board).generate_workflow(
        template, context
    )

    assert workflow.step("ask_topic").extension.language == "fr"
    assert workflow.step("schedule_call").extension.timezone == "Europe/Paris"
    assert workflow.step("schedule_call").extension.language is None

    mirrored = await board.list_tasks("c9")
    assert [t.title for t in mirrored] == ["Topic", "Call"]
    assert mirrored[0].status == "in_progress"
    assert mirrored[1].priority == "high"
    assert mirrored[1].workflow_metadata["stepId"] == "schedule_call"
