import pytest

from convoflow.contracts import WorkflowContext
from convoflow.db import TaskBoardDB
from convoflow.engine import WorkflowEngine
from convoflow.persistence import InMemoryWorkflowRepository
from convoflow.providers import ConversationTask
from convoflow.registry import seed_templates, to_template


@pytest.mark.asyncio
async def test_task_board_round_trip(tmp_path):
    board = TaskBoardDB(f"sqlite+aiosqlite:///{tmp_path / 'board.db'}")
    await board.create_task(
        ConversationTask(
            conversation_id="conv-1",
            workflow_task_id="task-1",
            title="Gather attendees",
            workflow_metadata={"stepId": "gather_attendees"},
        )
    )
    await board.create_task(
        ConversationTask(conversation_id="conv-2", workflow_task_id="task-2", title="Other")
    )

    await board.update_status("task-1", "in_progress")
    await board.update_status("unknown", "completed")

    tasks = await board.list_tasks("conv-1")
    assert len(tasks) == 1
    assert tasks[0].status == "in_progress"
    assert tasks[0].workflow_metadata == {"stepId": "gather_attendees"}
    assert tasks[0].is_workflow_generated is True
    await board.dispose()


@pytest.mark.asyncio
async def test_engine_mirrors_tasks_to_board(tmp_path):
    repo = InMemoryWorkflowRepository()
    await seed_templates(repo)
    board = TaskBoardDB(f"sqlite+aiosqlite:///{tmp_path / 'board.db'}")
    engine = WorkflowEngine(repository=repo, task_board=board)

    template = to_template(await repo.get_template("collect-feedback"))
    workflow = await engine.generate_workflow(
        template, WorkflowContext(conversation_id="conv-1")
    )

    tasks = await board.list_tasks("conv-1")
    assert [t.workflow_metadata["stepId"] for t in tasks] == [
        "define_questions",
        "select_audience",
        "set_deadline",
        "create_form",
        "distribute",
    ]
    assert tasks[0].status == "in_progress"
    assert tasks[0].workflow_task_id == workflow.task_ids["define_questions"]
    assert tasks[0].priority == "high"
    assert tasks[2].priority == "medium"
    await board.dispose()
