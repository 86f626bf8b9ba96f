"""Walk a meeting request through the convoflow engine."""

import asyncio

from convoflow import (
    ActionResult,
    InMemoryActionExecutor,
    InfoRequirement,
    RunStatus,
    WorkflowContext,
    WorkflowEngine,
)
from convoflow.persistence import InMemoryWorkflowRepository


async def book(request):
    print(f"   📅 booking {request.payload.get('startTime')} for {request.payload.get('attendees')}")
    return ActionResult(success=True, data={"eventId": "evt-42"})


async def scheduling_walkthrough():
    """Detect, gather the missing fields, then run to completion."""
    print("🚀 Scheduling walkthrough")

    executor = InMemoryActionExecutor({"schedule_meeting": book})
    engine = WorkflowEngine(repository=InMemoryWorkflowRepository(), executor=executor)
    await engine.seed_templates()

    context = WorkflowContext(
        conversation_id="demo",
        capabilities=["calendar"],
        existing_data={"attendees": ["sarah@example.com"]},
    )
    workflow = await engine.start_workflow(
        "Can you schedule a meeting with Sarah tomorrow?", context
    )
    print(f"✅ Workflow {workflow.id} from {workflow.template_name}")
    print(f"   skipped: {', '.join(workflow.skipped_steps) or '-'}")

    outcome = await engine.run_workflow(workflow)
    while outcome.status is RunStatus.AWAITING_INPUT:
        for prompt in outcome.prompts:
            print(f"   🤖 {prompt.message}")
        # Stand-in for the user's reply
        answers = {
            "startTime": "2026-10-20T14:00:00",
            "endTime": "2026-10-20T15:00:00",
            "confirmed": "yes",
        }
        outcome = await engine.run_workflow(workflow, answers)

    print(f"🏁 {outcome.status.value}: {', '.join(outcome.completed_steps)}")

    for opt in await engine.suggest_optimizations(workflow):
        print(f"   💡 {opt.type.value}: {opt.description}")


async def validation_example():
    """Validate values the way gather steps do."""
    print("\n🔎 Validation")

    engine = WorkflowEngine(repository=InMemoryWorkflowRepository())
    for value in (" Sarah@Example.COM ", "sarah@gmial.com", "not-an-email"):
        result = engine.validate_info(value, InfoRequirement(field="email", type="email"))
        status = "valid" if result.valid else "invalid"
        print(f"   {value!r}: {status} {result.normalized_value or ''} {result.suggestions}")


if __name__ == "__main__":
    asyncio.run(scheduling_walkthrough())
    asyncio.run(validation_example())
