"""Command line interface for the convoflow workflow engine."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import typer

from .contracts import FieldType, InfoRequirement, WorkflowContext, WorkflowError
from .engine import WorkflowEngine
from .persistence import get_repository

app = typer.Typer(help="CLI for convoflow workflows")

# Command groups
template_app = typer.Typer(help="Commands for managing workflow templates")
workflow_app = typer.Typer(help="Commands for managing workflows")

app.add_typer(template_app, name="template")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
) -> None:
    """Convoflow CLI entry point."""
    logging.basicConfig(level=log_level.upper())


def _engine() -> WorkflowEngine:
    return WorkflowEngine(repository=get_repository())


def _parse_pairs(items: Optional[List[str]]) -> Dict[str, Any]:
    """Turn ``key=value`` options into a dict, decoding JSON values."""
    data: Dict[str, Any] = {}
    for item in items or []:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        try:
            data[key] = json.loads(raw)
        except ValueError:
            data[key] = raw
    return data


@template_app.command("list")
def template_list(
    category: Optional[str] = typer.Option(None, help="Only this category"),
) -> None:
    """List active templates, best success rate first."""
    repo = get_repository()
    templates = asyncio.run(repo.list_templates(category=category))
    if not templates:
        typer.echo("No templates found")
        return
    for tpl in templates:
        typer.echo(f"{tpl.id}\t{tpl.category}\t{tpl.success_rate:.1f}\t{tpl.name}")


@template_app.command("seed")
def template_seed() -> None:
    """Install the built-in template catalog into the configured store."""
    created = asyncio.run(_engine().seed_templates())
    typer.echo(f"Seeded {len(created)} template(s)")


@workflow_app.command("detect")
def workflow_detect(
    message: str,
    capability: Optional[List[str]] = typer.Option(
        None, "--capability", "-c", help="Capability the caller offers"
    ),
) -> None:
    """
    Show which template a message would trigger.

    Example:
        convoflow workflow detect "Can you schedule a meeting with Sarah tomorrow?"
        # Output: schedule-meeting    Schedule Meeting (scheduling)
    """
    context = (
        WorkflowContext(conversation_id="cli", capabilities=capability)
        if capability
        else None
    )
    template = asyncio.run(_engine().detect_workflow_need(message, context))
    if template is None:
        typer.echo("No workflow needed")
        return
    typer.echo(f"{template.id}\t{template.name} ({template.category})")


@workflow_app.command("start")
def workflow_start(
    message: str,
    conversation: str = typer.Option("cli", help="Conversation id"),
    user: Optional[str] = typer.Option(None, help="User id"),
    data: Optional[List[str]] = typer.Option(
        None, "--data", "-d", help="Known data as key=value (JSON values allowed)"
    ),
    capability: Optional[List[str]] = typer.Option(None, "--capability", "-c"),
    timezone: Optional[str] = typer.Option(None, help="User timezone"),
) -> None:
    """Detect a workflow for MESSAGE and instantiate it."""
    context = WorkflowContext(
        conversation_id=conversation,
        user_id=user,
        existing_data=_parse_pairs(data),
        capabilities=capability or [],
        timezone=timezone,
    )
    try:
        workflow = asyncio.run(_engine().start_workflow(message, context))
    except WorkflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if workflow is None:
        typer.echo("No workflow needed")
        return
    typer.echo(f"Workflow {workflow.id} started from {workflow.template_name}")
    for step in workflow.steps:
        typer.echo(f"- {step.id}: {step.title}")
    for step_id in workflow.skipped_steps:
        typer.echo(f"- {step_id}: skipped")


@workflow_app.command("list")
def workflow_list(
    template: Optional[str] = typer.Option(None, help="Only workflows of this template"),
) -> None:
    """List all workflows with their current status."""
    repo = get_repository()
    workflows = asyncio.run(repo.list_workflows(template))
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status.value}\t{wf.template_name or '-'}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """
    Show a workflow and the status of each of its tasks.

    Example:
        convoflow workflow show 4f0c...
        # Output: Workflow 4f0c...: active (Schedule Meeting)
        #         - gather_attendees: completed
        #         - check_availability: pending
    """
    repo = get_repository()

    async def _load():
        return await repo.get_workflow(workflow_id), await repo.list_tasks(workflow_id)

    wf, tasks = asyncio.run(_load())
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    typer.echo(f"Workflow {wf.id}: {wf.status.value} ({wf.template_name or '-'})")
    if wf.failure_reason:
        typer.echo(f"Failure: {wf.failure_reason}")
    if wf.skipped_steps:
        typer.echo(f"Skipped: {', '.join(wf.skipped_steps)}")
    for task in tasks:
        line = f"- {task.step_id}: {task.status.value}"
        if task.data_collected:
            line += f" {json.dumps(task.data_collected, default=str)}"
        if task.error:
            line += f" ({task.error})"
        typer.echo(line)


@workflow_app.command("next")
def workflow_next(workflow_id: str) -> None:
    """Show the next runnable task of a workflow."""
    task = asyncio.run(_engine().get_next_task(workflow_id))
    if task is None:
        typer.echo("No runnable task")
        return
    typer.echo(f"{task.id}\t{task.step_id}\t{task.status.value}\t{task.title}")


@workflow_app.command("complete")
def workflow_complete(
    task_id: str,
    data: Optional[List[str]] = typer.Option(None, "--data", "-d"),
) -> None:
    """Mark a task completed with the data collected for it."""
    asyncio.run(_engine().complete_task(task_id, _parse_pairs(data)))
    typer.echo(f"Task {task_id} completed")


@workflow_app.command("cancel")
def workflow_cancel(
    workflow_id: str,
    reason: Optional[str] = typer.Option(None, help="Why the workflow is cancelled"),
) -> None:
    """Cancel a workflow that has not finished."""
    try:
        asyncio.run(_engine().cancel_workflow(workflow_id, reason))
    except WorkflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {workflow_id} cancelled")


@workflow_app.command("missing")
def workflow_missing(
    workflow_id: str,
    task: Optional[str] = typer.Option(None, help="Task id (defaults to the next task)"),
) -> None:
    """List the information a task still needs and how to ask for it."""
    engine = _engine()

    async def _missing():
        workflow = await engine.load_workflow(workflow_id)
        task_id = task
        if task_id is None:
            next_task = await engine.get_next_task(workflow_id)
            if next_task is None:
                return [], []
            task_id = next_task.id
        requirements = await engine.identify_missing_info(workflow, task_id)
        return requirements, engine.build_conversation_flow(requirements)

    try:
        missing, prompts = asyncio.run(_missing())
    except WorkflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not missing:
        typer.echo("Nothing missing")
        return
    for requirement in missing:
        typer.echo(f"{requirement.field}\t{requirement.type.value}")
    for prompt in prompts:
        typer.echo(f"> {prompt.message}")


@workflow_app.command("optimize")
def workflow_optimize(workflow_id: str) -> None:
    """Suggest optimisations for a workflow from its history."""
    engine = _engine()

    async def _suggest():
        return await engine.suggest_optimizations(await engine.load_workflow(workflow_id))

    try:
        suggestions = asyncio.run(_suggest())
    except WorkflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not suggestions:
        typer.echo("No suggestions")
        return
    for opt in suggestions:
        typer.echo(
            f"{opt.type.value}\t{opt.impact.value}\t{opt.confidence:.2f}\t{opt.description}"
        )


@app.command("validate")
def validate(
    value: str,
    field_type: FieldType = typer.Option(FieldType.TEXT, "--type", help="Field type"),
    field: str = typer.Option("value", help="Field name used in messages"),
    option: Optional[List[str]] = typer.Option(None, "--option", help="Allowed option"),
) -> None:
    """Validate and normalise a single value."""
    requirement = InfoRequirement(field=field, type=field_type, options=option)
    result = _engine().validate_info(value, requirement)
    if result.valid:
        typer.echo(f"valid\t{result.normalized_value}")
    else:
        for error in result.errors:
            typer.secho(error, fg=typer.colors.RED)
    for suggestion in result.suggestions:
        typer.echo(f"suggestion: {suggestion}")
    for warning in result.warnings:
        typer.echo(f"warning: {warning}")
    if not result.valid:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
