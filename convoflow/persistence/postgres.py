"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import asyncpg

from ..contracts import TaskStatus, WorkflowStatus, utcnow
from .models import (
    DependencyRecord,
    ExecutionRecord,
    LearningRecord,
    TaskRecord,
    TemplateRecord,
    WorkflowRecord,
    canonical_json,
)
from .repository import WorkflowRepository

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS workflow_templates (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        category TEXT NOT NULL,
        base_structure TEXT,
        required_capabilities JSONB NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        success_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflows (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        template_id TEXT,
        template_name TEXT,
        category TEXT,
        status TEXT NOT NULL,
        context JSONB NOT NULL,
        plan JSONB NOT NULL,
        skipped_steps JSONB NOT NULL,
        failure_reason TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_tasks (
        id TEXT PRIMARY KEY,
        workflow_id TEXT NOT NULL,
        parent_task_id TEXT,
        step_id TEXT NOT NULL,
        task_type TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT NOT NULL,
        prerequisites JSONB NOT NULL,
        validation_rules JSONB NOT NULL,
        metadata JSONB NOT NULL,
        data_collected JSONB NOT NULL,
        error TEXT,
        sequence INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL,
        started_at TIMESTAMPTZ,
        completed_at TIMESTAMPTZ,
        duration_ms BIGINT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_dependencies (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        depends_on_task_id TEXT NOT NULL,
        dependency_type TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_executions (
        id SERIAL PRIMARY KEY,
        workflow_id TEXT NOT NULL,
        task_id TEXT,
        action TEXT NOT NULL,
        actor TEXT NOT NULL,
        input_data JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_learning (
        id TEXT PRIMARY KEY,
        template_id TEXT NOT NULL,
        pattern_type TEXT NOT NULL,
        pattern_data JSONB NOT NULL,
        pattern_key TEXT NOT NULL,
        confidence_score DOUBLE PRECISION NOT NULL,
        occurrence_count INTEGER NOT NULL,
        success_count INTEGER NOT NULL,
        first_observed TIMESTAMPTZ NOT NULL,
        last_observed TIMESTAMPTZ NOT NULL
    )
    """,
)


def _decode(row: asyncpg.Record, *columns: str) -> dict[str, Any]:
    data = dict(row)
    for column in columns:
        value = data.get(column)
        if isinstance(value, str):
            data[column] = json.loads(value)
    return data


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        for statement in _SCHEMA:
            await conn.execute(statement)

    async def _execute(self, query: str, *params: Any) -> str:
        conn = await self._connect()
        try:
            return await conn.execute(query, *params)
        finally:
            await conn.close()

    async def _fetchrow(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    async def _fetch(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    @staticmethod
    def _template(row: asyncpg.Record) -> TemplateRecord:
        data = _decode(row, "required_capabilities")
        raw = data.get("base_structure")
        if raw is not None:
            try:
                data["base_structure"] = json.loads(raw)
            except ValueError:
                data["base_structure"] = raw
        return TemplateRecord.model_validate(data)

    # ------------------------------------------------------------------
    async def save_template(self, template: TemplateRecord) -> None:
        structure = template.base_structure
        await self._execute(
            """
            INSERT INTO workflow_templates
                (id, name, category, base_structure, required_capabilities,
                 is_active, success_rate, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                category = EXCLUDED.category,
                base_structure = EXCLUDED.base_structure,
                required_capabilities = EXCLUDED.required_capabilities,
                is_active = EXCLUDED.is_active,
                success_rate = EXCLUDED.success_rate,
                updated_at = EXCLUDED.updated_at
            """,
            template.id,
            template.name,
            template.category,
            structure if isinstance(structure, str) else json.dumps(structure),
            json.dumps(template.required_capabilities),
            template.is_active,
            template.success_rate,
            template.created_at,
            template.updated_at,
        )

    async def get_template(self, template_id: str) -> TemplateRecord | None:
        row = await self._fetchrow(
            "SELECT * FROM workflow_templates WHERE id = $1", template_id
        )
        return self._template(row) if row else None

    async def list_templates(
        self, category: Optional[str] = None, active_only: bool = True
    ) -> list[TemplateRecord]:
        rows = await self._fetch(
            """
            SELECT * FROM workflow_templates
            WHERE ($1::text IS NULL OR category = $1)
              AND (NOT $2 OR is_active)
            ORDER BY success_rate DESC
            """,
            category,
            active_only,
        )
        return [self._template(r) for r in rows]

    async def update_template_success_rate(self, template_id: str, rate: float) -> None:
        await self._execute(
            "UPDATE workflow_templates SET success_rate = $1, updated_at = $2 WHERE id = $3",
            round(rate, 2),
            utcnow(),
            template_id,
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: WorkflowRecord) -> None:
        await self._execute(
            """
            INSERT INTO workflows
                (id, conversation_id, template_id, template_name, category, status,
                 context, plan, skipped_steps, failure_reason, created_at,
                 started_at, completed_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            """,
            workflow.id,
            workflow.conversation_id,
            workflow.template_id,
            workflow.template_name,
            workflow.category,
            workflow.status.value,
            json.dumps(workflow.context, default=str),
            json.dumps(workflow.plan, default=str),
            json.dumps(workflow.skipped_steps),
            workflow.failure_reason,
            workflow.created_at,
            workflow.started_at,
            workflow.completed_at,
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        row = await self._fetchrow("SELECT * FROM workflows WHERE id = $1", workflow_id)
        if not row:
            return None
        return WorkflowRecord.model_validate(
            _decode(row, "context", "plan", "skipped_steps")
        )

    async def list_workflows(
        self, template_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        rows = await self._fetch(
            """
            SELECT * FROM workflows
            WHERE ($1::text IS NULL OR template_id = $1)
            ORDER BY created_at
            """,
            template_id,
        )
        return [
            WorkflowRecord.model_validate(_decode(r, "context", "plan", "skipped_steps"))
            for r in rows
        ]

    async def count_workflows(self, template_id: str) -> int:
        row = await self._fetchrow(
            "SELECT COUNT(*) AS n FROM workflows WHERE template_id = $1", template_id
        )
        return int(row["n"]) if row else 0

    async def update_workflow_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        *,
        at: datetime,
        failure_reason: Optional[str] = None,
    ) -> None:
        if status is WorkflowStatus.ACTIVE:
            await self._execute(
                "UPDATE workflows SET status = $1, started_at = COALESCE(started_at, $2) WHERE id = $3",
                status.value,
                at,
                workflow_id,
            )
        elif status.is_terminal:
            await self._execute(
                "UPDATE workflows SET status = $1, completed_at = $2, failure_reason = $3 WHERE id = $4",
                status.value,
                at,
                failure_reason,
                workflow_id,
            )
        else:
            await self._execute(
                "UPDATE workflows SET status = $1 WHERE id = $2", status.value, workflow_id
            )

    # ------------------------------------------------------------------
    async def create_task(self, task: TaskRecord) -> None:
        await self._execute(
            """
            INSERT INTO workflow_tasks
                (id, workflow_id, parent_task_id, step_id, task_type, title,
                 description, status, prerequisites, validation_rules, metadata,
                 data_collected, error, sequence, created_at, started_at,
                 completed_at, duration_ms)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                    $15, $16, $17, $18)
            """,
            task.id,
            task.workflow_id,
            task.parent_task_id,
            task.step_id,
            task.task_type,
            task.title,
            task.description,
            task.status.value,
            json.dumps(task.prerequisites, default=str),
            json.dumps(task.validation_rules, default=str),
            json.dumps(task.metadata, default=str),
            json.dumps(task.data_collected, default=str),
            task.error,
            task.sequence,
            task.created_at,
            task.started_at,
            task.completed_at,
            task.duration_ms,
        )

    @staticmethod
    def _task(row: asyncpg.Record) -> TaskRecord:
        return TaskRecord.model_validate(
            _decode(row, "prerequisites", "validation_rules", "metadata", "data_collected")
        )

    async def get_task(self, task_id: str) -> TaskRecord | None:
        row = await self._fetchrow("SELECT * FROM workflow_tasks WHERE id = $1", task_id)
        return self._task(row) if row else None

    async def list_tasks(
        self, workflow_id: str, statuses: Optional[list[TaskStatus]] = None
    ) -> list[TaskRecord]:
        rows = await self._fetch(
            """
            SELECT * FROM workflow_tasks
            WHERE workflow_id = $1
              AND ($2::text[] IS NULL OR status = ANY($2::text[]))
            ORDER BY created_at, sequence
            """,
            workflow_id,
            [s.value for s in statuses] if statuses else None,
        )
        return [self._task(r) for r in rows]

    async def mark_task_started(self, task_id: str, at: datetime) -> bool:
        status = await self._execute(
            "UPDATE workflow_tasks SET status = $1, started_at = $2 WHERE id = $3 AND status = $4",
            TaskStatus.ACTIVE.value,
            at,
            task_id,
            TaskStatus.PENDING.value,
        )
        return status == "UPDATE 1"

    async def mark_task_completed(
        self,
        task_id: str,
        data: dict[str, Any],
        at: datetime,
        duration_ms: Optional[int] = None,
    ) -> None:
        await self._execute(
            """
            UPDATE workflow_tasks
            SET status = $1, completed_at = $2, duration_ms = $3, data_collected = $4
            WHERE id = $5
            """,
            TaskStatus.COMPLETED.value,
            at,
            duration_ms,
            json.dumps(data, default=str),
            task_id,
        )

    async def mark_task_failed(self, task_id: str, error: str, at: datetime) -> None:
        await self._execute(
            "UPDATE workflow_tasks SET status = $1, completed_at = $2, error = $3 WHERE id = $4",
            TaskStatus.FAILED.value,
            at,
            error,
            task_id,
        )

    # ------------------------------------------------------------------
    async def create_dependency(self, dependency: DependencyRecord) -> None:
        await self._execute(
            """
            INSERT INTO workflow_dependencies
                (id, task_id, depends_on_task_id, dependency_type, created_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            dependency.id,
            dependency.task_id,
            dependency.depends_on_task_id,
            dependency.dependency_type.value,
            dependency.created_at,
        )

    async def list_dependencies(self, task_id: str) -> list[DependencyRecord]:
        rows = await self._fetch(
            "SELECT * FROM workflow_dependencies WHERE task_id = $1", task_id
        )
        return [DependencyRecord.model_validate(dict(r)) for r in rows]

    async def list_workflow_dependencies(
        self, workflow_id: str
    ) -> list[DependencyRecord]:
        rows = await self._fetch(
            """
            SELECT d.* FROM workflow_dependencies d
            JOIN workflow_tasks t ON t.id = d.task_id
            WHERE t.workflow_id = $1
            """,
            workflow_id,
        )
        return [DependencyRecord.model_validate(dict(r)) for r in rows]

    # ------------------------------------------------------------------
    async def log_execution(self, entry: ExecutionRecord) -> None:
        await self._execute(
            """
            INSERT INTO workflow_executions
                (workflow_id, task_id, action, actor, input_data, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            entry.workflow_id,
            entry.task_id,
            entry.action,
            entry.actor,
            json.dumps(entry.input_data, default=str),
            entry.created_at,
        )

    async def list_executions(
        self, workflow_id: str, action: Optional[str] = None
    ) -> list[ExecutionRecord]:
        rows = await self._fetch(
            """
            SELECT * FROM workflow_executions
            WHERE workflow_id = $1 AND ($2::text IS NULL OR action = $2)
            ORDER BY id
            """,
            workflow_id,
            action,
        )
        return [ExecutionRecord.model_validate(_decode(r, "input_data")) for r in rows]

    # ------------------------------------------------------------------
    async def find_pattern(
        self, template_id: str, pattern_type: str, pattern_data: dict[str, Any]
    ) -> LearningRecord | None:
        row = await self._fetchrow(
            """
            SELECT * FROM workflow_learning
            WHERE template_id = $1 AND pattern_type = $2 AND pattern_key = $3
            LIMIT 1
            """,
            template_id,
            pattern_type,
            canonical_json(pattern_data),
        )
        if not row:
            return None
        data = _decode(row, "pattern_data")
        data.pop("pattern_key", None)
        return LearningRecord.model_validate(data)

    async def save_pattern(self, pattern: LearningRecord) -> None:
        await self._execute(
            """
            INSERT INTO workflow_learning
                (id, template_id, pattern_type, pattern_data, pattern_key,
                 confidence_score, occurrence_count, success_count,
                 first_observed, last_observed)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            pattern.id,
            pattern.template_id,
            pattern.pattern_type,
            json.dumps(pattern.pattern_data, default=str),
            canonical_json(pattern.pattern_data),
            pattern.confidence_score,
            pattern.occurrence_count,
            pattern.success_count,
            pattern.first_observed,
            pattern.last_observed,
        )

    async def update_pattern(self, pattern: LearningRecord) -> None:
        await self._execute(
            """
            UPDATE workflow_learning
            SET confidence_score = $1, occurrence_count = $2, success_count = $3,
                last_observed = $4
            WHERE id = $5
            """,
            pattern.confidence_score,
            pattern.occurrence_count,
            pattern.success_count,
            pattern.last_observed,
            pattern.id,
        )

    async def list_patterns(
        self,
        template_id: str,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[LearningRecord]:
        rows = await self._fetch(
            """
            SELECT * FROM workflow_learning
            WHERE template_id = $1
              AND ($2::double precision IS NULL OR confidence_score >= $2)
            ORDER BY confidence_score DESC
            LIMIT $3
            """,
            template_id,
            min_confidence,
            limit,
        )
        patterns = []
        for r in rows:
            data = _decode(r, "pattern_data")
            data.pop("pattern_key", None)
            patterns.append(LearningRecord.model_validate(data))
        return patterns
