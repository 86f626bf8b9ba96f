"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

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
        required_capabilities TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        success_rate REAL NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
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
        context TEXT NOT NULL,
        plan TEXT NOT NULL,
        skipped_steps TEXT NOT NULL,
        failure_reason TEXT,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT
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
        prerequisites TEXT NOT NULL,
        validation_rules TEXT NOT NULL,
        metadata TEXT NOT NULL,
        data_collected TEXT NOT NULL,
        error TEXT,
        sequence INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        started_at TEXT,
        completed_at TEXT,
        duration_ms INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_dependencies (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        depends_on_task_id TEXT NOT NULL,
        dependency_type TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_executions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        workflow_id TEXT NOT NULL,
        task_id TEXT,
        action TEXT NOT NULL,
        actor TEXT NOT NULL,
        input_data TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workflow_learning (
        id TEXT PRIMARY KEY,
        template_id TEXT NOT NULL,
        pattern_type TEXT NOT NULL,
        pattern_data TEXT NOT NULL,
        pattern_key TEXT NOT NULL,
        confidence_score REAL NOT NULL,
        occurrence_count INTEGER NOT NULL,
        success_count INTEGER NOT NULL,
        first_observed TEXT NOT NULL,
        last_observed TEXT NOT NULL
    )
    """,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _json_columns(row: sqlite3.Row, *columns: str) -> dict[str, Any]:
    data = dict(row)
    for column in columns:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return data


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        for statement in _SCHEMA:
            cur.execute(statement)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _template(row: sqlite3.Row) -> TemplateRecord:
        data = _json_columns(row, "required_capabilities")
        raw = data.get("base_structure")
        if raw is not None:
            try:
                data["base_structure"] = json.loads(raw)
            except ValueError:
                # keep malformed catalog entries as-is; the registry decides
                data["base_structure"] = raw
        data["is_active"] = bool(data["is_active"])
        return TemplateRecord.model_validate(data)

    @staticmethod
    def _workflow(row: sqlite3.Row) -> WorkflowRecord:
        return WorkflowRecord.model_validate(
            _json_columns(row, "context", "plan", "skipped_steps")
        )

    @staticmethod
    def _task(row: sqlite3.Row) -> TaskRecord:
        return TaskRecord.model_validate(
            _json_columns(
                row, "prerequisites", "validation_rules", "metadata", "data_collected"
            )
        )

    @staticmethod
    def _pattern(row: sqlite3.Row) -> LearningRecord:
        data = _json_columns(row, "pattern_data")
        data.pop("pattern_key", None)
        return LearningRecord.model_validate(data)

    # ------------------------------------------------------------------
    # Templates
    async def save_template(self, template: TemplateRecord) -> None:
        structure = template.base_structure
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO workflow_templates
                (id, name, category, base_structure, required_capabilities,
                 is_active, success_rate, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            template.id,
            template.name,
            template.category,
            structure if isinstance(structure, str) else json.dumps(structure),
            json.dumps(template.required_capabilities),
            int(template.is_active),
            template.success_rate,
            _iso(template.created_at),
            _iso(template.updated_at),
        )

    async def get_template(self, template_id: str) -> TemplateRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflow_templates WHERE id = ?", template_id
        )
        return self._template(row) if row else None

    async def list_templates(
        self, category: Optional[str] = None, active_only: bool = True
    ) -> list[TemplateRecord]:
        query = "SELECT * FROM workflow_templates WHERE 1 = 1"
        params: list[Any] = []
        if category is not None:
            query += " AND category = ?"
            params.append(category)
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY success_rate DESC"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._template(r) for r in rows]

    async def update_template_success_rate(self, template_id: str, rate: float) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_templates SET success_rate = ?, updated_at = ? WHERE id = ?",
            round(rate, 2),
            utcnow().isoformat(),
            template_id,
        )

    # ------------------------------------------------------------------
    # Workflows
    async def create_workflow(self, workflow: WorkflowRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflows
                (id, conversation_id, template_id, template_name, category, status,
                 context, plan, skipped_steps, failure_reason, created_at,
                 started_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
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
            _iso(workflow.created_at),
            _iso(workflow.started_at),
            _iso(workflow.completed_at),
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflows WHERE id = ?", workflow_id
        )
        return self._workflow(row) if row else None

    async def list_workflows(
        self, template_id: Optional[str] = None
    ) -> list[WorkflowRecord]:
        if template_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM workflows ORDER BY created_at"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM workflows WHERE template_id = ? ORDER BY created_at",
                template_id,
            )
        return [self._workflow(r) for r in rows]

    async def count_workflows(self, template_id: str) -> int:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT COUNT(*) AS n FROM workflows WHERE template_id = ?",
            template_id,
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
            await asyncio.to_thread(
                self._execute,
                "UPDATE workflows SET status = ?, started_at = COALESCE(started_at, ?) WHERE id = ?",
                status.value,
                _iso(at),
                workflow_id,
            )
        elif status.is_terminal:
            await asyncio.to_thread(
                self._execute,
                "UPDATE workflows SET status = ?, completed_at = ?, failure_reason = ? WHERE id = ?",
                status.value,
                _iso(at),
                failure_reason,
                workflow_id,
            )
        else:
            await asyncio.to_thread(
                self._execute,
                "UPDATE workflows SET status = ? WHERE id = ?",
                status.value,
                workflow_id,
            )

    # ------------------------------------------------------------------
    # Tasks
    async def create_task(self, task: TaskRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_tasks
                (id, workflow_id, parent_task_id, step_id, task_type, title,
                 description, status, prerequisites, validation_rules, metadata,
                 data_collected, error, sequence, created_at, started_at,
                 completed_at, duration_ms)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
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
            _iso(task.created_at),
            _iso(task.started_at),
            _iso(task.completed_at),
            task.duration_ms,
        )

    async def get_task(self, task_id: str) -> TaskRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflow_tasks WHERE id = ?", task_id
        )
        return self._task(row) if row else None

    async def list_tasks(
        self, workflow_id: str, statuses: Optional[list[TaskStatus]] = None
    ) -> list[TaskRecord]:
        query = "SELECT * FROM workflow_tasks WHERE workflow_id = ?"
        params: list[Any] = [workflow_id]
        if statuses:
            query += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(s.value for s in statuses)
        query += " ORDER BY created_at, sequence"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._task(r) for r in rows]

    async def mark_task_started(self, task_id: str, at: datetime) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_tasks SET status = ?, started_at = ? WHERE id = ? AND status = ?",
            TaskStatus.ACTIVE.value,
            _iso(at),
            task_id,
            TaskStatus.PENDING.value,
        )
        return updated == 1

    async def mark_task_completed(
        self,
        task_id: str,
        data: dict[str, Any],
        at: datetime,
        duration_ms: Optional[int] = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_tasks
            SET status = ?, completed_at = ?, duration_ms = ?, data_collected = ?
            WHERE id = ?
            """,
            TaskStatus.COMPLETED.value,
            _iso(at),
            duration_ms,
            json.dumps(data, default=str),
            task_id,
        )

    async def mark_task_failed(self, task_id: str, error: str, at: datetime) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_tasks SET status = ?, completed_at = ?, error = ? WHERE id = ?",
            TaskStatus.FAILED.value,
            _iso(at),
            error,
            task_id,
        )

    # ------------------------------------------------------------------
    # Dependencies
    async def create_dependency(self, dependency: DependencyRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_dependencies
                (id, task_id, depends_on_task_id, dependency_type, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            dependency.id,
            dependency.task_id,
            dependency.depends_on_task_id,
            dependency.dependency_type.value,
            _iso(dependency.created_at),
        )

    async def list_dependencies(self, task_id: str) -> list[DependencyRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_dependencies WHERE task_id = ?",
            task_id,
        )
        return [DependencyRecord.model_validate(dict(r)) for r in rows]

    async def list_workflow_dependencies(
        self, workflow_id: str
    ) -> list[DependencyRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT d.* FROM workflow_dependencies d
            JOIN workflow_tasks t ON t.id = d.task_id
            WHERE t.workflow_id = ?
            """,
            workflow_id,
        )
        return [DependencyRecord.model_validate(dict(r)) for r in rows]

    # ------------------------------------------------------------------
    # Execution log
    async def log_execution(self, entry: ExecutionRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_executions
                (workflow_id, task_id, action, actor, input_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            entry.workflow_id,
            entry.task_id,
            entry.action,
            entry.actor,
            json.dumps(entry.input_data, default=str),
            _iso(entry.created_at),
        )

    async def list_executions(
        self, workflow_id: str, action: Optional[str] = None
    ) -> list[ExecutionRecord]:
        query = "SELECT * FROM workflow_executions WHERE workflow_id = ?"
        params: list[Any] = [workflow_id]
        if action is not None:
            query += " AND action = ?"
            params.append(action)
        query += " ORDER BY id"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [ExecutionRecord.model_validate(_json_columns(r, "input_data")) for r in rows]

    # ------------------------------------------------------------------
    # Learning
    async def find_pattern(
        self, template_id: str, pattern_type: str, pattern_data: dict[str, Any]
    ) -> LearningRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            """
            SELECT * FROM workflow_learning
            WHERE template_id = ? AND pattern_type = ? AND pattern_key = ?
            LIMIT 1
            """,
            template_id,
            pattern_type,
            canonical_json(pattern_data),
        )
        return self._pattern(row) if row else None

    async def save_pattern(self, pattern: LearningRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_learning
                (id, template_id, pattern_type, pattern_data, pattern_key,
                 confidence_score, occurrence_count, success_count,
                 first_observed, last_observed)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            pattern.id,
            pattern.template_id,
            pattern.pattern_type,
            json.dumps(pattern.pattern_data, default=str),
            canonical_json(pattern.pattern_data),
            pattern.confidence_score,
            pattern.occurrence_count,
            pattern.success_count,
            _iso(pattern.first_observed),
            _iso(pattern.last_observed),
        )

    async def update_pattern(self, pattern: LearningRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_learning
            SET confidence_score = ?, occurrence_count = ?, success_count = ?,
                last_observed = ?
            WHERE id = ?
            """,
            pattern.confidence_score,
            pattern.occurrence_count,
            pattern.success_count,
            _iso(pattern.last_observed),
            pattern.id,
        )

    async def list_patterns(
        self,
        template_id: str,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[LearningRecord]:
        query = "SELECT * FROM workflow_learning WHERE template_id = ?"
        params: list[Any] = [template_id]
        if min_confidence is not None:
            query += " AND confidence_score >= ?"
            params.append(min_confidence)
        query += " ORDER BY confidence_score DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._pattern(r) for r in rows]
