"""Data models for persisted workflow state."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import DependencyType, TaskStatus, WorkflowStatus, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


def canonical_json(data: Any) -> str:
    """Stable JSON text used to compare pattern payloads."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


class TemplateRecord(BaseModel):
    """Catalog row for a workflow template."""

    id: str = Field(default_factory=new_id)
    name: str
    category: str
    base_structure: Any = None
    required_capabilities: list[str] = Field(default_factory=list)
    is_active: bool = True
    success_rate: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WorkflowRecord(BaseModel):
    """Persisted workflow instance."""

    id: str = Field(default_factory=new_id)
    conversation_id: str
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    category: Optional[str] = None
    status: WorkflowStatus = WorkflowStatus.PLANNING
    context: dict[str, Any] = Field(default_factory=dict)
    plan: list[dict[str, Any]] = Field(default_factory=list)
    skipped_steps: list[str] = Field(default_factory=list)
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TaskRecord(BaseModel):
    """One node of an instantiated workflow graph."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    parent_task_id: Optional[str] = None
    step_id: str
    task_type: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    prerequisites: list[dict[str, Any]] = Field(default_factory=list)
    validation_rules: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    data_collected: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    sequence: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None


class DependencyRecord(BaseModel):
    """Directed edge: ``task_id`` depends on ``depends_on_task_id``."""

    id: str = Field(default_factory=new_id)
    task_id: str
    depends_on_task_id: str
    dependency_type: DependencyType = DependencyType.BLOCKS
    created_at: datetime = Field(default_factory=utcnow)


class ExecutionRecord(BaseModel):
    """Append-only audit log entry."""

    id: Optional[int] = None
    workflow_id: str
    task_id: Optional[str] = None
    action: str
    actor: str = "system"
    input_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class LearningRecord(BaseModel):
    """A scored behavioural pattern observed for a template."""

    id: str = Field(default_factory=new_id)
    template_id: str
    pattern_type: str
    pattern_data: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float
    occurrence_count: int = 1
    success_count: int = 0
    first_observed: datetime = Field(default_factory=utcnow)
    last_observed: datetime = Field(default_factory=utcnow)
