"""Core contracts for the convoflow workflow engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Exceptions


class WorkflowError(Exception):
    """Base class for engine errors surfaced to callers."""


class TemplateStructureError(WorkflowError):
    """Raised when a template has no usable step list."""

    def __init__(self, template_id: str, reason: str) -> None:
        super().__init__(f"Invalid workflow template structure for {template_id}: {reason}")
        self.template_id = template_id
        self.reason = reason


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class TaskNotFoundError(WorkflowError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class InvalidTransitionError(WorkflowError):
    """Raised on a workflow status change the lifecycle does not allow."""

    def __init__(self, workflow_id: str, current: "WorkflowStatus", target: "WorkflowStatus") -> None:
        super().__init__(
            f"Workflow {workflow_id} cannot move from {current.value} to {target.value}"
        )
        self.workflow_id = workflow_id
        self.current = current
        self.target = target


class DependencyError(WorkflowError):
    """A dependency edge that could not be persisted.

    Returned (not raised) by the generator; the workflow proceeds without
    the edge.
    """

    def __init__(self, task_id: str, depends_on_task_id: str, reason: str) -> None:
        super().__init__(
            f"Could not link task {task_id} -> {depends_on_task_id}: {reason}"
        )
        self.task_id = task_id
        self.depends_on_task_id = depends_on_task_id
        self.reason = reason


# ---------------------------------------------------------------------------
# Enumerations


class TemplateCategory(str, Enum):
    SCHEDULING = "scheduling"
    SUPPORT = "support"
    COMMUNICATION = "communication"
    DATA_COLLECTION = "data-collection"


class StepKind(str, Enum):
    GATHER = "gather"
    VALIDATE = "validate"
    EXECUTE = "execute"
    CONFIRM = "confirm"
    DECISION = "decision"
    NOTIFY = "notify"


class WorkflowStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES

    def can_transition_to(self, target: "WorkflowStatus") -> bool:
        """Return ``True`` when ``target`` is reachable from this status.

        Transitions only move forward; cancellation is allowed from any
        non-terminal state.
        """
        if self.is_terminal:
            return False
        if target is WorkflowStatus.CANCELLED:
            return True
        return target in _FORWARD_TRANSITIONS[self]


_TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)
_FORWARD_TRANSITIONS = {
    WorkflowStatus.PLANNING: {WorkflowStatus.ACTIVE, WorkflowStatus.FAILED},
    WorkflowStatus.ACTIVE: {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED},
}


class TaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class DependencyType(str, Enum):
    BLOCKS = "blocks"
    INFORMS = "informs"
    OPTIONAL = "optional"
    CONDITIONAL = "conditional"


class FieldType(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTISELECT = "multiselect"


class DataSource(str, Enum):
    USER = "user"
    MEMORY = "memory"
    PROFILE = "profile"
    API = "api"
    INFERENCE = "inference"


class Tone(str, Enum):
    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    CASUAL = "casual"
    URGENT = "urgent"


class StrategyKind(str, Enum):
    WAIT = "wait"
    PROCEED = "proceed"
    DEFAULT = "default"
    INFER = "infer"
    ASK = "ask"


class OptimizationType(str, Enum):
    SKIP_STEP = "skip_step"
    REORDER = "reorder"
    PARALLEL = "parallel"
    ADD_STEP = "add_step"
    MODIFY_VALIDATION = "modify_validation"


class Impact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ---------------------------------------------------------------------------
# Template definitions


class ValidationRule(BaseModel):
    """Caller supplied validation applied before type specific checks."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    type: str = "regex"
    pattern: Optional[str] = None
    validator: Optional[Callable[[Any], bool]] = Field(default=None, exclude=True)
    message: Optional[str] = None


class FieldSpec(BaseModel):
    """A prerequisite field declared by a template step."""

    field: str
    type: Optional[FieldType] = None
    required: bool = True
    options: Optional[List[str]] = None
    constraints: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"field": data}
        if isinstance(data, dict):
            data = dict(data)
            if "field" not in data and "name" in data:
                data["field"] = data.pop("name")
            declared = data.get("type")
            if declared is not None and declared not in FieldType._value2member_map_:
                # unknown types are inferred from the field name
                data["type"] = None
        return data


class StepExtension(BaseModel):
    """Typed optional metadata carried by a step."""

    model_config = ConfigDict(populate_by_name=True)

    skip_if_known: bool = False
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    action: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None


class StepDefinition(BaseModel):
    """One step of a template, instantiated as a task."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: StepKind = Field(alias="type")
    title: str
    description: str = ""
    required_data: List[str] = Field(default_factory=list, alias="requiredData")
    optional_data: List[str] = Field(default_factory=list, alias="optionalData")
    prerequisites: List[FieldSpec] = Field(default_factory=list)
    validation: Dict[str, Any] = Field(default_factory=dict)
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    critical: bool = False
    retry_on_failure: bool = Field(default=False, alias="retryOnFailure")
    extension: StepExtension = Field(default_factory=StepExtension)

    @model_validator(mode="before")
    @classmethod
    def _lift_extension(cls, data: Any) -> Any:
        """Move loose catalog keys into ``extension``."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        ext: Dict[str, Any] = dict(data.pop("extension", None) or {})
        metadata = data.pop("metadata", None) or {}
        for key in ("timezone", "language", "action"):
            if key in metadata:
                ext.setdefault(key, metadata[key])
        for key in ("skip_if_known", "skipIfKnown"):
            if key in data:
                ext["skip_if_known"] = bool(data.pop(key))
        for key in ("parentId", "parent_id"):
            if key in data:
                ext["parent_id"] = data.pop(key)
        if "action" in data:
            ext["action"] = data.pop("action")
        data["extension"] = ext
        return data

    def prerequisite_fields(self) -> List[FieldSpec]:
        """Declared prerequisites, falling back to ``required_data`` names."""
        if self.prerequisites:
            return list(self.prerequisites)
        return [FieldSpec(field=name) for name in self.required_data]


class WorkflowTemplate(BaseModel):
    """Immutable definition of a multi-step process."""

    id: str
    name: str
    category: str
    base_structure: Any = None
    required_capabilities: List[str] = Field(default_factory=list)
    success_rate: float = 0.0
    is_active: bool = True

    def parse_steps(self) -> List[StepDefinition]:
        """Return the step list stored in ``base_structure``.

        Raises:
            TemplateStructureError: If the structure is not JSON, has no
                ``steps`` list, or a step fails to parse.
        """
        structure = self.base_structure
        if isinstance(structure, str):
            try:
                structure = json.loads(structure)
            except ValueError as exc:
                raise TemplateStructureError(self.id, f"not valid JSON ({exc})") from exc
        if not isinstance(structure, dict) or not isinstance(structure.get("steps"), list):
            raise TemplateStructureError(self.id, "missing 'steps' list")
        try:
            return [StepDefinition.model_validate(step) for step in structure["steps"]]
        except ValidationError as exc:
            raise TemplateStructureError(self.id, str(exc)) from exc

    def has_valid_structure(self) -> bool:
        try:
            self.parse_steps()
        except TemplateStructureError:
            return False
        return True


# ---------------------------------------------------------------------------
# Runtime context and workflow


class MemoryEntry(BaseModel):
    """A conversation memory snapshot entry."""

    type: str = "user_info"
    content: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowContext(BaseModel):
    """What is already known when a workflow is generated."""

    conversation_id: str
    user_id: Optional[str] = None
    existing_data: Dict[str, Any] = Field(default_factory=dict)
    memories: List[MemoryEntry] = Field(default_factory=list)
    capabilities: List[str] = Field(default_factory=list)
    timezone: Optional[str] = None
    language: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DegradedEdge(BaseModel):
    """A dependency edge dropped because it could not be stored."""

    task_id: str
    depends_on_task_id: str
    reason: str

    @classmethod
    def from_error(cls, error: DependencyError) -> "DegradedEdge":
        return cls(
            task_id=error.task_id,
            depends_on_task_id=error.depends_on_task_id,
            reason=error.reason,
        )


class Workflow(BaseModel):
    """A running instance of a template bound to one conversation."""

    id: str
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    category: Optional[str] = None
    conversation_id: str
    status: WorkflowStatus = WorkflowStatus.PLANNING
    steps: List[StepDefinition] = Field(default_factory=list)
    skipped_steps: List[str] = Field(default_factory=list)
    task_ids: Dict[str, str] = Field(default_factory=dict)
    degraded_edges: List[DegradedEdge] = Field(default_factory=list)
    context: WorkflowContext

    def step(self, step_id: str) -> Optional[StepDefinition]:
        return next((s for s in self.steps if s.id == step_id), None)


# ---------------------------------------------------------------------------
# Information gathering


class InfoRequirement(BaseModel):
    """One field still needed before a task can proceed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    field: str
    type: FieldType = FieldType.TEXT
    required: bool = True
    validation: Optional[ValidationRule] = None
    current_value: Any = None
    source: Optional[DataSource] = None
    confidence: float = 0.0
    options: Optional[List[str]] = None
    constraints: Dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    normalized_value: Any = None


class ConversationPrompt(BaseModel):
    message: str
    follow_up: Optional[str] = None
    examples: List[str] = Field(default_factory=list)
    clarification: Optional[str] = None
    tone: Tone = Tone.FRIENDLY
    fields: List[str] = Field(default_factory=list)


class PartialDataStrategy(BaseModel):
    strategy: StrategyKind
    defaults: Dict[str, Any] = Field(default_factory=dict)
    critical_fields: List[str] = Field(default_factory=list)


class PartialDataOutcome(BaseModel):
    """What the caller should do with a workflow holding partial data."""

    workflow_id: str
    strategy: StrategyKind
    status: str
    data: Dict[str, Any] = Field(default_factory=dict)
    waiting_for: List[str] = Field(default_factory=list)
    inferred_fields: List[str] = Field(default_factory=list)


class Optimization(BaseModel):
    type: OptimizationType
    description: str
    confidence: float
    impact: Impact
    suggestion: Dict[str, Any] = Field(default_factory=dict)
