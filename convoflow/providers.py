"""Interfaces to the collaborators the engine depends on.

The engine never performs side effects itself. Actions go through an
:class:`ActionExecutor`; known user data comes from a
:class:`MemoryProvider` and a :class:`ProfileProvider`; a
:class:`TaskBoard` mirrors tasks for display. In-memory implementations are
provided for tests and local use.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, Field

from .contracts import MemoryEntry, utcnow
from .persistence.models import new_id

logger = logging.getLogger(__name__)


class ActionRequest(BaseModel):
    """Descriptor of a side effect to perform."""

    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    workflow_id: Optional[str] = None
    task_id: Optional[str] = None


class ActionResult(BaseModel):
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class ConversationTask(BaseModel):
    """User facing mirror of a workflow task."""

    id: str = Field(default_factory=new_id)
    conversation_id: str
    workflow_task_id: str
    title: str
    description: str = ""
    priority: str = "medium"
    status: str = "todo"
    is_workflow_generated: bool = True
    workflow_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ActionExecutor(Protocol):
    async def execute(self, request: ActionRequest) -> ActionResult:
        """Perform ``request`` and report the outcome."""


class MemoryProvider(Protocol):
    async def recent_memories(
        self, conversation_id: str, limit: int = 10
    ) -> List[MemoryEntry]:
        """Return up to ``limit`` memories, newest first."""


class ProfileProvider(Protocol):
    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored profile of ``user_id`` if any."""


class TaskBoard(Protocol):
    async def create_task(self, task: ConversationTask) -> None:
        """Mirror a newly generated workflow task."""

    async def update_status(self, workflow_task_id: str, status: str) -> None:
        """Update the mirrored status of a workflow task."""

    async def list_tasks(self, conversation_id: str) -> List[ConversationTask]:
        """Return mirrored tasks of a conversation in creation order."""


ActionHandler = Callable[[ActionRequest], Union[ActionResult, Awaitable[ActionResult]]]


class InMemoryActionExecutor:
    """Dispatch actions to registered handlers and record every request.

    Action types without a handler succeed with an empty payload.
    """

    def __init__(self, handlers: Optional[Dict[str, ActionHandler]] = None) -> None:
        self._handlers: Dict[str, ActionHandler] = dict(handlers or {})
        self.requests: List[ActionRequest] = []

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    async def execute(self, request: ActionRequest) -> ActionResult:
        self.requests.append(request)
        handler = self._handlers.get(request.type)
        if handler is None:
            logger.debug(f"No handler for action {request.type}, assuming success")
            return ActionResult(success=True)
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result


class InMemoryMemoryProvider:
    def __init__(self) -> None:
        self._memories: Dict[str, List[MemoryEntry]] = defaultdict(list)

    def add(self, conversation_id: str, entry: MemoryEntry) -> None:
        self._memories[conversation_id].append(entry)

    async def recent_memories(
        self, conversation_id: str, limit: int = 10
    ) -> List[MemoryEntry]:
        entries = sorted(
            self._memories.get(conversation_id, []),
            key=lambda m: m.created_at,
            reverse=True,
        )
        return entries[:limit]


class InMemoryProfileProvider:
    def __init__(self, profiles: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._profiles = dict(profiles or {})

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._profiles.get(user_id)


class InMemoryTaskBoard:
    """Keep mirrored conversation tasks in a list."""

    def __init__(self) -> None:
        self._tasks: List[ConversationTask] = []

    async def create_task(self, task: ConversationTask) -> None:
        self._tasks.append(task.model_copy(deep=True))

    async def update_status(self, workflow_task_id: str, status: str) -> None:
        for task in self._tasks:
            if task.workflow_task_id == workflow_task_id:
                task.status = status
                task.updated_at = utcnow()

    async def list_tasks(self, conversation_id: str) -> List[ConversationTask]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks
            if t.conversation_id == conversation_id
        ]


__all__ = [
    "ActionExecutor",
    "ActionRequest",
    "ActionResult",
    "ConversationTask",
    "InMemoryActionExecutor",
    "InMemoryMemoryProvider",
    "InMemoryProfileProvider",
    "InMemoryTaskBoard",
    "MemoryProvider",
    "ProfileProvider",
    "TaskBoard",
]
