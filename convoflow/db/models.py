from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON

from ..contracts import utcnow
from ..persistence.models import new_id


class ConversationTaskRow(SQLModel, table=True):
    """User facing mirror of a workflow task, one row per task."""

    __tablename__ = "conversation_tasks"

    id: str = Field(default_factory=new_id, primary_key=True)
    conversation_id: str = Field(index=True)
    workflow_task_id: str = Field(index=True)
    title: str
    description: str = ""
    priority: str = Field(default="medium")
    status: str = Field(default="todo")
    is_workflow_generated: bool = True
    workflow_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
