from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from sqlmodel import SQLModel, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from ..contracts import utcnow
from ..providers import ConversationTask
from .models import ConversationTaskRow

logger = logging.getLogger(__name__)


class TaskBoardDB:
    """SQL backed task board mirroring workflow tasks into a conversation.

    Implements the ``TaskBoard`` protocol. Tables are created on first use.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )
        self._initialized = False

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        self._initialized = True

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if not self._initialized:
            await self.init_db()
        async with AsyncSession(self.engine) as session:
            yield session

    async def create_task(self, task: ConversationTask) -> None:
        row = ConversationTaskRow(**task.model_dump())
        async with self.session() as session:
            session.add(row)
            await session.commit()

    async def update_status(self, workflow_task_id: str, status: str) -> None:
        async with self.session() as session:
            result = await session.execute(
                select(ConversationTaskRow).where(
                    ConversationTaskRow.workflow_task_id == workflow_task_id
                )
            )
            rows = result.scalars().all()
            if not rows:
                logger.debug(f"No board task mirrors {workflow_task_id}")
                return
            for row in rows:
                row.status = status
                row.updated_at = utcnow()
            await session.commit()

    async def list_tasks(self, conversation_id: str) -> List[ConversationTask]:
        async with self.session() as session:
            result = await session.execute(
                select(ConversationTaskRow)
                .where(ConversationTaskRow.conversation_id == conversation_id)
                .order_by(ConversationTaskRow.created_at)
            )
            return [
                ConversationTask(
                    **row.model_dump(exclude={"updated_at"}),
                    updated_at=row.updated_at or row.created_at,
                )
                for row in result.scalars().all()
            ]

    async def dispose(self) -> None:
        await self.engine.dispose()
