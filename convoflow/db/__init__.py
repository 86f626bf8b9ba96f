from .models import ConversationTaskRow
from .task_board_db import TaskBoardDB

__all__ = [
    "ConversationTaskRow",
    "TaskBoardDB",
]
