from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .constants import MEMORY_LOOKBACK, MISSING_INFO_CONFIDENCE_THRESHOLD


class EngineConfig(BaseModel):
    """Tunables for information gathering and task execution."""

    missing_info_threshold: float = Field(
        default=MISSING_INFO_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0
    )
    memory_lookback: int = Field(default=MEMORY_LOOKBACK, ge=1)
    max_action_attempts: int = Field(default=3, ge=1)
    retry_base: float = 1.5
    retry_jitter: float = 0.5
    repeated_skip_threshold: int = Field(default=2, ge=1)


class ConvoflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    task_board_url: Optional[str] = None
    engine: EngineConfig = EngineConfig()


def load_config(path: Optional[str] = None) -> ConvoflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CONVOFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CONVOFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ConvoflowConfig(**data)
    else:
        config = ConvoflowConfig()

    env_db_url = os.getenv("CONVOFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_board_url = os.getenv("CONVOFLOW_TASK_BOARD_URL")
    if env_board_url:
        config.task_board_url = env_board_url
    return config
