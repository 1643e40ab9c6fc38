from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_LOOKBACK_DAYS, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "approvalflow"


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()
    # deliveries a listener may hand back before a message is dead-lettered
    max_attempts: int = Field(default=3, ge=1)


class DirectoryConfig(BaseModel):
    """Defaults for instance listing."""

    default_page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    max_page_size: int = Field(default=MAX_PAGE_SIZE, ge=1)
    lookback_days: int = Field(default=DEFAULT_LOOKBACK_DAYS, ge=0)


class RetryConfig(BaseModel):
    """Bounded retry policy for the submission activity."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = 1.5
    jitter: float = 0.5


class ApprovalFlowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None
    directory: DirectoryConfig = DirectoryConfig()
    retry: RetryConfig = RetryConfig()
    # None means waits never time out.
    wait_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    # "transport" publishes approval requests on the approver topic
    notifier: Literal["logging", "transport"] = "logging"
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ApprovalFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APPROVALFLOW_CONFIG
            env variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("APPROVALFLOW_CONFIG", "config.yaml")
    data: dict = {}
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    # validated with the rest, so an unknown notifier is rejected
    env_notifier = os.getenv("APPROVALFLOW_NOTIFIER")
    if env_notifier:
        data["notifier"] = env_notifier
    config = ApprovalFlowConfig(**data)

    env_db_url = os.getenv("APPROVALFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
