"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".agent-tasks" / "tasks.db")
    poll_interval: float = 5.0
    idle_min_age: float = 10.0
    idle_window: float = 5.0
    stall_min_age: float = 30.0
    stall_timeout: float = 600.0
    retention_seconds: int = 3600
    slack_bot_token: str | None = None
    slack_channel: str | None = None

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("AGENT_INBOX_DB_PATH"):
            config.db_path = Path(db)

        if interval := os.environ.get("AGENT_INBOX_POLL_INTERVAL"):
            config.poll_interval = float(interval)

        if min_age := os.environ.get("AGENT_INBOX_IDLE_MIN_AGE"):
            config.idle_min_age = float(min_age)

        if window := os.environ.get("AGENT_INBOX_IDLE_WINDOW"):
            config.idle_window = float(window)

        if stall_age := os.environ.get("AGENT_INBOX_STALL_MIN_AGE"):
            config.stall_min_age = float(stall_age)

        if timeout := os.environ.get("AGENT_INBOX_STALL_TIMEOUT"):
            config.stall_timeout = float(timeout)

        if retention := os.environ.get("AGENT_INBOX_RETENTION_SECONDS"):
            config.retention_seconds = int(retention)

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("AGENT_INBOX_SLACK_CHANNEL")

        return config


def get_config() -> Config:
    return Config.from_env()
