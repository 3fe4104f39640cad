"""Infrastructure helpers shared across llm_relay."""

from __future__ import annotations

from llm_relay.infra.background import BackgroundTask, BackgroundTasks, TaskStatus

__all__ = ["BackgroundTask", "BackgroundTasks", "TaskStatus"]
