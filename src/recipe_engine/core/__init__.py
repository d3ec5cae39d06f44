"""Core components for Recipe Engine."""

from recipe_engine.core.config import settings
from recipe_engine.core.jobs import JobManager

__all__ = ["settings", "JobManager"]
