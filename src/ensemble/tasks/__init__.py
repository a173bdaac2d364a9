"""Task primitives."""

from .base import Task
from .runner import TaskRunner

__all__ = ["Task", "TaskRunner"]
