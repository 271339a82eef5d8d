
"""
Task registry for the pipeline.

This module exposes concrete task classes so the CLI can discover them without
each consumer having to know the individual module paths.
"""

from __future__ import annotations

from typing import Dict, Type

from .base import Task
from .ingest import IngestTask
from .setup import SetupTask

__all__ = [
    "IngestTask",
    "SetupTask",
    "TASK_REGISTRY",
]

TASK_REGISTRY: Dict[str, Type[Task]] = {
    "setup": SetupTask,
    "ingest": IngestTask,
}
