# icenuc/pipeline/tasks/base.py
"""
Defines the abstract base class for tasks and the context for their execution.
"""

import abc
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from icenuc.db import api as db_api
from icenuc.utils.hashing import config_hash
from icenuc.utils.logging import get_logger


@dataclass
class TaskContext:
    """
    Provides execution context for a task: database connection, run label
    and the directory the task may write into.
    """
    db: sqlite3.Connection
    workdir: Path
    label: str
    output_dir: str
    cfg_hash: str


class Task(abc.ABC):
    """
    An abstract base class for a runnable task in the pipeline.
    """
    name: str = "base_task"
    scope_kind: str = "global"
    # Cacheable tasks are skipped when an identical config already completed.
    cacheable: bool = True

    def exec(self, db_conn: sqlite3.Connection, cfg: Dict[str, Any], verbose: bool = False) -> Any:
        """
        Orchestrates the full lifecycle of a task execution.

        Returns:
            Whatever `run` returned, or None when the task was skipped as cached.
        """
        log = get_logger(__name__)
        run_cfg = cfg.get("run", {}) or {}
        output_dir = str(Path(run_cfg.get("output_dir", ".")).resolve())
        label = run_cfg.get("label")
        if not label:
            raise ValueError("Configuration must contain a 'run.label'.")

        # The task name is part of the key so one config file can drive several steps.
        keyed_cfg = {"task": self.name, "cfg": cfg}
        cfg_hash_short = config_hash(keyed_cfg, length=7)
        cache_key_full = config_hash(keyed_cfg, length=64)

        if self.cacheable:
            existing = db_api.find_completed_task_by_signature(db_conn, label, output_dir, cache_key_full)
            if existing is not None:
                msg = f"Identical config (cfg={cfg_hash_short}) previously completed as task_id={existing['id']}; skipping."
                db_api.record_cached_task(
                    db_conn, self.name, self.scope_kind, output_dir, label, cache_key_full, msg
                )
                log.info("%s", msg)
                return None

        workdir = Path(output_dir) / label / self.name
        workdir.mkdir(parents=True, exist_ok=True)
        log.info("Executing task '%s' in: %s", self.name, workdir)

        ctx = TaskContext(
            db=db_conn,
            workdir=workdir,
            label=label,
            output_dir=output_dir,
            cfg_hash=cfg_hash_short,
        )

        inputs, params = self.prepare(cfg)

        task_id = db_api.begin_task(
            ctx.db, self.name, self.scope_kind, self.scope_id(inputs),
            ctx.output_dir, ctx.label, cache_key=cache_key_full,
        )
        if task_id is None:
            log.error("Failed to begin task in database. Aborting.")
            raise SystemExit(1)

        try:
            result = self.run(ctx, inputs, params)
        except Exception as e:
            db_api.finish_task(ctx.db, task_id, "failed", str(e))
            raise

        db_api.finish_task(ctx.db, task_id, "completed", self.describe(result))
        log.info("Task '%s' (ID: %d) completed successfully.", self.name, task_id)
        return result

    def scope_id(self, inputs: Any) -> Optional[int]:
        """Determines the primary ID for the task's scope (e.g., an experiment ID)."""
        return None

    def describe(self, result: Any) -> Optional[str]:
        """Short message stored with the completed task row."""
        return None

    @abc.abstractmethod
    def prepare(self, cfg: Dict[str, Any]) -> Tuple[Any, Any]:
        """
        Prepare inputs and parameters for the task from the configuration.

        Returns:
            A tuple of (inputs, params).
        """
        raise NotImplementedError

    @abc.abstractmethod
    def run(self, ctx: TaskContext, inputs: Any, params: Any) -> Any:
        """
        Do the work of the task. Raising marks the task as failed.
        """
        raise NotImplementedError
