# icenuc/pipeline/tasks/ingest.py
"""
Task for ingesting an instrument workbook into an experiment.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .base import Task, TaskContext
from icenuc.exceptions import IngestError
from icenuc.pipeline.upload import UploadResponse, upload_workbook
from icenuc.utils.config import IngestSettings
from icenuc.utils.hashing import content_digest
from icenuc.utils.logging import get_logger

log = get_logger(__name__)


class IngestTask(Task):
    """
    Reads the workbook named in `ingest.workbook` and uploads it for
    `ingest.experiment_id`. The upload response is written as JSON into the
    task directory.

    Re-ingesting a workbook appends a second copy of its events, so this task
    always runs even when an identical config already completed.
    """
    name = "ingest"
    scope_kind = "experiment"
    cacheable = False

    def prepare(self, cfg: Dict[str, Any]) -> Tuple[Dict[str, Any], IngestSettings]:
        if self.name not in cfg:
            raise ValueError(f"Configuration must contain a '{self.name}' section.")
        block = cfg[self.name] or {}
        run_cfg = cfg.get("run", {}) or {}

        if block.get("experiment_id") in (None, ""):
            raise ValueError("ingest.experiment_id is required.")
        workbook = block.get("workbook")
        if not workbook:
            raise ValueError("ingest.workbook (a path) is required.")

        output_dir = Path(run_cfg.get("output_dir", ".")).resolve()
        label_dir = output_dir / str(run_cfg.get("label", ""))
        path = self._resolve_workbook(Path(workbook), self._search_roots(label_dir, output_dir))

        inputs = {"experiment_id": int(block["experiment_id"]), "workbook": path}
        return inputs, IngestSettings.from_config(block)

    def _search_roots(self, label_dir: Path, output_dir: Path) -> List[Path]:
        roots: List[Path] = []
        for candidate in (label_dir, output_dir, Path.cwd()):
            resolved = candidate.resolve()
            if resolved not in roots:
                roots.append(resolved)
        return roots

    def _resolve_workbook(self, path: Path, roots: List[Path]) -> Path:
        if path.is_absolute():
            if not path.is_file():
                raise FileNotFoundError(f"Workbook not found: {path}")
            return path
        for root in roots:
            candidate = root / path
            if candidate.is_file():
                return candidate
        searched = ", ".join(str(r) for r in roots)
        raise FileNotFoundError(f"Workbook '{path}' not found (searched: {searched}).")

    def scope_id(self, inputs: Optional[Dict[str, Any]]) -> Optional[int]:
        return inputs["experiment_id"] if inputs else None

    def run(self, ctx: TaskContext, inputs: Dict[str, Any], params: IngestSettings) -> UploadResponse:
        path: Path = inputs["workbook"]
        data = path.read_bytes()
        log.info("Ingesting %s (sha256 %s) into experiment %s", path, content_digest(data), inputs["experiment_id"])

        response = upload_workbook(
            ctx.db, inputs["experiment_id"], data, filename=path.name, settings=params
        )

        dt_str = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        out_path = ctx.workdir / f"{dt_str}__cfg-{ctx.cfg_hash}.json"
        with open(out_path, "w") as f:
            json.dump(response.as_dict(), f, indent=2)
        log.info("Upload response written to %s", out_path)

        if not response.success:
            raise IngestError(response.error or f"{len(response.errors)} row error(s); see {out_path}")
        return response

    def describe(self, result: Optional[UploadResponse]) -> Optional[str]:
        if result is None:
            return None
        return (
            f"{result.temperature_readings_created} readings, "
            f"{result.probe_temperature_readings_created} probe readings, "
            f"{result.phase_transitions_created} transitions"
        )
