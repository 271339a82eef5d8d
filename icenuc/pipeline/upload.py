"""
Upload entrypoint: run the ingestion pipeline for raw workbook bytes and
report the outcome as a structured response.
"""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from icenuc.exceptions import FormatError, IngestError, StorageError
from icenuc.ingest.pipeline import IngestionPipeline
from icenuc.utils.config import IngestSettings
from icenuc.utils.logging import get_logger

log = get_logger(__name__)

ACCEPTED_EXTENSIONS = (".xlsx", ".xlsm")


class UploadStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


@dataclass
class UploadResponse:
    experiment_id: int
    status: UploadStatus = UploadStatus.pending
    success: bool = False
    temperature_readings_created: int = 0
    probe_temperature_readings_created: int = 0
    phase_transitions_created: int = 0
    wells_tracked: int = 0
    processing_time_ms: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "status": self.status.value,
            "success": self.success,
            "temperature_readings_created": self.temperature_readings_created,
            "probe_temperature_readings_created": self.probe_temperature_readings_created,
            "phase_transitions_created": self.phase_transitions_created,
            "wells_tracked": self.wells_tracked,
            "processing_time_ms": self.processing_time_ms,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "errors": list(self.errors),
        }


def check_filename(filename: Optional[str]):
    if filename is None:
        return
    if PurePath(filename).suffix.lower() not in ACCEPTED_EXTENSIONS:
        raise FormatError(
            f"File must be an Excel workbook ({', '.join(ACCEPTED_EXTENSIONS)}), got '{filename}'."
        )


def upload_workbook(
    conn: sqlite3.Connection,
    experiment_id: int,
    data: bytes,
    *,
    filename: Optional[str] = None,
    settings: Optional[IngestSettings] = None,
) -> UploadResponse:
    """
    Ingest one workbook for an experiment.

    Setup and storage failures are reported as a `failed` response with a
    top-level `error`; row-level problems are listed in `errors`. After a
    storage failure the created counts are those of the committed batches.
    """
    response = UploadResponse(experiment_id=experiment_id, started_at=datetime.now(timezone.utc))
    response.status = UploadStatus.in_progress
    log.info("Upload started for experiment %s (%s, %d bytes)", experiment_id, filename or "<bytes>", len(data))

    try:
        check_filename(filename)
        result = IngestionPipeline(conn, settings).run(experiment_id, data)
    except StorageError as e:
        # Batches flushed before the failure stay committed; report them.
        response.status = UploadStatus.failed
        response.error = str(e)
        response.temperature_readings_created = e.readings_written
        response.probe_temperature_readings_created = e.probe_readings_written
        response.phase_transitions_created = e.transitions_written
        response.errors = list(e.row_errors)
        response.completed_at = datetime.now(timezone.utc)
        log.error(
            "Upload for experiment %s failed after committing %d reading(s): %s",
            experiment_id, e.readings_written, e,
        )
        return response
    except IngestError as e:
        response.status = UploadStatus.failed
        response.error = str(e)
        response.completed_at = datetime.now(timezone.utc)
        log.error("Upload for experiment %s failed: %s", experiment_id, e)
        return response

    response.success = result.success
    response.status = UploadStatus.completed if result.success else UploadStatus.failed
    response.temperature_readings_created = result.temperature_readings_created
    response.probe_temperature_readings_created = result.probe_temperature_readings_created
    response.phase_transitions_created = result.phase_transitions_created
    response.wells_tracked = result.wells_tracked
    response.processing_time_ms = result.processing_time_ms
    response.errors = result.errors
    response.completed_at = datetime.now(timezone.utc)
    return response
