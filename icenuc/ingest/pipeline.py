"""
End-to-end ingestion of one workbook for one experiment.

    load_rows -> parse_structure -> EntityResolver -> RowProcessor -> BatchWriter

Setup failures (FormatError, StructureError, NotFoundError) raise before any
data row is read. Row failures are collected; once more than
`max_row_errors` have accumulated, iteration stops and pending events are
still flushed. A StorageError from a flush propagates carrying the totals of
the batches committed before it and the row errors collected so far.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass, field
from itertools import islice
from typing import Dict, List, Optional

from icenuc.exceptions import ParseError, StorageError
from icenuc.ingest.resolver import EntityResolver
from icenuc.ingest.rows import RowProcessor
from icenuc.ingest.structure import HEADER_ROW_COUNT, WellKey, parse_structure
from icenuc.ingest.workbook import load_rows
from icenuc.ingest.writer import BatchWriter
from icenuc.utils.config import IngestSettings
from icenuc.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class IngestResult:
    success: bool
    temperature_readings_created: int = 0
    probe_temperature_readings_created: int = 0
    phase_transitions_created: int = 0
    wells_tracked: int = 0
    rows_processed: int = 0
    processing_time_ms: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "temperature_readings_created": self.temperature_readings_created,
            "probe_temperature_readings_created": self.probe_temperature_readings_created,
            "phase_transitions_created": self.phase_transitions_created,
            "wells_tracked": self.wells_tracked,
            "rows_processed": self.rows_processed,
            "processing_time_ms": self.processing_time_ms,
            "errors": list(self.errors),
        }


class IngestionPipeline:
    """
    Runs one ingestion. Instances are cheap; use one per run.
    """

    def __init__(self, conn: sqlite3.Connection, settings: Optional[IngestSettings] = None):
        self.conn = conn
        self.settings = settings or IngestSettings()

    def run(self, experiment_id: int, data: bytes) -> IngestResult:
        started = time.perf_counter()
        max_errors = self.settings.max_row_errors

        errors: List[str] = []
        rows = load_rows(data)
        try:
            header_rows = list(islice(rows, HEADER_ROW_COUNT))
            structure = parse_structure(header_rows)
            entities = EntityResolver(self.conn).resolve(experiment_id, structure)

            processor = RowProcessor(experiment_id, structure, entities, self.settings.timezone)
            writer = BatchWriter(self.conn, self.settings.batch_size)
            well_states: Dict[WellKey, int] = {}
            rows_processed = 0

            log.info("Processing data rows for experiment %s (batch size %d)", experiment_id, writer.batch_size)
            for row_number, row in enumerate(rows, start=structure.data_start_row + 1):
                if processor.is_blank(row):
                    continue
                try:
                    events = processor.process(row, row_number, well_states)
                except ParseError as e:
                    errors.append(str(e))
                    log.debug("%s", e)
                    if len(errors) > max_errors:
                        log.error("Stopping at row %d: more than %d row errors", row_number, max_errors)
                        break
                    continue
                writer.add(events)
                rows_processed += 1

            writer.flush()
        except StorageError as e:
            e.row_errors = list(errors)
            raise
        finally:
            rows.close()

        result = IngestResult(
            success=len(errors) <= max_errors,
            temperature_readings_created=writer.readings_written,
            probe_temperature_readings_created=writer.probe_readings_written,
            phase_transitions_created=writer.transitions_written,
            wells_tracked=len(structure.well_columns),
            rows_processed=rows_processed,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            errors=errors,
        )
        log.info(
            "Ingestion for experiment %s %s: %d rows, %d readings, %d probe readings, %d transitions, %d error(s) in %d ms",
            experiment_id,
            "succeeded" if result.success else "failed",
            result.rows_processed,
            result.temperature_readings_created,
            result.probe_temperature_readings_created,
            result.phase_transitions_created,
            len(errors),
            result.processing_time_ms,
        )
        return result
