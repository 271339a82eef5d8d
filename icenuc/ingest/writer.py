"""
Bounded in-memory buffer for emitted events, flushed in batches.
"""

from __future__ import annotations

import sqlite3
from typing import List

from icenuc.db import api as db_api
from icenuc.exceptions import StorageError
from icenuc.ingest.models import ProbeTemperatureReading, TemperatureReading, WellPhaseTransition
from icenuc.ingest.rows import RowEvents
from icenuc.utils.config import DEFAULT_BATCH_SIZE
from icenuc.utils.logging import get_logger

log = get_logger(__name__)


class BatchWriter:
    """
    Collects events and writes them once `batch_size` items are pending.

    Each flush is one transaction holding a bulk insert per event kind.
    Running totals count only what has been written.
    """

    def __init__(self, conn: sqlite3.Connection, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive.")
        self.conn = conn
        self.batch_size = batch_size
        self.readings: List[TemperatureReading] = []
        self.probe_readings: List[ProbeTemperatureReading] = []
        self.transitions: List[WellPhaseTransition] = []
        self.readings_written = 0
        self.probe_readings_written = 0
        self.transitions_written = 0
        self.flush_count = 0

    @property
    def pending(self) -> int:
        return len(self.readings) + len(self.probe_readings) + len(self.transitions)

    def add_reading(self, reading: TemperatureReading):
        self.readings.append(reading)
        self._maybe_flush()

    def add_probe_reading(self, probe_reading: ProbeTemperatureReading):
        self.probe_readings.append(probe_reading)
        self._maybe_flush()

    def add_transition(self, transition: WellPhaseTransition):
        self.transitions.append(transition)
        self._maybe_flush()

    def add(self, events: RowEvents):
        # Reading first: later items of the row may trigger a flush that must include it.
        if events.reading is not None:
            self.add_reading(events.reading)
        for probe_reading in events.probe_readings:
            self.add_probe_reading(probe_reading)
        for transition in events.transitions:
            self.add_transition(transition)

    def _maybe_flush(self):
        if self.pending >= self.batch_size:
            self.flush()

    def flush(self):
        """
        Write everything pending.

        Raises:
            StorageError: the batch could not be written; nothing from it is
                committed. The error carries the totals of earlier flushes.
        """
        if not self.pending:
            return
        try:
            readings, probe_readings, transitions = db_api.write_event_batch(
                self.conn,
                [r.as_record() for r in self.readings],
                [p.as_record() for p in self.probe_readings],
                [t.as_record() for t in self.transitions],
            )
        except sqlite3.Error as e:
            log.error("Batch flush failed after %d successful flush(es): %s", self.flush_count, e)
            raise StorageError(
                f"Failed to write event batch: {e}",
                readings_written=self.readings_written,
                probe_readings_written=self.probe_readings_written,
                transitions_written=self.transitions_written,
            ) from e

        self.readings_written += readings
        self.probe_readings_written += probe_readings
        self.transitions_written += transitions
        self.flush_count += 1
        self.readings.clear()
        self.probe_readings.clear()
        self.transitions.clear()
