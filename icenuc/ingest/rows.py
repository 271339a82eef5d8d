"""
Row processing: timestamp normalization and the per-well state machine.

Rows must be fed in file order by a single caller. The well-state table is
owned by that caller and passed into every `RowProcessor.process` call;
transition detection depends on it carrying the previous row's values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from icenuc.exceptions import ParseError
from icenuc.ingest.models import (
    LIQUID,
    ProbeTemperatureReading,
    TemperatureReading,
    WellPhaseTransition,
    to_fixed_point,
)
from icenuc.ingest.resolver import ResolvedEntities
from icenuc.ingest.structure import ExcelStructure, WellKey
from icenuc.ingest.workbook import Cell, CellKind, cell_at
from icenuc.utils.logging import get_logger

log = get_logger(__name__)

SECONDS_PER_DAY = 86400

DATE_FORMATS: Tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%m/%d/%Y",
)

TIME_FORMATS: Tuple[str, ...] = (
    "%H:%M:%S",
    "%H:%M:%S.%f",
    "%H:%M",
    "%I:%M:%S %p",
)

# Serial day counts start at 1900-01-01 = day 1 and count a 29 Feb 1900 that
# never existed, so day N is LEGACY_EPOCH + (N - 2) days.
LEGACY_EPOCH = datetime(1900, 1, 1)
LEGACY_EPOCH_CORRECTION_DAYS = 2

# Numeric date cells at or above this are Unix seconds, not day counts.
UNIX_TIMESTAMP_THRESHOLD = 100_000_000


def _parse_date_text(text: str) -> Optional[date]:
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_time_text(text: str) -> Optional[float]:
    for fmt in TIME_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.hour * 3600 + parsed.minute * 60 + parsed.second + parsed.microsecond / 1e6
    return None


def _date_part(cell: Cell) -> Optional[date]:
    if cell.kind is CellKind.STRING:
        return _parse_date_text(cell.as_text())
    if cell.kind is CellKind.DATETIME:
        return cell.as_datetime().date()
    if cell.is_numeric:
        serial = float(cell.value)
        if serial < 1:
            return None
        return (LEGACY_EPOCH + timedelta(days=math.floor(serial) - LEGACY_EPOCH_CORRECTION_DAYS)).date()
    return None


def _time_of_day_seconds(cell: Cell) -> Optional[float]:
    if cell.kind is CellKind.STRING:
        return _parse_time_text(cell.as_text())
    if cell.kind is CellKind.DATETIME:
        value = cell.as_datetime()
        return value.hour * 3600 + value.minute * 60 + value.second + value.microsecond / 1e6
    if cell.is_numeric:
        fraction, _ = math.modf(float(cell.value))
        if fraction < 0:
            return None
        # Day fractions carry float noise; snap to the nearest second.
        return float(round(fraction * SECONDS_PER_DAY))
    return None


def parse_timestamp(date_cell: Cell, time_cell: Cell, zone: ZoneInfo) -> datetime:
    """
    Normalize a date/time cell pair into a UTC datetime at whole-second precision.

    Accepted inputs:
      - date and time text in any of DATE_FORMATS / TIME_FORMATS
      - native spreadsheet date-time cells
      - numeric serial day counts (time cell as a day fraction or time)
      - a numeric Unix timestamp in the date cell

    Naive values are interpreted in `zone`.

    Raises:
        ParseError: when no accepted layout matches.
    """
    if date_cell.is_empty or time_cell.is_empty:
        raise ParseError("Date and Time cells are both required.")

    if date_cell.is_numeric and float(date_cell.value) >= UNIX_TIMESTAMP_THRESHOLD:
        moment = datetime.fromtimestamp(float(date_cell.value), tz=timezone.utc)
        return moment.replace(microsecond=0)

    day = _date_part(date_cell)
    if day is None:
        raise ParseError(f"Unrecognized date value {date_cell.value!r}.")
    seconds = _time_of_day_seconds(time_cell)
    if seconds is None or seconds > SECONDS_PER_DAY:
        raise ParseError(f"Unrecognized time value {time_cell.value!r}.")

    naive = datetime.combine(day, time()) + timedelta(seconds=seconds)
    moment = naive.replace(tzinfo=zone).astimezone(timezone.utc)
    return moment.replace(microsecond=0)


def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone '{name}'.") from e


@dataclass
class RowEvents:
    reading: Optional[TemperatureReading] = None
    probe_readings: List[ProbeTemperatureReading] = field(default_factory=list)
    transitions: List[WellPhaseTransition] = field(default_factory=list)

    def __len__(self) -> int:
        return (1 if self.reading else 0) + len(self.probe_readings) + len(self.transitions)


class RowProcessor:
    """
    Turns data rows into reading / probe reading / phase transition events.

    A transition on a row without probe data is attached to the most recent
    reading of the run; a transition before any reading exists rejects the row.
    """

    def __init__(self, experiment_id: int, structure: ExcelStructure, entities: ResolvedEntities,
                 timezone_name: str = "UTC"):
        self.experiment_id = experiment_id
        self.structure = structure
        self.entities = entities
        self.zone = load_zone(timezone_name)
        self.last_reading_id: Optional[str] = None
        self._wells: List[Tuple[WellKey, int, int]] = [
            (key, col, entities.well_ids[key])
            for key, col in sorted(structure.well_columns.items(), key=lambda item: item[1])
        ]

    def is_blank(self, row: List[Cell]) -> bool:
        """True for trailing/filler rows with neither a date nor a time."""
        return (cell_at(row, self.structure.date_col).is_empty
                and cell_at(row, self.structure.time_col).is_empty)

    def process(self, row: List[Cell], row_number: int, well_states: Dict[WellKey, int]) -> RowEvents:
        """
        Process one data row.

        Args:
            row: The row's cells.
            row_number: 1-based workbook row number, used in errors.
            well_states: Last known state per well; updated in place only if the row succeeds.

        Raises:
            ParseError: the row cannot be used; `well_states` is left untouched.
        """
        try:
            timestamp = parse_timestamp(
                cell_at(row, self.structure.date_col),
                cell_at(row, self.structure.time_col),
                self.zone,
            )
        except ParseError as e:
            raise ParseError(e.message, row_number) from None

        image_filename = None
        if self.structure.image_col is not None:
            image_filename = cell_at(row, self.structure.image_col).as_text() or None

        probe_values = {}
        for col, slot in self.structure.probe_columns.items():
            number = cell_at(row, col).as_number()
            if number is not None:
                probe_values[slot] = to_fixed_point(number)

        events = RowEvents()
        if probe_values:
            events.reading = TemperatureReading(
                experiment_id=self.experiment_id,
                timestamp=timestamp,
                image_filename=image_filename,
                probe_values=probe_values,
            )
            for col, probe_id in self.entities.probe_ids.items():
                slot = self.structure.probe_columns[col]
                if slot in probe_values:
                    events.probe_readings.append(ProbeTemperatureReading(
                        temperature_reading_id=events.reading.id,
                        probe_id=probe_id,
                        temperature=probe_values[slot],
                    ))

        reading_id = events.reading.id if events.reading else self.last_reading_id
        updates: Dict[WellKey, int] = {}
        for key, col, well_id in self._wells:
            state = cell_at(row, col).as_rounded_int()
            if state is None:
                continue
            previous = well_states.get(key)
            updates[key] = state
            if previous is None:
                if state == LIQUID:
                    continue
                previous = LIQUID
            elif previous == state:
                continue
            events.transitions.append(WellPhaseTransition(
                well_id=well_id,
                experiment_id=self.experiment_id,
                temperature_reading_id=reading_id,
                timestamp=timestamp,
                previous_state=previous,
                new_state=state,
            ))

        if events.transitions and reading_id is None:
            raise ParseError(
                f"{len(events.transitions)} well state change(s) before any temperature reading.",
                row_number,
            )

        well_states.update(updates)
        if events.reading:
            self.last_reading_id = events.reading.id
        return events
