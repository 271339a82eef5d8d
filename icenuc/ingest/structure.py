"""
Decode the fixed seven-row header block of an instrument export.

Layout (0-based rows):
  row 0   tray name for each well column
  row 1   well coordinate for each well column, e.g. "A1"
  row 2-5 reserved
  row 6   semantic header: Date, Time, "(.jpg)", Temperature1..8, "()"
  row 7+  data

Columns are located by position and by the row-6 label, never by the
tray/coordinate text alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from icenuc.exceptions import FormatError, StructureError
from icenuc.ingest import coordinates
from icenuc.ingest.workbook import Cell, cell_at
from icenuc.utils.logging import get_logger

log = get_logger(__name__)

TRAY_ROW = 0
COORDINATE_ROW = 1
HEADER_ROW = 6
DATA_START_ROW = 7
HEADER_ROW_COUNT = 7

DATE_HEADER = "Date"
TIME_HEADER = "Time"
IMAGE_HEADER_MARKER = ".jpg"
PROBE_HEADER_PREFIX = "Temperature"
WELL_HEADER_MARKER = "()"
MAX_PROBES = 8

_PROBE_SLOT_RE = re.compile(r"(\d+)")

WellKey = Tuple[str, str]


@dataclass
class ExcelStructure:
    """Column roles of one workbook."""
    date_col: int
    time_col: int
    image_col: Optional[int]
    well_columns: Dict[WellKey, int]
    probe_columns: Dict[int, int] = field(default_factory=dict)
    data_start_row: int = DATA_START_ROW

    @property
    def tray_names(self) -> List[str]:
        """Tray names in the order they first appear across the sheet."""
        seen: Dict[str, None] = {}
        for tray_name, _ in sorted(self.well_columns, key=lambda k: self.well_columns[k]):
            seen.setdefault(tray_name, None)
        return list(seen)

    def tray_extents(self) -> Dict[str, Tuple[int, int]]:
        """Per tray, the (max_row, max_column) any well column requires."""
        extents: Dict[str, Tuple[int, int]] = {}
        for tray_name, coordinate in self.well_columns:
            row, col = coordinates.decode(coordinate)
            max_row, max_col = extents.get(tray_name, (0, 0))
            extents[tray_name] = (max(max_row, row), max(max_col, col))
        return extents


def _probe_slot(header: str) -> Optional[int]:
    match = _PROBE_SLOT_RE.search(header[len(PROBE_HEADER_PREFIX):])
    if not match:
        return None
    slot = int(match.group(1))
    if 1 <= slot <= MAX_PROBES:
        return slot
    return None


def parse_structure(header_rows: Sequence[List[Cell]]) -> ExcelStructure:
    """
    Build an ExcelStructure from the first seven rows of the sheet.

    Raises:
        StructureError: fewer than seven rows, or Date / Time / well columns missing.
    """
    if len(header_rows) < HEADER_ROW_COUNT:
        raise StructureError(
            f"Workbook has {len(header_rows)} row(s); at least {HEADER_ROW_COUNT} header rows are required."
        )

    tray_row = header_rows[TRAY_ROW]
    coordinate_row = header_rows[COORDINATE_ROW]
    header_row = header_rows[HEADER_ROW]

    date_col: Optional[int] = None
    time_col: Optional[int] = None
    image_col: Optional[int] = None
    well_columns: Dict[WellKey, int] = {}
    probe_columns: Dict[int, int] = {}
    rejected: List[str] = []

    width = max(len(tray_row), len(coordinate_row), len(header_row))

    for col in range(width):
        header = cell_at(header_row, col).as_text()
        if not header:
            continue

        if header == DATE_HEADER:
            if date_col is None:
                date_col = col
        elif header == TIME_HEADER:
            if time_col is None:
                time_col = col
        elif header == WELL_HEADER_MARKER:
            tray_name = cell_at(tray_row, col).as_label()
            raw_coordinate = cell_at(coordinate_row, col).as_label()
            if not tray_name:
                rejected.append(f"column {col}: no tray name")
                continue
            if not raw_coordinate:
                rejected.append(f"column {col}: no coordinate")
                continue
            try:
                row_number, column_number = coordinates.decode(raw_coordinate)
            except FormatError as e:
                rejected.append(f"column {col}: {e}")
                continue
            key = (tray_name, coordinates.encode(row_number, column_number))
            if key in well_columns:
                log.warning("Duplicate well column for %s/%s at column %d; keeping column %d",
                            key[0], key[1], col, well_columns[key])
                continue
            well_columns[key] = col
        elif header.startswith(PROBE_HEADER_PREFIX):
            slot = _probe_slot(header)
            if slot is None:
                log.debug("Ignoring temperature header without probe number 1-%d: '%s'", MAX_PROBES, header)
                continue
            if slot in probe_columns.values():
                log.warning("Probe %d appears twice; ignoring column %d", slot, col)
                continue
            probe_columns[col] = slot
        elif IMAGE_HEADER_MARKER in header:
            if image_col is None:
                image_col = col

    if rejected:
        log.warning("Skipped %d invalid well column(s): %s", len(rejected), "; ".join(rejected[:5]))

    missing = []
    if date_col is None:
        missing.append(f"'{DATE_HEADER}'")
    if time_col is None:
        missing.append(f"'{TIME_HEADER}'")
    if not well_columns:
        missing.append(f"well columns ('{WELL_HEADER_MARKER}')")
    if missing:
        raise StructureError(f"Header row {HEADER_ROW + 1} is missing {', '.join(missing)}.")

    structure = ExcelStructure(
        date_col=date_col,
        time_col=time_col,
        image_col=image_col,
        well_columns=well_columns,
        probe_columns=probe_columns,
    )
    log.info(
        "Parsed workbook structure: %d well column(s) across tray(s) %s, %d probe column(s), image column: %s",
        len(well_columns),
        ", ".join(structure.tray_names),
        len(probe_columns),
        "yes" if image_col is not None else "no",
    )
    return structure
