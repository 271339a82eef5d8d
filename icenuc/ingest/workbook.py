"""
Open raw workbook bytes and stream the first sheet as rows of typed cells.

Every cell is normalized into a `Cell` carrying one of five kinds so callers
never pattern-match on raw openpyxl values.
"""

from __future__ import annotations

import enum
import io
import math
import zipfile
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Iterator, List, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from icenuc.exceptions import FormatError
from icenuc.utils.logging import get_logger

log = get_logger(__name__)

# Day zero of the spreadsheet serial-date system; time-only cells sit on it.
SPREADSHEET_EPOCH = datetime(1899, 12, 30)


class CellKind(str, enum.Enum):
    EMPTY = "empty"
    STRING = "string"
    FLOAT = "float"
    INT = "int"
    DATETIME = "datetime"


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    value: Any = None

    @classmethod
    def from_value(cls, value: Any) -> "Cell":
        if value is None:
            return EMPTY
        if isinstance(value, bool):
            return cls(CellKind.INT, int(value))
        if isinstance(value, int):
            return cls(CellKind.INT, value)
        if isinstance(value, (float, Decimal)):
            return cls(CellKind.FLOAT, float(value))
        if isinstance(value, datetime):
            return cls(CellKind.DATETIME, value)
        if isinstance(value, date):
            return cls(CellKind.DATETIME, datetime.combine(value, time()))
        if isinstance(value, time):
            return cls(CellKind.DATETIME, datetime.combine(SPREADSHEET_EPOCH.date(), value))
        if isinstance(value, timedelta):
            return cls(CellKind.FLOAT, value.total_seconds() / 86400.0)
        text = str(value)
        if not text.strip():
            return EMPTY
        return cls(CellKind.STRING, text)

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    @property
    def is_numeric(self) -> bool:
        return self.kind in (CellKind.FLOAT, CellKind.INT)

    def as_text(self) -> Optional[str]:
        """Stripped text of a string cell; None for every other kind."""
        if self.kind is CellKind.STRING:
            return self.value.strip()
        return None

    def as_label(self) -> Optional[str]:
        """Header-style text: strings as-is, integers rendered, others None."""
        if self.kind is CellKind.STRING:
            return self.value.strip()
        if self.kind is CellKind.INT:
            return str(self.value)
        if self.kind is CellKind.FLOAT and float(self.value).is_integer():
            return str(int(self.value))
        return None

    def as_number(self) -> Optional[float]:
        """Finite numeric value; numeric strings are accepted."""
        if self.is_numeric:
            number = float(self.value)
        elif self.kind is CellKind.STRING:
            try:
                number = float(self.value.strip())
            except ValueError:
                return None
        else:
            return None
        return number if math.isfinite(number) else None

    def as_rounded_int(self) -> Optional[int]:
        number = self.as_number()
        if number is None:
            return None
        return int(round(number))

    def as_datetime(self) -> Optional[datetime]:
        if self.kind is CellKind.DATETIME:
            return self.value
        return None


EMPTY = Cell(CellKind.EMPTY)


def cell_at(row: List[Cell], index: Optional[int]) -> Cell:
    """Cell at a 0-based column index; short rows pad with EMPTY."""
    if index is None or index < 0 or index >= len(row):
        return EMPTY
    return row[index]


def load_rows(data: bytes) -> Iterator[List[Cell]]:
    """
    Open a workbook from raw bytes and stream its first sheet.

    The workbook is opened eagerly so unreadable input fails here with
    FormatError; rows are then yielded lazily in file order.

    Args:
        data: Raw .xlsx / .xlsm bytes.

    Returns:
        An iterator over rows, each a list of `Cell`.
    """
    if not data:
        raise FormatError("Workbook is empty (0 bytes).")
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise FormatError(f"Unable to open workbook: {e}") from e

    sheets = workbook.worksheets
    if not sheets:
        workbook.close()
        raise FormatError("Workbook contains no sheets.")
    sheet = sheets[0]
    log.debug("Reading sheet '%s' (%d sheet(s) in workbook)", sheet.title, len(sheets))

    def _iter() -> Iterator[List[Cell]]:
        try:
            for values in sheet.iter_rows(values_only=True):
                yield [Cell.from_value(v) for v in values]
        finally:
            workbook.close()

    return _iter()
