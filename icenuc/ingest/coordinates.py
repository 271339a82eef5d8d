"""
Conversion between "A1"-style well coordinates and 1-based (row, column) pairs.

The row is a single uppercase letter (A=1 ... Z=26); the column is a positive
integer. Both directions reject anything outside that convention.
"""

import re
from typing import Tuple

from icenuc.exceptions import FormatError

MAX_ROW = 26

_COORDINATE_RE = re.compile(r"^([A-Za-z]+)([0-9]+)$")


def decode(coordinate: str) -> Tuple[int, int]:
    """
    Parse a well coordinate.

    Args:
        coordinate: e.g. "A1", "H12".

    Returns:
        (row_number, column_number), both 1-based.
    """
    if not isinstance(coordinate, str):
        raise FormatError(f"Coordinate must be a string, got {type(coordinate).__name__}.")
    match = _COORDINATE_RE.match(coordinate)
    if not match:
        raise FormatError(f"Invalid well coordinate '{coordinate}': expected letters followed by digits.")
    letters, digits = match.groups()
    if not letters.isupper():
        raise FormatError(f"Invalid well coordinate '{coordinate}': row letter must be uppercase.")
    if len(letters) > 1:
        raise FormatError(f"Invalid well coordinate '{coordinate}': rows beyond '{chr(64 + MAX_ROW)}' are not supported.")
    column = int(digits)
    if column <= 0:
        raise FormatError(f"Invalid well coordinate '{coordinate}': column must be positive.")
    return ord(letters) - ord("A") + 1, column


def encode(row: int, column: int) -> str:
    """Inverse of `decode`: (1, 1) -> "A1"."""
    if row <= 0 or column <= 0:
        raise FormatError(f"Row and column must be positive, got ({row}, {column}).")
    if row > MAX_ROW:
        raise FormatError(f"Row {row} cannot be written as a single letter.")
    return f"{chr(ord('A') + row - 1)}{column}"
