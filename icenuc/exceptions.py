"""
Error taxonomy for workbook ingestion.

Setup errors (format, structure, not found) abort a run before any data row
is read. ParseError is raised per row and collected by the pipeline.
StorageError aborts the run mid-way; batches flushed before it stay committed.
"""

from typing import List, Optional


class IngestError(Exception):
    pass


class FormatError(IngestError):
    pass


class StructureError(IngestError):
    pass


class NotFoundError(IngestError):
    pass


class ParseError(IngestError):
    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.row_number = row_number

    def __str__(self) -> str:
        if self.row_number is None:
            return self.message
        return f"Row {self.row_number}: {self.message}"


class StorageError(IngestError):
    """
    A persistence call failed. The counts cover only batches committed before
    the failure; `row_errors` holds the row problems collected up to then.
    """

    def __init__(
        self,
        message: str,
        readings_written: int = 0,
        probe_readings_written: int = 0,
        transitions_written: int = 0,
    ):
        super().__init__(message)
        self.readings_written = readings_written
        self.probe_readings_written = probe_readings_written
        self.transitions_written = transitions_written
        self.row_errors: List[str] = []
