import io
from typing import List, Optional, Sequence, Tuple

import pytest
from openpyxl import Workbook
from typer.testing import CliRunner

from icenuc.db import api as db_api

# Column layout written by WorkbookBuilder: Date, Time, Image, probes..., wells...
FIRST_PROBE_COL = 3


def workbook_to_bytes(rows: Sequence[Sequence[object]]) -> bytes:
    """Write rows into the first sheet of a fresh workbook and return the .xlsx bytes."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Data"
    for row in rows:
        ws.append(list(row))
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


class WorkbookBuilder:
    """
    Builds instrument-style sheets: seven header rows followed by data rows.

    Every well column carries its own tray name in row 0.
    """

    def __init__(self, wells: Sequence[Tuple[str, str]], probes: int = 1):
        self.wells = list(wells)
        self.probes = probes
        self.data: List[List[object]] = []

    @property
    def first_well_col(self) -> int:
        return FIRST_PROBE_COL + self.probes

    def header_rows(self) -> List[List[object]]:
        lead = [None] * self.first_well_col
        trays = [tray for tray, _ in self.wells]
        coords = [coord for _, coord in self.wells]
        semantic = ["Date", "Time", "(.jpg)"]
        semantic += [f"Temperature{i}" for i in range(1, self.probes + 1)]
        semantic += ["()"] * len(self.wells)
        reserved = [["instrument export"]] * 4
        return [lead + trays, lead + coords] + reserved + [semantic]

    def row(self, date, time, temps: Sequence[Optional[float]] = (),
            states: Sequence[Optional[int]] = (), image: Optional[str] = None) -> "WorkbookBuilder":
        temps = list(temps) + [None] * (self.probes - len(temps))
        states = list(states) + [None] * (len(self.wells) - len(states))
        self.data.append([date, time, image] + temps + states)
        return self

    def raw(self, values: Sequence[object]) -> "WorkbookBuilder":
        self.data.append(list(values))
        return self

    def rows(self) -> List[List[object]]:
        return self.header_rows() + self.data

    def to_bytes(self) -> bytes:
        return workbook_to_bytes(self.rows())


@pytest.fixture
def cli_runner():
    """Reusable Typer CLI runner with stderr merged into stdout for assertions."""
    return CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.sqlite"


@pytest.fixture
def conn(db_path):
    connection = db_api.connect(db_path)
    db_api.init_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def workbook_builder():
    return WorkbookBuilder


@pytest.fixture
def experiment(conn):
    """
    Two 8x12 trays, P1 and P2, with probes on channels 1-4 and 5-8, and an
    experiment using that configuration.
    """
    config_id = db_api.create_tray_configuration(conn, "standard", experiment_default=True)
    tray_ids = {}
    probe_ids = {}
    for order, (tray_name, channels) in enumerate((("P1", range(1, 5)), ("P2", range(5, 9))), start=1):
        tray_id = db_api.create_tray(
            conn, config_id, {"name": tray_name, "order_sequence": order, "qty_rows": 8, "qty_cols": 12}
        )
        tray_ids[tray_name] = tray_id
        db_api.insert_wells(conn, tray_id, [(r, c) for r in range(1, 9) for c in range(1, 13)])
        for channel in channels:
            probe_ids[channel] = db_api.create_probe(
                conn, tray_id, {"name": f"Probe {channel}", "data_column_index": channel}
            )
    experiment_id = db_api.create_experiment(
        conn, {"name": "freeze run", "username": "tester", "tray_configuration_id": config_id}
    )
    return {
        "experiment_id": experiment_id,
        "tray_configuration_id": config_id,
        "tray_ids": tray_ids,
        "probe_ids": probe_ids,
    }


@pytest.fixture
def xlsx_bytes():
    return workbook_to_bytes
