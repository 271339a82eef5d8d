import pytest

from icenuc.exceptions import StructureError
from icenuc.ingest.structure import DATA_START_ROW, parse_structure
from icenuc.ingest.workbook import Cell


def cells(values):
    return [Cell.from_value(v) for v in values]


def header(trays, coords, semantic):
    return [cells(trays), cells(coords)] + [cells([])] * 4 + [cells(semantic)]


def test_parse_structure_locates_columns(workbook_builder):
    builder = workbook_builder([("P1", "A1"), ("P1", "A2"), ("P2", "A1")], probes=2)
    structure = parse_structure([cells(r) for r in builder.header_rows()])

    assert structure.date_col == 0
    assert structure.time_col == 1
    assert structure.image_col == 2
    assert structure.probe_columns == {3: 1, 4: 2}
    assert structure.well_columns == {("P1", "A1"): 5, ("P1", "A2"): 6, ("P2", "A1"): 7}
    assert structure.data_start_row == DATA_START_ROW
    assert structure.tray_names == ["P1", "P2"]
    assert structure.tray_extents() == {"P1": (1, 2), "P2": (1, 1)}


def test_parse_structure_canonicalizes_coordinates():
    rows = header(
        [None, None, "P1", "P1"],
        [None, None, "B07", "H12"],
        ["Date", "Time", "()", "()"],
    )
    structure = parse_structure(rows)
    assert structure.well_columns == {("P1", "B7"): 2, ("P1", "H12"): 3}
    assert structure.image_col is None
    assert structure.probe_columns == {}


def test_parse_structure_skips_invalid_well_columns():
    rows = header(
        [None, None, "P1", "P1", "P1"],
        [None, None, "A1", "AA1", None],
        ["Date", "Time", "()", "()", "()"],
    )
    structure = parse_structure(rows)
    assert structure.well_columns == {("P1", "A1"): 2}


def test_parse_structure_rejects_well_column_without_tray():
    rows = header(
        [None, None, "P1", "P1", None],
        [None, None, "A1", "A2", "A3"],
        ["Date", "Time", "()", "()", "()"],
    )
    structure = parse_structure(rows)
    assert structure.well_columns == {("P1", "A1"): 2, ("P1", "A2"): 3}


def test_parse_structure_finds_jpg_image_column():
    rows = header(
        [None, None, None, None, "P1"],
        [None, None, None, None, "A1"],
        ["Date", "Time", "Image filename", "(.jpg)", "()"],
    )
    assert parse_structure(rows).image_col == 3


def test_parse_structure_maps_probe_numbers_not_positions():
    rows = header(
        [None, None, None, None, "P2"],
        [None, None, None, None, "A1"],
        ["Date", "Time", "Temperature 6", "Temperature5", "()"],
    )
    structure = parse_structure(rows)
    assert structure.probe_columns == {2: 6, 3: 5}


def test_parse_structure_keeps_first_duplicate_well():
    rows = header(
        [None, None, "P1", "P1"],
        [None, None, "A1", "A1"],
        ["Date", "Time", "()", "()"],
    )
    assert parse_structure(rows).well_columns == {("P1", "A1"): 2}


@pytest.mark.parametrize(
    "semantic, missing",
    [
        (["Time", None, "()"], "'Date'"),
        (["Date", None, "()"], "'Time'"),
        (["Date", "Time", None], "well columns"),
    ],
)
def test_parse_structure_requires_date_time_and_wells(semantic, missing):
    rows = header([None, None, "P1"], [None, None, "A1"], semantic)
    with pytest.raises(StructureError, match=missing):
        parse_structure(rows)


def test_parse_structure_requires_seven_rows():
    with pytest.raises(StructureError):
        parse_structure([cells(["Date", "Time"])] * 3)
