from datetime import datetime, time, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from icenuc.exceptions import ParseError
from icenuc.ingest.models import FROZEN, LIQUID
from icenuc.ingest.resolver import ResolvedEntities
from icenuc.ingest.rows import RowProcessor, parse_timestamp
from icenuc.ingest.structure import ExcelStructure
from icenuc.ingest.workbook import Cell

UTC = ZoneInfo("UTC")
INSTANT = datetime(2024, 3, 15, 14, 30, 5, tzinfo=timezone.utc)


def c(value):
    return Cell.from_value(value)


@pytest.mark.parametrize(
    "date_value, time_value",
    [
        ("2024-03-15", "14:30:05"),
        ("15.03.2024", "02:30:05 PM"),
        ("2024/03/15", "14:30:05.400"),
        ("03/15/2024", "14:30:05"),
        (datetime(2024, 3, 15, 14, 30, 5), time(14, 30, 5)),
        (datetime(2024, 3, 15), datetime(1899, 12, 30, 14, 30, 5)),
        (45366, 52205 / 86400),
        (45366.0, 45366 + 52205 / 86400),
        (1710513005, "ignored"),
    ],
)
def test_timestamp_layouts_agree(date_value, time_value):
    assert parse_timestamp(c(date_value), c(time_value), UTC) == INSTANT


def test_slash_dates_are_month_first():
    parsed = parse_timestamp(c("03/04/2024"), c("10:00:00"), UTC)
    assert parsed == datetime(2024, 3, 4, 10, 0, 0, tzinfo=timezone.utc)
    parsed = parse_timestamp(c("12/25/2024"), c("10:00:00"), UTC)
    assert parsed == datetime(2024, 12, 25, 10, 0, 0, tzinfo=timezone.utc)


def test_timestamp_uses_zone_for_naive_values():
    berlin = ZoneInfo("Europe/Berlin")
    parsed = parse_timestamp(c("2024-03-15"), c("14:30:05"), berlin)
    assert parsed == datetime(2024, 3, 15, 13, 30, 5, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "date_value, time_value",
    [
        ("not a date", "14:30:05"),
        ("2024-03-15", "half past two"),
        ("2024-03-15", None),
        (None, "14:30:05"),
        ("2024-13-40", "14:30:05"),
        ("15/03/2024", "14:30:05"),
    ],
)
def test_timestamp_rejects_unusable_cells(date_value, time_value):
    with pytest.raises(ParseError):
        parse_timestamp(c(date_value), c(time_value), UTC)


# Columns: 0 Date, 1 Time, 2 Temperature1, 3 P1/A1, 4 P1/A2
def make_processor():
    structure = ExcelStructure(
        date_col=0,
        time_col=1,
        image_col=None,
        well_columns={("P1", "A1"): 3, ("P1", "A2"): 4},
        probe_columns={2: 1},
    )
    entities = ResolvedEntities(
        tray_configuration_id=1,
        tray_ids={"P1": 1},
        well_ids={("P1", "A1"): 101, ("P1", "A2"): 102},
        probe_ids={2: 501},
    )
    return RowProcessor(7, structure, entities)


def data_row(second, temp, a1, a2):
    return [c(v) for v in ("2024-03-15", f"14:30:{second:02d}", temp, a1, a2)]


def test_single_row_emits_reading_probe_reading_and_one_transition():
    processor = make_processor()
    states = {}
    events = processor.process(data_row(5, 5.5, 0, 1), 8, states)

    assert events.reading is not None
    assert events.reading.timestamp == INSTANT
    assert events.reading.probe_values == {1: Decimal("5.500")}
    assert len(events.probe_readings) == 1
    assert events.probe_readings[0].probe_id == 501
    assert events.probe_readings[0].temperature == Decimal("5.5")
    assert events.probe_readings[0].temperature_reading_id == events.reading.id

    assert len(events.transitions) == 1
    transition = events.transitions[0]
    assert transition.well_id == 102
    assert (transition.previous_state, transition.new_state) == (LIQUID, FROZEN)
    assert transition.temperature_reading_id == events.reading.id
    assert states == {("P1", "A1"): LIQUID, ("P1", "A2"): FROZEN}


def test_repeated_state_emits_no_further_transitions():
    processor = make_processor()
    states = {}
    counts = [len(processor.process(data_row(s, -1.0, 1, 1), 8 + s, states).transitions) for s in range(4)]
    assert counts == [2, 0, 0, 0]


def test_state_sequence_emits_freeze_and_thaw():
    processor = make_processor()
    states = {}
    emitted = []
    for second, state in enumerate([0, 0, 1, 1, 0]):
        events = processor.process(data_row(second, -10.0 - second, state, None), 8 + second, states)
        emitted.extend(events.transitions)

    assert [(t.previous_state, t.new_state) for t in emitted] == [(0, 1), (1, 0)]
    assert [t.timestamp.second for t in emitted] == [2, 4]


def test_fractional_states_round_to_nearest():
    processor = make_processor()
    events = processor.process(data_row(0, 1.0, 0.2, 0.9), 8, {})
    assert [t.well_id for t in events.transitions] == [102]


def test_transition_without_probe_data_uses_last_reading():
    processor = make_processor()
    states = {}
    first = processor.process(data_row(0, -5.0, 0, 0), 8, states)
    second = processor.process(data_row(1, None, 1, 0), 9, states)

    assert second.reading is None
    assert second.probe_readings == []
    assert len(second.transitions) == 1
    assert second.transitions[0].temperature_reading_id == first.reading.id


def test_transition_before_any_reading_is_rejected():
    processor = make_processor()
    states = {}
    with pytest.raises(ParseError) as excinfo:
        processor.process(data_row(0, None, 1, 0), 8, states)
    assert excinfo.value.row_number == 8
    assert str(excinfo.value).startswith("Row 8:")
    assert states == {}


def test_bad_timestamp_leaves_states_untouched():
    processor = make_processor()
    states = {("P1", "A1"): FROZEN}
    row = [c(v) for v in ("garbage", "14:30:00", 1.0, 0, 0)]
    with pytest.raises(ParseError) as excinfo:
        processor.process(row, 12, states)
    assert excinfo.value.row_number == 12
    assert states == {("P1", "A1"): FROZEN}


def test_is_blank_requires_both_date_and_time_empty():
    processor = make_processor()
    assert processor.is_blank([c(None), c(None), c(1.0)])
    assert processor.is_blank([])
    assert not processor.is_blank([c("2024-03-15"), c(None)])
