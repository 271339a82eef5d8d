from decimal import Decimal

import pytest

from icenuc.db import api as db_api
from icenuc.db.fetch import fetch_well_summaries
from icenuc.ingest.pipeline import IngestionPipeline


def test_well_summaries_report_first_freeze(conn, experiment, workbook_builder):
    builder = workbook_builder([("P1", "A1"), ("P1", "A2")], probes=2)
    builder.row("2024-03-15", "14:00:00", temps=[-1.0, -1.5], states=[0, 0])
    builder.row("2024-03-15", "14:01:00", temps=[-10.0, -12.0], states=[1, 0])
    builder.row("2024-03-15", "14:02:00", temps=[-11.0, -13.0], states=[0, 0])
    builder.row("2024-03-15", "14:03:00", temps=[-12.0, -14.0], states=[1, 0])
    IngestionPipeline(conn).run(experiment["experiment_id"], builder.to_bytes())

    summaries = fetch_well_summaries(conn, experiment["experiment_id"])

    assert len(summaries) == 192
    a1, a2 = summaries[0], summaries[1]
    assert (a1["tray"], a1["coordinate"]) == ("P1", "A1")
    assert a1["first_freeze_at"] == "2024-03-15T14:01:00+00:00"
    assert a1["seconds_to_freeze"] == 60
    assert a1["final_state"] == 1
    assert a1["transition_count"] == 3
    assert a1["temperature_at_freeze"] == Decimal("-11.000")

    assert (a2["tray"], a2["coordinate"]) == ("P1", "A2")
    assert a2["first_freeze_at"] is None
    assert a2["final_state"] is None
    assert a2["transition_count"] == 0
    assert summaries[96]["tray"] == "P2"


def test_well_summaries_unknown_experiment(conn):
    with pytest.raises(ValueError):
        fetch_well_summaries(conn, 42)


def test_well_summaries_without_configuration(conn):
    experiment_id = db_api.create_experiment(conn, {"name": "loose"})
    with pytest.raises(ValueError, match="no tray configuration"):
        fetch_well_summaries(conn, experiment_id)
