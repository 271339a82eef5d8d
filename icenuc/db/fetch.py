import sqlite3
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from icenuc.ingest.coordinates import encode
from icenuc.ingest.models import FROZEN, LIQUID


def fetch_well_summaries(conn: sqlite3.Connection, experiment_id: int) -> List[Dict[str, Any]]:
    """
    Per-well freezing results for an experiment.

    Every well of the experiment's tray configuration is listed, in tray order
    then row/column, with:
        tray, coordinate, first_freeze_at (ISO string or None),
        seconds_to_freeze (since the experiment's first reading),
        final_state (None when the well never changed), transition_count,
        temperature_at_freeze (mean probe temperature of the freezing reading).

    Raises:
        ValueError: if the experiment does not exist or has no tray configuration.
    """
    experiment = conn.execute(
        "SELECT id, tray_configuration_id FROM experiments WHERE id = ?", (experiment_id,)
    ).fetchone()
    if experiment is None:
        raise ValueError(f"Experiment {experiment_id} not found.")
    if experiment["tray_configuration_id"] is None:
        raise ValueError(f"Experiment {experiment_id} has no tray configuration assigned.")

    wells = conn.execute("""
        SELECT w.id, w.row_number, w.column_number, t.name AS tray_name
        FROM wells w
        JOIN trays t ON t.id = w.tray_id
        WHERE t.tray_configuration_id = ?
        ORDER BY t.order_sequence, t.id, w.row_number, w.column_number
    """, (experiment["tray_configuration_id"],)).fetchall()

    first_reading = conn.execute(
        "SELECT MIN(timestamp) FROM temperature_readings WHERE experiment_id = ?", (experiment_id,)
    ).fetchone()[0]
    started = datetime.fromisoformat(first_reading) if first_reading else None

    # Insertion order breaks ties between transitions sharing a timestamp.
    transitions = defaultdict(list)
    for row in conn.execute("""
        SELECT well_id, temperature_reading_id, timestamp, previous_state, new_state
        FROM well_phase_transitions
        WHERE experiment_id = ?
        ORDER BY timestamp, rowid
    """, (experiment_id,)):
        transitions[row["well_id"]].append(row)

    mean_temps: Dict[str, Optional[Decimal]] = {}

    def _mean_temperature(reading_id: str) -> Optional[Decimal]:
        if reading_id not in mean_temps:
            values = [
                Decimal(r["temperature"])
                for r in conn.execute(
                    "SELECT temperature FROM probe_temperature_readings WHERE temperature_reading_id = ?",
                    (reading_id,),
                )
            ]
            mean_temps[reading_id] = (
                (sum(values) / len(values)).quantize(Decimal("0.001")) if values else None
            )
        return mean_temps[reading_id]

    summaries = []
    for well in wells:
        history = transitions.get(well["id"], [])
        first_freeze = next(
            (t for t in history if t["previous_state"] == LIQUID and t["new_state"] == FROZEN),
            None,
        )
        summary: Dict[str, Any] = {
            "tray": well["tray_name"],
            "coordinate": encode(well["row_number"], well["column_number"]),
            "first_freeze_at": None,
            "seconds_to_freeze": None,
            "final_state": history[-1]["new_state"] if history else None,
            "transition_count": len(history),
            "temperature_at_freeze": None,
        }
        if first_freeze is not None:
            summary["first_freeze_at"] = first_freeze["timestamp"]
            if started is not None:
                frozen_at = datetime.fromisoformat(first_freeze["timestamp"])
                summary["seconds_to_freeze"] = int((frozen_at - started).total_seconds())
            summary["temperature_at_freeze"] = _mean_temperature(first_freeze["temperature_reading_id"])
        summaries.append(summary)

    return summaries
