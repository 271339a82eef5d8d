"""
Event records emitted while processing data rows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from icenuc.ingest.structure import MAX_PROBES

LIQUID = 0
FROZEN = 1

TEMPERATURE_QUANTUM = Decimal("0.001")


def new_id() -> str:
    return uuid.uuid4().hex


def to_fixed_point(value: float) -> Decimal:
    """Probe temperature as a 3-decimal fixed-point value."""
    return Decimal(repr(float(value))).quantize(TEMPERATURE_QUANTUM)


@dataclass
class TemperatureReading:
    experiment_id: int
    timestamp: datetime
    image_filename: Optional[str] = None
    probe_values: Dict[int, Decimal] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def as_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "id": self.id,
            "experiment_id": self.experiment_id,
            "timestamp": self.timestamp.isoformat(),
            "image_filename": self.image_filename,
        }
        for slot in range(1, MAX_PROBES + 1):
            value = self.probe_values.get(slot)
            record[f"probe_{slot}"] = str(value) if value is not None else None
        return record


@dataclass
class ProbeTemperatureReading:
    temperature_reading_id: str
    probe_id: int
    temperature: Decimal
    id: str = field(default_factory=new_id)

    def as_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "temperature_reading_id": self.temperature_reading_id,
            "probe_id": self.probe_id,
            "temperature": str(self.temperature),
        }


@dataclass
class WellPhaseTransition:
    well_id: int
    experiment_id: int
    temperature_reading_id: str
    timestamp: datetime
    previous_state: int
    new_state: int
    id: str = field(default_factory=new_id)

    def as_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "well_id": self.well_id,
            "experiment_id": self.experiment_id,
            "temperature_reading_id": self.temperature_reading_id,
            "timestamp": self.timestamp.isoformat(),
            "previous_state": self.previous_state,
            "new_state": self.new_state,
        }
