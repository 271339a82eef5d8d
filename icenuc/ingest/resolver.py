"""
Resolve persistent well and probe ids for an experiment and workbook structure.

Provisioning policy: when the wells stored for a tray do not cover the
bounding box the workbook needs, every well of that tray is deleted and the
full grid is recreated. Nothing here is wrapped in a transaction; two runs
provisioning the same tray at once can interleave, so callers must serialize
provisioning per tray.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from icenuc.db import api as db_api
from icenuc.exceptions import NotFoundError, StorageError
from icenuc.ingest import coordinates
from icenuc.ingest.structure import ExcelStructure, WellKey
from icenuc.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class ResolvedEntities:
    """Id maps the row processor needs."""
    tray_configuration_id: int
    tray_ids: Dict[str, int]
    well_ids: Dict[WellKey, int]
    # workbook column index -> probe id
    probe_ids: Dict[int, int] = field(default_factory=dict)


class EntityResolver:
    """
    Looks up (and provisions, where needed) the entities a workbook refers to.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def resolve(self, experiment_id: int, structure: ExcelStructure) -> ResolvedEntities:
        """
        Raises:
            NotFoundError: experiment, tray configuration, tray or well missing.
            StorageError: a lookup or provisioning statement failed.
        """
        try:
            tray_configuration_id = self._tray_configuration_id(experiment_id)
            tray_ids = self._tray_ids(tray_configuration_id, structure)

            for tray_name, (max_row, max_col) in structure.tray_extents().items():
                self.provision_wells(tray_ids[tray_name], tray_name, max_row, max_col)

            well_ids = self._well_ids(tray_ids, structure)
            probe_ids = self._probe_ids(tray_ids, structure)
        except sqlite3.Error as e:
            log.error("Entity resolution for experiment %s failed: %s", experiment_id, e)
            raise StorageError(f"Failed to resolve entities for experiment {experiment_id}: {e}") from e

        log.info(
            "Resolved %d well(s) and %d probe column(s) for experiment %s (tray configuration %s)",
            len(well_ids),
            len(probe_ids),
            experiment_id,
            tray_configuration_id,
        )
        return ResolvedEntities(
            tray_configuration_id=tray_configuration_id,
            tray_ids=tray_ids,
            well_ids=well_ids,
            probe_ids=probe_ids,
        )

    def _tray_configuration_id(self, experiment_id: int) -> int:
        experiment = db_api.get_experiment(self.conn, experiment_id)
        if experiment is None:
            raise NotFoundError(f"Experiment {experiment_id} not found.")
        if experiment["tray_configuration_id"] is None:
            raise NotFoundError(f"Experiment {experiment_id} has no tray configuration assigned.")
        return int(experiment["tray_configuration_id"])

    def _tray_ids(self, tray_configuration_id: int, structure: ExcelStructure) -> Dict[str, int]:
        trays = db_api.fetch_tray_assignments(self.conn, tray_configuration_id)
        tray_ids = {row["name"]: int(row["id"]) for row in trays}
        missing = [name for name in structure.tray_names if name not in tray_ids]
        if missing:
            raise NotFoundError(
                f"Tray(s) {', '.join(repr(n) for n in missing)} not found in tray configuration "
                f"{tray_configuration_id} (available: {', '.join(sorted(tray_ids)) or 'none'})."
            )
        return tray_ids

    def provision_wells(self, tray_id: int, tray_name: str, max_row: int, max_col: int) -> int:
        """
        Make sure the tray has wells covering rows 1..max_row and columns 1..max_col.

        Returns:
            The number of wells created (0 when the existing set already covers it).
        """
        existing = db_api.fetch_wells_for_tray(self.conn, tray_id)
        grid = [(r, c) for r in range(1, max_row + 1) for c in range(1, max_col + 1)]

        if not existing:
            log.info("Tray '%s' has no wells; creating %dx%d grid", tray_name, max_row, max_col)
            return db_api.insert_wells(self.conn, tray_id, grid)

        have_row = max(int(w["row_number"]) for w in existing)
        have_col = max(int(w["column_number"]) for w in existing)
        if have_row >= max_row and have_col >= max_col:
            return 0

        log.warning(
            "Tray '%s' wells cover %dx%d but the workbook needs %dx%d; recreating all wells",
            tray_name, have_row, have_col, max_row, max_col,
        )
        db_api.delete_wells_for_tray(self.conn, tray_id)
        return db_api.insert_wells(self.conn, tray_id, grid)

    def _well_ids(self, tray_ids: Dict[str, int], structure: ExcelStructure) -> Dict[WellKey, int]:
        by_tray: Dict[str, Dict[Tuple[int, int], int]] = {}
        for tray_name in structure.tray_names:
            rows = db_api.fetch_wells_for_tray(self.conn, tray_ids[tray_name])
            by_tray[tray_name] = {
                (int(w["row_number"]), int(w["column_number"])): int(w["id"]) for w in rows
            }

        well_ids: Dict[WellKey, int] = {}
        missing: List[WellKey] = []
        for key in structure.well_columns:
            tray_name, coordinate = key
            well_id = by_tray[tray_name].get(coordinates.decode(coordinate))
            if well_id is None:
                missing.append(key)
            else:
                well_ids[key] = well_id

        if missing:
            tray_name = missing[0][0]
            existing = by_tray[tray_name]
            sample = [coordinates.encode(r, c) for r, c in sorted(existing)[:5]]
            raise NotFoundError(
                f"{len(missing)} well(s) not found, first: {missing[0][0]}/{missing[0][1]}. "
                f"Tray '{tray_name}' has {len(existing)} well(s) (e.g. {', '.join(sample) or 'none'}); "
                "the tray configuration does not match the workbook."
            )
        return well_ids

    def _probe_ids(self, tray_ids: Dict[str, int], structure: ExcelStructure) -> Dict[int, int]:
        """
        Map workbook probe columns to probe ids.

        A probe's data_column_index is its channel number (1-8); the structure
        says which workbook column carries each channel.
        """
        probe_by_slot: Dict[int, int] = {}
        for probe in db_api.fetch_probes_for_trays(self.conn, list(tray_ids.values())):
            slot = int(probe["data_column_index"])
            if slot in probe_by_slot:
                log.warning(
                    "Probe channel %d is defined on more than one tray; keeping probe %s, ignoring '%s'",
                    slot, probe_by_slot[slot], probe["name"],
                )
                continue
            probe_by_slot[slot] = int(probe["id"])

        probe_ids: Dict[int, int] = {}
        for column, slot in structure.probe_columns.items():
            probe_id = probe_by_slot.get(slot)
            if probe_id is None:
                log.debug("No probe configured for channel %d (column %d)", slot, column)
                continue
            probe_ids[column] = probe_id
        return probe_ids
