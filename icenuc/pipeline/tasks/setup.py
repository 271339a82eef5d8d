# icenuc/pipeline/tasks/setup.py
"""
Task for provisioning a tray configuration, its trays and probes, and an
experiment from the `setup:` block of a run configuration.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from .base import Task, TaskContext
from icenuc.db import api as db_api
from icenuc.ingest import coordinates
from icenuc.ingest.structure import MAX_PROBES
from icenuc.utils.logging import get_logger

log = get_logger(__name__)


class SetupTask(Task):
    """
    Creates the layout an experiment's workbooks are ingested against.

    Each tray gets its probes and a full well grid of qty_rows x qty_cols.
    """
    name = "setup"
    scope_kind = "global"

    def prepare(self, cfg: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        if self.name not in cfg:
            raise ValueError(f"Configuration must contain a '{self.name}' section.")
        block = cfg[self.name] or {}

        config_name = block.get("tray_configuration")
        if not config_name:
            raise ValueError("setup.tray_configuration (a name) is required.")

        trays = block.get("trays") or []
        if not trays:
            raise ValueError("setup.trays must list at least one tray.")
        normalized: List[Dict[str, Any]] = []
        seen_names = set()
        seen_channels = set()
        for index, tray in enumerate(trays, start=1):
            name = str(tray.get("name") or "").strip()
            if not name:
                raise ValueError(f"setup.trays[{index}] is missing a name.")
            if name in seen_names:
                raise ValueError(f"Duplicate tray name '{name}' in setup.trays.")
            seen_names.add(name)

            probes = []
            for probe in tray.get("probes") or []:
                channel = int(probe.get("data_column_index", 0))
                if not 1 <= channel <= MAX_PROBES:
                    raise ValueError(
                        f"Probe '{probe.get('name')}' on tray '{name}': data_column_index must be 1-{MAX_PROBES}."
                    )
                if channel in seen_channels:
                    raise ValueError(f"Probe channel {channel} is assigned more than once.")
                seen_channels.add(channel)
                probes.append({
                    "name": probe.get("name") or f"Probe {channel}",
                    "data_column_index": channel,
                    "position_x": probe.get("position_x"),
                    "position_y": probe.get("position_y"),
                })

            qty_rows = int(tray.get("qty_rows", 8))
            qty_cols = int(tray.get("qty_cols", 12))
            if not 1 <= qty_rows <= coordinates.MAX_ROW or qty_cols < 1:
                raise ValueError(
                    f"Tray '{name}': qty_rows must be 1-{coordinates.MAX_ROW} and qty_cols positive."
                )
            normalized.append({
                "name": name,
                "order_sequence": int(tray.get("order_sequence", index)),
                "qty_rows": qty_rows,
                "qty_cols": qty_cols,
                "probes": probes,
            })

        experiment = dict(block.get("experiment") or {})
        if not experiment.get("name"):
            raise ValueError("setup.experiment.name is required.")

        inputs = {
            "tray_configuration": str(config_name),
            "trays": normalized,
            "experiment": experiment,
        }
        params = {"experiment_default": bool(block.get("experiment_default", False))}
        return inputs, params

    def run(self, ctx: TaskContext, inputs: Dict[str, Any], params: Dict[str, Any]) -> Dict[str, Any]:
        conn = ctx.db
        config_id = db_api.create_tray_configuration(
            conn, inputs["tray_configuration"], params["experiment_default"]
        )

        tray_ids: Dict[str, int] = {}
        probe_count = 0
        for tray in inputs["trays"]:
            tray_id = db_api.create_tray(conn, config_id, tray)
            tray_ids[tray["name"]] = tray_id
            for probe in tray["probes"]:
                db_api.create_probe(conn, tray_id, probe)
                probe_count += 1
            grid = [
                (r, c)
                for r in range(1, tray["qty_rows"] + 1)
                for c in range(1, tray["qty_cols"] + 1)
            ]
            db_api.insert_wells(conn, tray_id, grid)

        experiment = dict(inputs["experiment"])
        experiment["tray_configuration_id"] = config_id
        experiment_id = db_api.create_experiment(conn, experiment)

        log.info(
            "Set up tray configuration %s with %d tray(s) and %d probe(s); experiment ID is %s",
            config_id, len(tray_ids), probe_count, experiment_id,
        )
        return {
            "tray_configuration_id": config_id,
            "tray_ids": tray_ids,
            "experiment_id": experiment_id,
        }

    def describe(self, result: Optional[Dict[str, Any]]) -> Optional[str]:
        if not result:
            return None
        return f"experiment_id={result['experiment_id']} tray_configuration_id={result['tray_configuration_id']}"
