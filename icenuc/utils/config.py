# icenuc/utils/config.py
"""
Configuration loading and defaults for ingestion runs.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

DEFAULT_BATCH_SIZE = 500
DEFAULT_MAX_ROW_ERRORS = 10
DEFAULT_TIMEZONE = "UTC"
DEFAULT_DB_NAME = "icenuc.sqlite"


@dataclass(frozen=True)
class IngestSettings:
    """Tunables for a single ingestion run."""
    batch_size: int = DEFAULT_BATCH_SIZE
    max_row_errors: int = DEFAULT_MAX_ROW_ERRORS
    timezone: str = DEFAULT_TIMEZONE

    @classmethod
    def from_config(cls, block: Optional[Dict[str, Any]]) -> "IngestSettings":
        block = block or {}
        batch_size = block.get("batch_size")
        if batch_size in (None, ""):
            batch_size = DEFAULT_BATCH_SIZE
        batch_size = int(batch_size)
        max_row_errors = block.get("max_row_errors")
        if max_row_errors in (None, ""):
            max_row_errors = DEFAULT_MAX_ROW_ERRORS
        if batch_size <= 0:
            raise ValueError("ingest.batch_size must be a positive integer.")
        if int(max_row_errors) < 0:
            raise ValueError("ingest.max_row_errors must not be negative.")
        timezone = str(block.get("timezone") or DEFAULT_TIMEZONE)
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"ingest.timezone: unknown timezone '{timezone}'.") from e
        return cls(
            batch_size=batch_size,
            max_row_errors=int(max_row_errors),
            timezone=timezone,
        )


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Loads a YAML configuration file.

    Args:
        path: The path to the YAML file.

    Returns:
        A dictionary containing the configuration.
    """
    with open(path, 'r') as f:
        return yaml.safe_load(f) or {}


def default_db_path(cfg: Dict[str, Any]) -> Path:
    """Database path from `run.db`, falling back to `<run.output_dir>/icenuc.sqlite`."""
    run_cfg = cfg.get("run", {}) or {}
    if run_cfg.get("db"):
        return Path(run_cfg["db"]).resolve()
    output_dir = Path(run_cfg.get("output_dir", ".")).resolve()
    return output_dir / DEFAULT_DB_NAME
