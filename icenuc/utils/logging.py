# icenuc/utils/logging.py
"""
Logging for ingestion runs: Rich console output plus an optional per-run
log file under `<output_dir>/run_logs/`.

Modules log through `get_logger(__name__)`; everything hangs off the
`icenuc` logger configured here by the CLI.
"""

import logging
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

ROOT_LOGGER = "icenuc"
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logger(logfile: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """
    Configure the `icenuc` logger for a CLI invocation.

    The CLI calls this twice for `run`: once from the callback (console only)
    and again once the run config names an output directory. Existing
    handlers are closed and replaced each time.

    Args:
        logfile: Run log path; parent directories are created.
        verbose: DEBUG instead of INFO, e.g. to see per-row parse errors.

    Returns:
        The `icenuc` logger.
    """
    level = logging.DEBUG if verbose else logging.INFO

    log = logging.getLogger(ROOT_LOGGER)
    log.setLevel(level)
    log.propagate = False

    if log.hasHandlers():
        for handler in list(log.handlers):
            handler.close()
        log.handlers.clear()

    console_handler = RichHandler(
        rich_tracebacks=True,
        show_path=False,
        log_time_format="[%X]"
    )
    console_handler.setLevel(level)
    log.addHandler(console_handler)

    if logfile:
        logfile = Path(logfile)
        logfile.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(logfile)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        log.addHandler(file_handler)
        log.debug("Run log: %s", logfile)

    log.debug("Ingestion logging at %s", logging.getLevelName(level))
    return log


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass `__name__` so records land under `icenuc.*`."""
    return logging.getLogger(name)
