# icenuc/cli.py
"""
Command-line interface for the icenuc application, powered by Typer.
"""

import enum
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from icenuc.db import api as db_api
from icenuc.db.fetch import fetch_well_summaries
from icenuc.pipeline.tasks import TASK_REGISTRY
from icenuc.pipeline.upload import upload_workbook
from icenuc.utils.config import DEFAULT_DB_NAME, IngestSettings, default_db_path, load_config
from icenuc.utils.hashing import config_hash
from icenuc.utils.logging import get_logger, setup_logger

# Create the main Typer application
app = typer.Typer(
    no_args_is_help=True,
    help="icenuc: ingest ice-nucleation freezing-assay workbooks into SQLite.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

# A shared dictionary to store global state from the callback
state = {}


class RunStep(str, enum.Enum):
    """Enum for available pipeline steps."""

    setup = "setup"
    ingest = "ingest"


def _open_db() -> sqlite3.Connection:
    db_path = Path(state.get("db") or Path.cwd() / DEFAULT_DB_NAME)
    conn = db_api.connect(db_path)
    db_api.init_schema(conn)
    return conn


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose (DEBUG) logging."
    ),
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="Path to the SQLite database file. Defaults to run.db or run.output_dir/icenuc.sqlite.",
        writable=True,
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Path to a file for logging. Defaults to run.output_dir/run_logs/<date_time>__cfg-<hash>.log for 'run'.",
    ),
):
    """
    Main callback to set up logging and global state.
    """
    state["verbose"] = verbose
    state["db"] = db
    state["log_file"] = log_file

    # Console only until a config provides a default log path
    setup_logger(logfile=log_file, verbose=verbose)
    log = get_logger(__name__)
    log.debug("CLI context initialized. verbose=%s, db=%s", verbose, db)


@app.command()
def run(
    ctx: typer.Context,
    step: RunStep = typer.Argument(..., help="The pipeline step to execute."),
    config_path: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        resolve_path=True,
        help="Path to the run configuration file.",
    ),
):
    """
    Execute a pipeline step (setup or ingest) from a YAML configuration.
    """
    log = get_logger(__name__)
    log.info("Executing 'run' command for step: '%s'", step.value)

    task_cls = TASK_REGISTRY.get(step.value)
    if task_cls is None:
        log.error("Task '%s' is not available in this build.", step.value)
        raise typer.Exit(code=1)

    conn = None
    try:
        cfg = load_config(config_path)

        if state.get("db") is None:
            state["db"] = default_db_path(cfg)

        # Default log file: <run.output_dir>/run_logs/<date_time>__cfg-<hash>.log
        if state.get("log_file") is None:
            output_dir = Path(cfg.get("run", {}).get("output_dir", ".")).resolve()
            dt_str = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
            default_log = output_dir / "run_logs" / f"{dt_str}__cfg-{config_hash(cfg)}.log"
            state["log_file"] = default_log
            setup_logger(logfile=default_log, verbose=state.get("verbose", False))

        conn = _open_db()
        task_cls().exec(conn, cfg, verbose=state.get("verbose", False))

    except Exception as e:
        log.exception("Failed to execute task '%s': %s", step.value, e)
        raise typer.Exit(code=1)
    finally:
        if conn is not None:
            conn.close()
            log.debug("Database connection closed.")


@app.command()
def ingest(
    ctx: typer.Context,
    experiment_id: int = typer.Argument(..., help="ID of the experiment the workbook belongs to."),
    workbook: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        resolve_path=True,
        help="Path to the instrument workbook (.xlsx).",
    ),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Events per database flush."),
    max_row_errors: Optional[int] = typer.Option(
        None, "--max-row-errors", help="Row errors tolerated before the run is stopped."
    ),
    timezone: Optional[str] = typer.Option(
        None, "--timezone", help="IANA zone for workbook times without an offset."
    ),
):
    """
    Upload one workbook directly, without a run configuration.
    """
    log = get_logger(__name__)
    try:
        settings = IngestSettings.from_config({
            "batch_size": batch_size,
            "max_row_errors": max_row_errors,
            "timezone": timezone,
        })
    except ValueError as e:
        log.error("%s", e)
        raise typer.Exit(code=1)

    conn = _open_db()
    try:
        response = upload_workbook(
            conn, experiment_id, workbook.read_bytes(), filename=workbook.name, settings=settings
        )
    finally:
        conn.close()

    console = Console()
    table = Table(title=f"Upload: {workbook.name}")
    table.add_column("Field")
    table.add_column("Value", overflow="fold")
    for key, value in response.as_dict().items():
        if key == "errors":
            continue
        table.add_row(key, "" if value is None else str(value))
    console.print(table)
    for message in response.errors:
        console.print(f"[red]{message}[/red]")

    if not response.success:
        raise typer.Exit(code=1)


@app.command()
def ls(
    ctx: typer.Context,
    label: Optional[str] = typer.Option(
        None, "--label", "-l", help="Filter runs by a specific label."
    ),
):
    """
    List recorded tasks and their status.
    """
    log = get_logger(__name__)
    log.debug("Executing 'ls' command. Label: %s", label)

    conn = _open_db()
    try:
        rows = db_api.list_tasks(conn, label=label)
    finally:
        conn.close()

    if not rows:
        typer.echo("No tasks recorded.")
        return

    table = Table(title="Tasks")
    for column in ("id", "task", "label", "scope", "state", "started", "message"):
        table.add_column(column)
    for row in rows:
        scope = row["scope_kind"] if row["scope_id"] is None else f"{row['scope_kind']}:{row['scope_id']}"
        table.add_row(
            str(row["id"]),
            row["task_name"],
            row["label"] or "",
            scope or "",
            row["state"],
            row["started_at"] or "",
            row["message"] or "",
        )
    Console().print(table)


@app.command()
def summary(
    ctx: typer.Context,
    experiment_id: int = typer.Argument(..., help="ID of the experiment to summarize."),
):
    """
    Show per-well freezing results for an experiment.
    """
    log = get_logger(__name__)
    conn = _open_db()
    try:
        wells = fetch_well_summaries(conn, experiment_id)
    except ValueError as e:
        log.error("%s", e)
        raise typer.Exit(code=1)
    finally:
        conn.close()

    table = Table(title=f"Experiment {experiment_id}")
    for column in ("tray", "well", "frozen at", "seconds", "final", "transitions", "temp (C)"):
        table.add_column(column)
    frozen = 0
    for well in wells:
        if well["first_freeze_at"] is not None:
            frozen += 1
        table.add_row(
            well["tray"],
            well["coordinate"],
            well["first_freeze_at"] or "-",
            "-" if well["seconds_to_freeze"] is None else str(well["seconds_to_freeze"]),
            "-" if well["final_state"] is None else str(well["final_state"]),
            str(well["transition_count"]),
            "-" if well["temperature_at_freeze"] is None else str(well["temperature_at_freeze"]),
        )
    console = Console()
    console.print(table)
    console.print(f"{frozen} of {len(wells)} well(s) froze.")


if __name__ == "__main__":
    app()
