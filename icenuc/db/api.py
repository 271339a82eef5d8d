# icenuc/db/api.py
"""
This module provides a minimal, stateless API for database interactions:
task tracking, tray layout lookups used during ingestion, and the bulk
writes for time-series events.
"""

import sqlite3
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from icenuc.db.schema import ALL_TABLES, ALL_INDEXES
from icenuc.utils.logging import get_logger

log = get_logger(__name__)


_LOCK_RETRY_MESSAGES: tuple[str, ...] = (
    "database is locked",
    "database is busy",
    "database is in use",
)


def _is_lock_error(err: sqlite3.Error) -> bool:
    """Return True if the sqlite error looks like a lock/busy condition."""
    msg = str(err).lower()
    return any(token in msg for token in _LOCK_RETRY_MESSAGES)


def _run_with_retry(
    conn: sqlite3.Connection,
    operation: Callable[[], Any],
    description: str,
    *,
    retries: int = 5,
    initial_delay: float = 0.1,
    backoff: float = 2.0,
) -> Any:
    """
    Execute `operation`, retrying when SQLite reports a lock/busy error.

    Retries are exponential-backoff with jitter-free timing to keep behaviour
    predictable for batch jobs.
    """
    delay = initial_delay
    last_error: Optional[sqlite3.Error] = None
    for attempt in range(1, retries + 1):
        try:
            return operation()
        except sqlite3.OperationalError as err:
            last_error = err
            if not _is_lock_error(err):
                raise
            if attempt == retries:
                break
            log.warning(
                "SQLite busy during %s (attempt %s/%s); retrying in %.2fs",
                description,
                attempt,
                retries,
                delay,
            )
            if conn.in_transaction:
                conn.rollback()
            time.sleep(delay)
            delay *= backoff
    if last_error is not None:
        raise last_error


def _iter_chunks(items: Iterable[Dict[str, Any]], size: int) -> Iterable[List[Dict[str, Any]]]:
    """Yield successive chunks from an iterable."""
    chunk: List[Dict[str, Any]] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def connect(db_path: Path) -> sqlite3.Connection:
    """
    Establishes a connection to the SQLite database.

    Args:
        db_path: The file path to the SQLite database.

    Returns:
        A sqlite3.Connection object.
    """
    try:
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        # Well deletion during provisioning relies on ON DELETE CASCADE
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        log.debug("Database connection established to %s", db_path)
        return conn
    except sqlite3.Error as e:
        log.exception("Database connection failed: %s", e)
        raise


def init_schema(conn: sqlite3.Connection):
    """
    Initializes the database schema by creating all tables and indexes.

    Args:
        conn: An active sqlite3.Connection object.
    """
    try:
        with conn:
            for table_sql in ALL_TABLES:
                conn.execute(table_sql)
            for index_sql in ALL_INDEXES:
                conn.execute(index_sql)
        log.info("Database schema initialized successfully.")
    except sqlite3.Error as e:
        log.exception("Schema initialization failed: %s", e)
        raise


# --- Task bookkeeping ---

def begin_task(conn: sqlite3.Connection, name: str, scope_kind: str, scope_id: Optional[int],
               output_dir: str, label: str, cache_key: Optional[str]) -> Optional[int]:
    """
    Records the start of a new task.

    Returns:
        The ID of the newly created task, or None on failure.
    """
    sql = """
        INSERT INTO core_tasks (
            task_name, scope_kind, scope_id, output_dir, label,
            cache_key, config_hash, started_at, state
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'running')
    """
    def _insert() -> Optional[int]:
        with conn:
            cursor = conn.execute(
                sql,
                (
                    name,
                    scope_kind,
                    scope_id,
                    output_dir,
                    label,
                    cache_key,
                    (cache_key or "")[:7],
                    datetime.now().isoformat(),
                ),
            )
            task_id = cursor.lastrowid
            log.info(
                "Began task '%s' (ID: %s) for %s:%s (cfg=%s)",
                name,
                task_id,
                scope_kind,
                scope_id,
                cache_key,
            )
            return task_id

    try:
        return _run_with_retry(conn, _insert, "begin_task")
    except sqlite3.Error as e:
        log.error("Failed to begin task '%s': %s", name, e)
        return None


def finish_task(conn: sqlite3.Connection, task_id: int, state: str, message: Optional[str] = None):
    """
    Updates a task's final state (e.g., 'completed', 'failed').
    """
    def _op():
        with conn:
            conn.execute(
                """
                UPDATE core_tasks
                SET state = ?, message = ?, ended_at = ?
                WHERE id = ?
                """,
                (state, message, datetime.now().isoformat(), task_id),
            )
    try:
        _run_with_retry(conn, _op, "finish_task")
        log.info("Finished task ID %d with state '%s'", task_id, state)
    except sqlite3.Error as e:
        log.exception("Failed to finish task %d: %s", task_id, e)


def find_completed_task_by_signature(conn: sqlite3.Connection, label: str, output_dir: str,
                                     cache_key: Optional[str]) -> Optional[sqlite3.Row]:
    """
    Returns the most recent COMPLETED task row matching (label, output_dir, cache_key).
    """
    sql = (
        """
        SELECT id, task_name, label, output_dir, cache_key, state, started_at, ended_at
        FROM core_tasks
        WHERE label = ? AND output_dir = ? AND state = 'completed'
          AND ((? IS NULL AND cache_key IS NULL) OR cache_key = ?)
        ORDER BY started_at DESC
        LIMIT 1
        """
    )
    try:
        return conn.execute(sql, (label, output_dir, cache_key, cache_key)).fetchone()
    except sqlite3.Error as e:
        log.exception("Failed to query completed task by signature: %s", e)
        return None


def record_cached_task(conn: sqlite3.Connection, name: str, scope_kind: str,
                       output_dir: str, label: str, cache_key: Optional[str],
                       message: str) -> Optional[int]:
    """Record a skipped task so the skip is visible when listing tasks."""
    def _op() -> Optional[int]:
        with conn:
            cursor = conn.execute(
                """
                INSERT INTO core_tasks (
                    task_name, scope_kind, output_dir, label, cache_key, config_hash,
                    started_at, ended_at, state, message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'cached', ?)
                """,
                (
                    name,
                    scope_kind,
                    output_dir,
                    label,
                    cache_key,
                    (cache_key or "")[:7],
                    datetime.now().isoformat(),
                    datetime.now().isoformat(),
                    message,
                ),
            )
            return cursor.lastrowid

    try:
        return _run_with_retry(conn, _op, "record_cached_task")
    except sqlite3.Error as e:
        log.exception("Failed to record cached task '%s': %s", name, e)
        return None


def list_tasks(conn: sqlite3.Connection, label: Optional[str] = None) -> List[sqlite3.Row]:
    """Return recorded tasks, newest first, optionally filtered by label."""
    sql = """
        SELECT id, task_name, scope_kind, scope_id, label, state, started_at, ended_at, message
        FROM core_tasks
    """
    params: Tuple[Any, ...] = ()
    if label:
        sql += " WHERE label = ?"
        params = (label,)
    sql += " ORDER BY id DESC"
    return conn.execute(sql, params).fetchall()


# --- Tray layout and experiments ---

def create_tray_configuration(conn: sqlite3.Connection, name: str,
                              experiment_default: bool = False) -> Optional[int]:
    def _op() -> Optional[int]:
        with conn:
            cursor = conn.execute(
                "INSERT INTO tray_configurations (name, experiment_default) VALUES (?, ?)",
                (name, int(bool(experiment_default))),
            )
            return cursor.lastrowid

    config_id = _run_with_retry(conn, _op, "create_tray_configuration")
    log.info("Created tray configuration '%s' (ID: %s)", name, config_id)
    return config_id


def create_tray(conn: sqlite3.Connection, tray_configuration_id: int, tray: Dict[str, Any]) -> Optional[int]:
    """
    Inserts a tray into a configuration.

    Args:
        tray: Mapping with name, order_sequence and optional qty_rows / qty_cols.
    """
    sql = """
        INSERT INTO trays (tray_configuration_id, name, order_sequence, qty_rows, qty_cols)
        VALUES (:tray_configuration_id, :name, :order_sequence, :qty_rows, :qty_cols)
    """
    payload = {
        "tray_configuration_id": tray_configuration_id,
        "name": tray["name"],
        "order_sequence": tray.get("order_sequence", 1),
        "qty_rows": tray.get("qty_rows", 8),
        "qty_cols": tray.get("qty_cols", 12),
    }

    def _op() -> Optional[int]:
        with conn:
            return conn.execute(sql, payload).lastrowid

    return _run_with_retry(conn, _op, "create_tray")


def create_probe(conn: sqlite3.Connection, tray_id: int, probe: Dict[str, Any]) -> Optional[int]:
    sql = """
        INSERT INTO probes (tray_id, name, data_column_index, position_x, position_y)
        VALUES (:tray_id, :name, :data_column_index, :position_x, :position_y)
    """
    payload = {
        "tray_id": tray_id,
        "name": probe["name"],
        "data_column_index": int(probe["data_column_index"]),
        "position_x": probe.get("position_x"),
        "position_y": probe.get("position_y"),
    }

    def _op() -> Optional[int]:
        with conn:
            return conn.execute(sql, payload).lastrowid

    return _run_with_retry(conn, _op, "create_probe")


def create_experiment(conn: sqlite3.Connection, experiment: Dict[str, Any]) -> Optional[int]:
    sql = """
        INSERT INTO experiments (name, username, performed_at, remarks, tray_configuration_id)
        VALUES (:name, :username, :performed_at, :remarks, :tray_configuration_id)
    """
    payload = {
        "name": experiment["name"],
        "username": experiment.get("username"),
        "performed_at": experiment.get("performed_at"),
        "remarks": experiment.get("remarks"),
        "tray_configuration_id": experiment.get("tray_configuration_id"),
    }

    def _op() -> Optional[int]:
        with conn:
            return conn.execute(sql, payload).lastrowid

    experiment_id = _run_with_retry(conn, _op, "create_experiment")
    log.info("Created experiment '%s' (ID: %s)", payload["name"], experiment_id)
    return experiment_id


def get_experiment(conn: sqlite3.Connection, experiment_id: int) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT id, name, tray_configuration_id FROM experiments WHERE id = ?",
        (experiment_id,),
    ).fetchone()


def fetch_tray_assignments(conn: sqlite3.Connection, tray_configuration_id: int) -> List[sqlite3.Row]:
    """Trays (id, name, order_sequence) belonging to a configuration, in order."""
    return conn.execute(
        """
        SELECT id, name, order_sequence, qty_rows, qty_cols
        FROM trays
        WHERE tray_configuration_id = ?
        ORDER BY order_sequence, id
        """,
        (tray_configuration_id,),
    ).fetchall()


def fetch_wells_for_tray(conn: sqlite3.Connection, tray_id: int) -> List[sqlite3.Row]:
    return conn.execute(
        "SELECT id, row_number, column_number FROM wells WHERE tray_id = ? ORDER BY row_number, column_number",
        (tray_id,),
    ).fetchall()


def insert_wells(conn: sqlite3.Connection, tray_id: int, coordinates: Iterable[Tuple[int, int]]) -> int:
    """
    Bulk insert wells for a tray.

    Args:
        coordinates: (row_number, column_number) pairs, 1-based.

    Returns:
        The number of wells inserted.
    """
    rows = [
        {"tray_id": tray_id, "row_number": r, "column_number": c}
        for r, c in coordinates
    ]
    if not rows:
        return 0
    sql = """
        INSERT INTO wells (tray_id, row_number, column_number)
        VALUES (:tray_id, :row_number, :column_number)
    """

    def _op():
        with conn:
            for chunk in _iter_chunks(rows, size=500):
                conn.executemany(sql, chunk)

    _run_with_retry(conn, _op, f"insert_wells tray_id={tray_id}")
    log.info("Inserted %d wells for tray ID %s", len(rows), tray_id)
    return len(rows)


def delete_wells_for_tray(conn: sqlite3.Connection, tray_id: int) -> int:
    """Remove every well of a tray (phase transitions cascade)."""
    def _op() -> int:
        with conn:
            return conn.execute("DELETE FROM wells WHERE tray_id = ?", (tray_id,)).rowcount

    deleted = _run_with_retry(conn, _op, f"delete_wells_for_tray tray_id={tray_id}")
    log.warning("Deleted %d existing wells for tray ID %s", deleted, tray_id)
    return deleted


def fetch_probes_for_trays(conn: sqlite3.Connection, tray_ids: Sequence[int]) -> List[sqlite3.Row]:
    if not tray_ids:
        return []
    placeholders = ", ".join(["?"] * len(tray_ids))
    return conn.execute(
        f"""
        SELECT id, tray_id, name, data_column_index
        FROM probes
        WHERE tray_id IN ({placeholders})
        ORDER BY tray_id, data_column_index
        """,
        tuple(tray_ids),
    ).fetchall()


# --- Time-series event writes ---
#
# The bulk_insert_* helpers do not commit; write_event_batch wraps them in a
# single transaction so one flush is all-or-nothing.

def bulk_insert_temperature_readings(conn: sqlite3.Connection, readings: List[Dict[str, Any]]) -> int:
    sql = """
        INSERT INTO temperature_readings (
            id, experiment_id, timestamp, image_filename,
            probe_1, probe_2, probe_3, probe_4, probe_5, probe_6, probe_7, probe_8
        ) VALUES (
            :id, :experiment_id, :timestamp, :image_filename,
            :probe_1, :probe_2, :probe_3, :probe_4, :probe_5, :probe_6, :probe_7, :probe_8
        )
    """
    if readings:
        conn.executemany(sql, readings)
    return len(readings)


def bulk_insert_probe_temperature_readings(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> int:
    sql = """
        INSERT INTO probe_temperature_readings (id, temperature_reading_id, probe_id, temperature)
        VALUES (:id, :temperature_reading_id, :probe_id, :temperature)
    """
    if rows:
        conn.executemany(sql, rows)
    return len(rows)


def bulk_insert_phase_transitions(conn: sqlite3.Connection, rows: List[Dict[str, Any]]) -> int:
    sql = """
        INSERT INTO well_phase_transitions (
            id, well_id, experiment_id, temperature_reading_id, timestamp, previous_state, new_state
        ) VALUES (
            :id, :well_id, :experiment_id, :temperature_reading_id, :timestamp, :previous_state, :new_state
        )
    """
    if rows:
        conn.executemany(sql, rows)
    return len(rows)


def write_event_batch(
    conn: sqlite3.Connection,
    readings: List[Dict[str, Any]],
    probe_readings: List[Dict[str, Any]],
    transitions: List[Dict[str, Any]],
) -> Tuple[int, int, int]:
    """
    Insert one batch of events in a single transaction.

    Readings go first so probe readings and transitions in the same batch can
    reference them.

    Returns:
        (readings, probe_readings, transitions) inserted.
    """
    def _op() -> Tuple[int, int, int]:
        with conn:
            return (
                bulk_insert_temperature_readings(conn, readings),
                bulk_insert_probe_temperature_readings(conn, probe_readings),
                bulk_insert_phase_transitions(conn, transitions),
            )

    counts = _run_with_retry(
        conn,
        _op,
        f"write_event_batch(size={len(readings) + len(probe_readings) + len(transitions)})",
    )
    log.debug(
        "Flushed %d readings, %d probe readings, %d transitions.",
        counts[0], counts[1], counts[2],
    )
    return counts
