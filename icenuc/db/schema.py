"""
Schema definitions for initializing the project database.

Tables are grouped by domain:
  • core_*        task orchestration metadata
  • tray_* / trays / wells / probes
                  physical layout of an experiment's tray configuration
  • experiments   one freezing run, bound to a tray configuration
  • event tables  temperature readings, per-probe readings and well phase
                  transitions; append-only, keyed by client-generated uuids
"""

# ---------------------------------------------------------------------------
# Core task tables
# ---------------------------------------------------------------------------

CREATE_CORE_TASKS = """
CREATE TABLE IF NOT EXISTS core_tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_name TEXT NOT NULL,
    scope_kind TEXT NOT NULL,
    scope_id INTEGER,
    output_dir TEXT NOT NULL,
    label TEXT NOT NULL,
    cache_key TEXT,
    config_hash TEXT,
    started_at TEXT NOT NULL DEFAULT (datetime('now')),
    ended_at TEXT,
    state TEXT NOT NULL DEFAULT 'pending',
    message TEXT
);
"""

# ---------------------------------------------------------------------------
# Tray layout
# ---------------------------------------------------------------------------

CREATE_TRAY_CONFIGURATIONS = """
CREATE TABLE IF NOT EXISTS tray_configurations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    experiment_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

CREATE_TRAYS = """
CREATE TABLE IF NOT EXISTS trays (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tray_configuration_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    order_sequence INTEGER NOT NULL,
    qty_rows INTEGER NOT NULL DEFAULT 8,
    qty_cols INTEGER NOT NULL DEFAULT 12,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(tray_configuration_id) REFERENCES tray_configurations(id) ON DELETE CASCADE,
    UNIQUE(tray_configuration_id, name)
);
"""

CREATE_WELLS = """
CREATE TABLE IF NOT EXISTS wells (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tray_id INTEGER NOT NULL,
    row_number INTEGER NOT NULL,
    column_number INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(tray_id) REFERENCES trays(id) ON DELETE CASCADE,
    UNIQUE(tray_id, row_number, column_number)
);
"""

CREATE_PROBES = """
CREATE TABLE IF NOT EXISTS probes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tray_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    data_column_index INTEGER NOT NULL,
    position_x REAL,
    position_y REAL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(tray_id) REFERENCES trays(id) ON DELETE CASCADE,
    UNIQUE(tray_id, data_column_index)
);
"""

# ---------------------------------------------------------------------------
# Experiments
# ---------------------------------------------------------------------------

CREATE_EXPERIMENTS = """
CREATE TABLE IF NOT EXISTS experiments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    username TEXT,
    performed_at TEXT,
    remarks TEXT,
    tray_configuration_id INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(tray_configuration_id) REFERENCES tray_configurations(id) ON DELETE SET NULL
);
"""

# ---------------------------------------------------------------------------
# Time-series events
# ---------------------------------------------------------------------------

CREATE_TEMPERATURE_READINGS = """
CREATE TABLE IF NOT EXISTS temperature_readings (
    id TEXT PRIMARY KEY,
    experiment_id INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    image_filename TEXT,
    probe_1 TEXT,
    probe_2 TEXT,
    probe_3 TEXT,
    probe_4 TEXT,
    probe_5 TEXT,
    probe_6 TEXT,
    probe_7 TEXT,
    probe_8 TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(experiment_id) REFERENCES experiments(id) ON DELETE CASCADE
);
"""

CREATE_PROBE_TEMPERATURE_READINGS = """
CREATE TABLE IF NOT EXISTS probe_temperature_readings (
    id TEXT PRIMARY KEY,
    temperature_reading_id TEXT NOT NULL,
    probe_id INTEGER NOT NULL,
    temperature TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(temperature_reading_id) REFERENCES temperature_readings(id) ON DELETE CASCADE,
    FOREIGN KEY(probe_id) REFERENCES probes(id) ON DELETE CASCADE
);
"""

CREATE_WELL_PHASE_TRANSITIONS = """
CREATE TABLE IF NOT EXISTS well_phase_transitions (
    id TEXT PRIMARY KEY,
    well_id INTEGER NOT NULL,
    experiment_id INTEGER NOT NULL,
    temperature_reading_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    previous_state INTEGER NOT NULL,
    new_state INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    FOREIGN KEY(well_id) REFERENCES wells(id) ON DELETE CASCADE,
    FOREIGN KEY(experiment_id) REFERENCES experiments(id) ON DELETE CASCADE,
    FOREIGN KEY(temperature_reading_id) REFERENCES temperature_readings(id) ON DELETE CASCADE
);
"""

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

CREATE_INDEX_CORE_TASKS_LABEL = """
CREATE INDEX IF NOT EXISTS idx_core_tasks_label ON core_tasks (label);
"""

CREATE_INDEX_CORE_TASKS_SCOPE = """
CREATE INDEX IF NOT EXISTS idx_core_tasks_scope ON core_tasks (scope_kind, scope_id);
"""

CREATE_INDEX_TRAYS_CONFIGURATION = """
CREATE INDEX IF NOT EXISTS idx_trays_configuration ON trays (tray_configuration_id);
"""

CREATE_INDEX_PROBES_TRAY = """
CREATE INDEX IF NOT EXISTS idx_probes_tray ON probes (tray_id);
"""

CREATE_INDEX_TEMPERATURE_READINGS_EXPERIMENT = """
CREATE INDEX IF NOT EXISTS idx_temperature_readings_experiment
    ON temperature_readings (experiment_id, timestamp);
"""

CREATE_INDEX_PROBE_TEMPERATURE_READINGS_READING = """
CREATE INDEX IF NOT EXISTS idx_probe_temperature_readings_reading
    ON probe_temperature_readings (temperature_reading_id);
"""

CREATE_INDEX_PHASE_TRANSITIONS_EXPERIMENT = """
CREATE INDEX IF NOT EXISTS idx_phase_transitions_experiment
    ON well_phase_transitions (experiment_id, well_id, timestamp);
"""

# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------

ALL_TABLES = [
    CREATE_CORE_TASKS,
    CREATE_TRAY_CONFIGURATIONS,
    CREATE_TRAYS,
    CREATE_WELLS,
    CREATE_PROBES,
    CREATE_EXPERIMENTS,
    CREATE_TEMPERATURE_READINGS,
    CREATE_PROBE_TEMPERATURE_READINGS,
    CREATE_WELL_PHASE_TRANSITIONS,
]

ALL_INDEXES = [
    CREATE_INDEX_CORE_TASKS_LABEL,
    CREATE_INDEX_CORE_TASKS_SCOPE,
    CREATE_INDEX_TRAYS_CONFIGURATION,
    CREATE_INDEX_PROBES_TRAY,
    CREATE_INDEX_TEMPERATURE_READINGS_EXPERIMENT,
    CREATE_INDEX_PROBE_TEMPERATURE_READINGS_READING,
    CREATE_INDEX_PHASE_TRANSITIONS_EXPERIMENT,
]
