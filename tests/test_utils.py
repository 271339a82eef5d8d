import pytest

from icenuc.utils.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_DB_NAME,
    DEFAULT_MAX_ROW_ERRORS,
    IngestSettings,
    default_db_path,
    load_config,
)
from icenuc.utils.hashing import config_hash, content_digest
from icenuc.utils.logging import get_logger, setup_logger


def test_load_config_reads_yaml(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "run:\n"
        "  label: plate_1\n"
        "ingest:\n"
        "  experiment_id: 3\n"
        "  batch_size: 250\n"
    )

    data = load_config(cfg_path)
    assert data["run"]["label"] == "plate_1"
    assert data["ingest"]["experiment_id"] == 3


def test_load_config_empty_file(tmp_path):
    cfg_path = tmp_path / "empty.yaml"
    cfg_path.write_text("")
    assert load_config(cfg_path) == {}


def test_ingest_settings_defaults_and_overrides():
    assert IngestSettings.from_config(None) == IngestSettings(
        batch_size=DEFAULT_BATCH_SIZE, max_row_errors=DEFAULT_MAX_ROW_ERRORS, timezone="UTC"
    )
    settings = IngestSettings.from_config({"batch_size": 250, "max_row_errors": 0, "timezone": "Europe/Zurich"})
    assert settings == IngestSettings(batch_size=250, max_row_errors=0, timezone="Europe/Zurich")


@pytest.mark.parametrize(
    "block",
    [{"batch_size": 0}, {"batch_size": -5}, {"max_row_errors": -1}, {"timezone": "Nowhere/Special"}],
)
def test_ingest_settings_rejects_bad_values(block):
    with pytest.raises(ValueError):
        IngestSettings.from_config(block)


def test_default_db_path(tmp_path):
    assert default_db_path({"run": {"output_dir": str(tmp_path)}}) == tmp_path.resolve() / DEFAULT_DB_NAME
    explicit = tmp_path / "elsewhere.sqlite"
    assert default_db_path({"run": {"db": str(explicit)}}) == explicit.resolve()


def test_config_hash_is_order_independent():
    a = {"run": {"label": "x", "output_dir": "."}, "ingest": {"batch_size": 5}}
    b = {"ingest": {"batch_size": 5}, "run": {"output_dir": ".", "label": "x"}}
    assert config_hash(a) == config_hash(b)
    assert len(config_hash(a)) == 7
    assert len(config_hash(a, length=64)) == 64
    assert config_hash(a) != config_hash({"run": {"label": "y"}})


def test_content_digest():
    assert content_digest(b"abc") == "ba7816bf8f01"
    assert len(content_digest(b"abc", length=20)) == 20


def test_setup_logger_creates_file(tmp_path):
    log_path = tmp_path / "icenuc.log"
    logger = setup_logger(logfile=log_path, verbose=True)
    child = get_logger("icenuc.tests")

    child.debug("debug message")
    child.info("info message")

    for handler in logger.handlers:
        flush = getattr(handler, "flush", None)
        if callable(flush):
            flush()

    assert log_path.is_file()
    contents = log_path.read_text()
    assert "info message" in contents
    assert "debug message" in contents


def test_setup_logger_does_not_stack_handlers(tmp_path):
    setup_logger(logfile=tmp_path / "a.log")
    logger = setup_logger(logfile=tmp_path / "b.log")
    assert len(logger.handlers) == 2
