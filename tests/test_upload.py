import sqlite3

from icenuc.db import api as db_api
from icenuc.pipeline.upload import UploadStatus, upload_workbook
from icenuc.utils.config import IngestSettings


def test_upload_success(conn, experiment, workbook_builder):
    builder = workbook_builder([("P1", "A1"), ("P2", "B3")], probes=1)
    builder.row("2024-03-15", "10:00:00", temps=[-4.2], states=[1, 0])

    response = upload_workbook(conn, experiment["experiment_id"], builder.to_bytes(), filename="run.xlsx")

    assert response.status is UploadStatus.completed
    assert response.success
    assert response.error is None
    assert response.temperature_readings_created == 1
    assert response.probe_temperature_readings_created == 1
    assert response.phase_transitions_created == 1
    assert response.wells_tracked == 2
    assert response.started_at <= response.completed_at

    payload = response.as_dict()
    assert payload["status"] == "completed"
    assert payload["errors"] == []


def test_upload_rejects_wrong_extension(conn, experiment, workbook_builder):
    builder = workbook_builder([("P1", "A1")])
    response = upload_workbook(conn, experiment["experiment_id"], builder.to_bytes(), filename="run.csv")

    assert response.status is UploadStatus.failed
    assert not response.success
    assert "Excel" in response.error
    assert response.completed_at is not None


def test_upload_reports_setup_failure(conn, experiment):
    response = upload_workbook(conn, experiment["experiment_id"], b"garbage")

    assert response.status is UploadStatus.failed
    assert response.error
    assert response.temperature_readings_created == 0


def test_upload_reports_row_errors(conn, experiment, workbook_builder):
    builder = workbook_builder([("P1", "A1")], probes=1)
    builder.row("yesterday", "10:00:00", temps=[1.0], states=[0])
    builder.row("2024-03-15", "10:00:01", temps=[1.0], states=[0])

    response = upload_workbook(conn, experiment["experiment_id"], builder.to_bytes(), filename="RUN.XLSX")

    assert response.status is UploadStatus.completed
    assert response.success
    assert len(response.errors) == 1
    assert response.errors[0].startswith("Row 8:")
    assert response.temperature_readings_created == 1


def test_upload_reports_committed_batches_on_storage_failure(conn, experiment, workbook_builder, monkeypatch):
    builder = workbook_builder([("P1", "A1")], probes=1)
    builder.row("yesterday", "10:00:00", temps=[1.0], states=[0])
    for second in range(10):
        builder.row("2024-03-15", f"10:00:{second:02d}", temps=[-1.0], states=[0])

    real_write = db_api.write_event_batch
    calls = []

    def fail_second(connection, readings, probe_readings, transitions):
        calls.append(1)
        if len(calls) > 1:
            raise sqlite3.OperationalError("disk I/O error")
        return real_write(connection, readings, probe_readings, transitions)

    monkeypatch.setattr(db_api, "write_event_batch", fail_second)

    response = upload_workbook(
        conn, experiment["experiment_id"], builder.to_bytes(),
        filename="run.xlsx", settings=IngestSettings(batch_size=5),
    )

    assert response.status is UploadStatus.failed
    assert not response.success
    assert "disk I/O error" in response.error
    assert response.temperature_readings_created == 3
    assert response.probe_temperature_readings_created == 2
    assert conn.execute("SELECT COUNT(*) FROM temperature_readings").fetchone()[0] == 3
    assert response.errors and response.errors[0].startswith("Row 8:")


def test_upload_reports_resolution_storage_failure(conn, experiment, workbook_builder, monkeypatch):
    builder = workbook_builder([("P1", "A1")], probes=1)
    builder.row("2024-03-15", "10:00:00", temps=[1.0], states=[1])

    def locked(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db_api, "fetch_tray_assignments", locked)

    response = upload_workbook(conn, experiment["experiment_id"], builder.to_bytes(), filename="run.xlsx")

    assert response.status is UploadStatus.failed
    assert "database is locked" in response.error
    assert response.temperature_readings_created == 0
