from __future__ import annotations

import json
import stat
import threading

from greengrass_provisioner.lib.files import atomic_write_text
from greengrass_provisioner.status import ERROR_PROGRESS_CEILING, Phase, StatusPublisher


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_initial_document_is_starting(tmp_path):
    path = tmp_path / "status.json"
    StatusPublisher(str(path))

    doc = _read(path)
    assert doc["status"] == "STARTING"
    assert doc["progress_percentage"] == 0
    assert doc["timestamp"].endswith("Z")
    assert "error_details" not in doc


def test_status_file_is_world_readable_not_writable(tmp_path):
    path = tmp_path / "status.json"
    StatusPublisher(str(path)).update(Phase.CHECKING_CONNECTIVITY)

    mode = stat.S_IMODE(path.stat().st_mode)
    assert mode & stat.S_IROTH
    assert not mode & stat.S_IWOTH


def test_default_message_and_progress(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))
    status.update(Phase.READING_DATABASE)

    doc = _read(path)
    assert doc["status"] == "READING_DATABASE"
    assert doc["message"] == "Reading configuration from database"
    assert doc["progress_percentage"] == 40


def test_progress_is_clamped(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))

    assert status.update(Phase.PROVISIONING, progress=-10).progress_percent == 0
    assert _read(path)["progress_percentage"] == 0

    assert status.update(Phase.PROVISIONING, progress=150).progress_percent == 100
    assert _read(path)["progress_percentage"] == 100


def test_report_error_without_details_omits_field(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))
    status.report_error("Provisioning failed", "")

    doc = _read(path)
    assert doc["status"] == "ERROR"
    assert "error_details" not in doc


def test_report_error_details_verbatim(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))
    status.report_error("Provisioning failed", "useradd: cannot lock /etc/passwd")

    assert _read(path)["error_details"] == "useradd: cannot lock /etc/passwd"


def test_non_error_update_clears_error_details(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))
    status.report_error("boom", "details")
    status.update(Phase.CHECKING_PROVISIONING)

    assert status.current().error_details is None
    assert "error_details" not in _read(path)


def test_error_never_shows_full_progress(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))
    status.update(Phase.COMPLETED)
    status.report_error("late failure", "x")

    assert _read(path)["progress_percentage"] == ERROR_PROGRESS_CEILING


def test_error_keeps_progress_reached(tmp_path):
    status = StatusPublisher(str(tmp_path / "status.json"))
    status.update(Phase.GENERATING_CONFIG)
    assert status.report_error("failed").progress_percent == 60


def test_write_failure_keeps_previous_document(tmp_path, monkeypatch):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))
    status.update(Phase.CHECKING_CONNECTIVITY)

    def _fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("greengrass_provisioner.status.atomic_write_text", _fail)
    status.update(Phase.READING_DATABASE)

    assert status.current().phase is Phase.READING_DATABASE
    assert _read(path)["status"] == "CHECKING_CONNECTIVITY"


def test_concurrent_updates_leave_valid_document(tmp_path):
    path = tmp_path / "status.json"
    status = StatusPublisher(str(path))

    def worker(n):
        for i in range(20):
            status.update(Phase.PROVISIONING, f"step {n}-{i}", 80 + i % 20)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    doc = _read(path)
    assert doc["status"] == "PROVISIONING"
    assert 0 <= doc["progress_percentage"] <= 100


def test_atomic_write_leaves_no_temp_files(tmp_path):
    target = tmp_path / "out" / "file.txt"
    atomic_write_text(target, "one")
    atomic_write_text(target, "two")

    assert target.read_text(encoding="utf-8") == "two"
    assert [p.name for p in target.parent.iterdir()] == ["file.txt"]
