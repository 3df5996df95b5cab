"""Command line entry point tests."""
import json
import os
import shutil
import tempfile

import pytest

import app
from database.manager import DatabaseManager


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from replacing the global loguru sinks during tests."""
    monkeypatch.setattr("config.logging_config.setup_logging", lambda **kwargs: None)


@pytest.fixture
def db_url():
    temp_dir = tempfile.mkdtemp(prefix="booking-cli-tests-")
    try:
        yield f"sqlite:///{os.path.join(temp_dir, 'cli.db')}"
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def _seed(db_url):
    db = DatabaseManager(db_url)
    db.create_tables()
    db.add_crew("C1")
    booking_id = db.create_booking({"customerId": "cust-1", "totalAmount": 50})["bookingId"]
    db.close()
    return booking_id


class TestCli:

    def test_init_db(self, db_url, capsys):
        assert app.main(["--db", db_url, "init-db"]) == 0
        assert json.loads(capsys.readouterr().out) == {"total": 0, "updated": 0}

    def test_validate_in_sync(self, db_url, capsys):
        booking_id = _seed(db_url)
        assert app.main(["--db", db_url, "validate", booking_id, "cust-1"]) == 0
        assert json.loads(capsys.readouterr().out)["reason"] == "in_sync"

    def test_validate_and_repair_drift(self, db_url, capsys):
        booking_id = _seed(db_url)
        db = DatabaseManager(db_url)
        db.mirrors.delete_mirror(booking_id, "cust-1")
        db.close()

        assert app.main(["--db", db_url, "validate", booking_id, "cust-1"]) == 1
        capsys.readouterr()
        assert app.main(["--db", db_url, "repair", booking_id, "cust-1"]) == 0
        assert json.loads(capsys.readouterr().out) == {"repaired": True}
        assert app.main(["--db", db_url, "sync-status", booking_id, "cust-1"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["in_sync"] is True

    def test_repair_requires_ids(self, db_url):
        assert app.main(["--db", db_url, "repair"]) == 2

    def test_reconcile(self, db_url, capsys):
        _seed(db_url)
        assert app.main(["--db", db_url, "reconcile"]) == 0
        assert json.loads(capsys.readouterr().out)["processed"] == 0
