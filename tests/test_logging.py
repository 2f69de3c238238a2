import logging

import pytest
import structlog

from weread_sync.db.database import close_db, get_db_session, init_db
from weread_sync.db.models import SyncLog
from weread_sync.utils.logging import DatabaseLogHandler, SyncLogger


@pytest.fixture
def log_db(tmp_path):
    init_db(f"sqlite:///{tmp_path}/logs.db")
    yield
    close_db()


def make_record(msg, level=logging.INFO):
    return logging.LogRecord("weread_sync.sync", level, __file__, 1, msg, None, None)


def stored_logs():
    with get_db_session() as session:
        return [log.to_dict() for log in session.query(SyncLog).order_by(SyncLog.id).all()]


def test_structlog_event_is_split_into_message_and_details(log_db):
    handler = DatabaseLogHandler()

    handler.emit(make_record({
        "event": "Failed to fetch book",
        "title": "Example Book",
        "sync_run_id": "abcd1234",
        "level": "error",
        "timestamp": "2023-11-14T22:13:20Z",
    }, level=logging.ERROR))

    [log] = stored_logs()
    assert log["message"] == "Failed to fetch book"
    assert log["level"] == "ERROR"
    assert log["logger"] == "weread_sync.sync"
    assert log["sync_run_id"] == "abcd1234"
    assert log["details"] == {"title": "Example Book"}


def test_plain_records_are_stored_without_details(log_db):
    DatabaseLogHandler().emit(make_record("plain message"))

    [log] = stored_logs()
    assert log["message"] == "plain message"
    assert log["details"] is None
    assert log["sync_run_id"] is None


def test_old_records_are_pruned(log_db):
    handler = DatabaseLogHandler(max_logs=3)

    for i in range(5):
        handler.emit(make_record(f"message {i}"))

    assert [log["message"] for log in stored_logs()] == ["message 2", "message 3", "message 4"]


def test_sync_logger_binds_run_id_for_the_run():
    with SyncLogger("run-1"):
        assert structlog.contextvars.get_contextvars()["sync_run_id"] == "run-1"

    assert "sync_run_id" not in structlog.contextvars.get_contextvars()
