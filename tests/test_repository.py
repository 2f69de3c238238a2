import pytest
from conftest import NOW_MS, MemoryStateStore

from weread_sync.config import ConfigManager, DestinationCredentials, SourceSession, TimeWindow
from weread_sync.db.database import close_db, init_db
from weread_sync.storage.repository import (
    MAX_HISTORY_ENTRIES,
    StateRepository,
    merge_state,
)
from weread_sync.storage.state_store import SqlStateStore
from weread_sync.sync.models import SyncHistoryEntry


@pytest.fixture
def sql_repository(tmp_path):
    init_db(f"sqlite:///{tmp_path}/state.db")
    yield StateRepository(SqlStateStore())
    close_db()


def history_entry(entry_id, message="ok"):
    return SyncHistoryEntry(note_count=1, highlight_count=0, success=True, message=message, id=entry_id)


def test_merge_state_adds_only_unknown_history_entries():
    current = {"syncHistory": [{"id": "a"}, {"id": "b"}]}
    incoming = {"syncHistory": [{"id": "b"}, {"id": "c"}]}

    merged = merge_state(current, incoming)

    assert [item["id"] for item in merged["syncHistory"]] == ["c", "a", "b"]


def test_merge_state_unions_book_id_lists():
    current = {"syncedBookIds": ["1", "2"], "autoSyncBooks": ["9"]}
    incoming = {"syncedBookIds": ["2", "3"], "autoSyncBooks": ["8"]}

    merged = merge_state(current, incoming)

    assert merged["syncedBookIds"] == ["1", "2", "3"]
    assert merged["autoSyncBooks"] == ["9", "8"]


def test_merge_state_overwrites_other_keys():
    current = {"syncSettings": {"timeWindow": "all"}, "book_last_sync_time_1": 5, "keep": True}
    incoming = {"syncSettings": {"timeWindow": "7d"}, "book_last_sync_time_1": 9}

    merged = merge_state(current, incoming)

    assert merged == {"syncSettings": {"timeWindow": "7d"}, "book_last_sync_time_1": 9, "keep": True}


def test_import_state_replaces_store_contents(repository, store):
    repository.add_history(history_entry("a"))
    exported = repository.export_state()
    repository.clear_history()
    repository.mark_book_synced("1")

    repository.import_state(exported)

    assert [entry.id for entry in repository.get_history()] == ["a"]
    assert repository.get_synced_book_ids() == ["1"]


def test_expired_session_is_cleared_on_read(repository, store):
    repository.save_session(SourceSession(value="cookie", expires_at=NOW_MS))

    assert repository.get_session(NOW_MS - 1).value == "cookie"
    assert repository.get_session(NOW_MS) is None
    assert "wereadCookie" not in store.data


def test_session_create_sets_expiry():
    session = SourceSession.create("cookie", expires_in_days=29)

    assert session.expires_at > NOW_MS
    assert not session.is_expired(session.expires_at - 1)


def test_history_is_capped_newest_first(repository):
    for i in range(MAX_HISTORY_ENTRIES + 5):
        repository.add_history(history_entry(str(i)))

    history = repository.get_history()

    assert len(history) == MAX_HISTORY_ENTRIES
    assert history[0].id == str(MAX_HISTORY_ENTRIES + 4)


def test_delete_history_entry(repository):
    repository.add_history(history_entry("a"))
    repository.add_history(history_entry("b"))

    assert repository.delete_history_entry("a") is True
    assert repository.delete_history_entry("missing") is False
    assert [entry.id for entry in repository.get_history()] == ["b"]


def test_auto_sync_book_marks(repository):
    repository.add_auto_sync_book("1")
    repository.add_auto_sync_book("1")
    repository.add_auto_sync_book("2")
    repository.remove_auto_sync_book("1")

    assert repository.get_auto_sync_book_ids() == ["2"]
    assert repository.is_auto_sync_book("2")


def test_reset_last_sync_time(repository):
    repository.set_last_global_sync_at(NOW_MS)

    repository.reset_last_sync_time()

    assert repository.get_sync_settings().last_global_sync_at == 0


def test_config_manager_validates_updates():
    manager = ConfigManager(StateRepository(MemoryStateStore()))

    updated = manager.update_settings(time_window="7d", poll_interval_minutes=30)

    assert updated.time_window == TimeWindow.LAST_7_DAYS
    assert manager.get_settings().poll_interval_minutes == 30
    with pytest.raises(ValueError):
        manager.update_settings(poll_interval_minutes=0)
    assert manager.is_configured() is False


def test_sql_store_round_trips_state(sql_repository):
    sql_repository.save_credentials(DestinationCredentials(api_token="t", user_id="42"))
    sql_repository.mark_book_synced("1")
    sql_repository.mark_book_synced("2")
    sql_repository.save_checkpoint("1", NOW_MS)
    sql_repository.add_history(history_entry("a"))

    assert sql_repository.get_credentials().user_id == "42"
    assert sql_repository.get_synced_book_ids() == ["1", "2"]
    assert sql_repository.get_checkpoints() == {"1": NOW_MS}
    assert sql_repository.get_history()[0].message == "ok"


def test_sql_store_full_reset_and_import(sql_repository):
    sql_repository.mark_book_synced("1")
    sql_repository.save_checkpoint("1", NOW_MS)
    sql_repository.add_auto_sync_book("1")

    sql_repository.clear_synced_books()

    assert sql_repository.get_synced_book_ids() == []
    assert sql_repository.get_checkpoint("1") == 0
    assert sql_repository.get_auto_sync_book_ids() == ["1"]

    sql_repository.import_state({"syncedBookIds": ["3"], "book_last_sync_time_3": 7})

    assert sql_repository.get_synced_book_ids() == ["3"]
    assert sql_repository.get_checkpoint("3") == 7
    assert sql_repository.get_auto_sync_book_ids() == ["1"]


@pytest.mark.parametrize("incoming", [
    {"syncHistory": ["not an object"]},
    {"syncHistory": {"id": "a"}},
    {"syncedBookIds": "1"},
    {"autoSyncBooks": [1, 2]},
])
def test_merge_state_rejects_malformed_snapshots(incoming):
    current = {"syncHistory": [{"id": "a"}], "syncedBookIds": ["1"], "autoSyncBooks": []}

    with pytest.raises(ValueError):
        merge_state(current, incoming)


def test_rejected_import_leaves_store_untouched(repository, store):
    repository.mark_book_synced("1")
    before = store.get_all()

    with pytest.raises(ValueError):
        repository.import_state({"syncedBookIds": ["2"], "syncHistory": [42]})

    assert store.get_all() == before
