"""
Typed access to the sync state kept in a StateStore.

Key names match the extension's storage layout so exported snapshots stay
interchangeable.
"""

import time
from typing import Any, Dict, List, Optional

from weread_sync.config import DestinationCredentials, SourceSession, SyncSettings
from weread_sync.storage.state_store import StateStore
from weread_sync.sync.models import SyncHistoryEntry, SyncProgress
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

SYNC_SETTINGS_KEY = "syncSettings"
CREDENTIALS_KEY = "writeathonSettings"
SESSION_KEY = "wereadCookie"
HISTORY_KEY = "syncHistory"
SYNCED_BOOKS_KEY = "syncedBookIds"
AUTO_SYNC_BOOKS_KEY = "autoSyncBooks"
PROGRESS_KEY = "syncProgress"
CHECKPOINT_KEY_PREFIX = "book_last_sync_time_"

MAX_HISTORY_ENTRIES = 100

# Array keys merged by set union on import
BOOK_ID_SET_KEYS = (SYNCED_BOOKS_KEY, AUTO_SYNC_BOOKS_KEY)


def checkpoint_key(book_id: str) -> str:
    return f"{CHECKPOINT_KEY_PREFIX}{book_id}"


def validate_snapshot(incoming: Dict[str, Any]) -> None:
    """
    Raises:
        ValueError: If the history or a book id array has the wrong shape
    """
    history = incoming.get(HISTORY_KEY)
    if history is not None:
        if not isinstance(history, list) or not all(isinstance(item, dict) for item in history):
            raise ValueError(f"{HISTORY_KEY} must be a list of objects")

    for key in BOOK_ID_SET_KEYS:
        book_ids = incoming.get(key)
        if book_ids is None:
            continue
        if not isinstance(book_ids, list) or not all(isinstance(book_id, str) for book_id in book_ids):
            raise ValueError(f"{key} must be a list of book ids")


def merge_state(current: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge an imported snapshot into the current state.

    History arrays are de-duplicated by entry id with imported entries first,
    book id arrays are merged as an ordered set union, and every other key
    is overwritten by the imported value.

    Raises:
        ValueError: If the snapshot fails validate_snapshot
    """
    validate_snapshot(incoming)
    merged = dict(current)

    for key, value in incoming.items():
        existing = merged.get(key)

        if isinstance(value, list) and isinstance(existing, list):
            if key == HISTORY_KEY:
                existing_ids = {item.get("id") for item in existing}
                new_items = [item for item in value if item.get("id") not in existing_ids]
                merged[key] = new_items + existing
            elif key in BOOK_ID_SET_KEYS:
                merged[key] = list(dict.fromkeys(existing + value))
            else:
                merged[key] = value
        else:
            merged[key] = value

    return merged


class StateRepository:
    """
    Repository for settings, credentials, history, checkpoints and progress.
    """

    def __init__(self, store: StateStore):
        self.store = store

    # Settings

    def get_sync_settings(self) -> SyncSettings:
        data = self.store.get(SYNC_SETTINGS_KEY)
        if not data:
            return SyncSettings()
        return SyncSettings.model_validate(data)

    def save_sync_settings(self, settings: SyncSettings) -> None:
        self.store.set(SYNC_SETTINGS_KEY, settings.model_dump(mode="json"))

    def set_last_global_sync_at(self, timestamp_ms: int) -> None:
        """Update only the last full-sync time, keeping any other saved changes."""
        settings = self.get_sync_settings()
        settings.last_global_sync_at = timestamp_ms
        self.save_sync_settings(settings)

    def reset_last_sync_time(self) -> None:
        self.set_last_global_sync_at(0)

    # Credentials and session

    def get_credentials(self) -> DestinationCredentials:
        data = self.store.get(CREDENTIALS_KEY)
        if not data:
            return DestinationCredentials()
        return DestinationCredentials.model_validate(data)

    def save_credentials(self, credentials: DestinationCredentials) -> None:
        self.store.set(CREDENTIALS_KEY, credentials.model_dump(mode="json"))

    def get_session(self, now_ms: Optional[int] = None) -> Optional[SourceSession]:
        """Return the WeRead session, dropping it if it has expired."""
        data = self.store.get(SESSION_KEY)
        if not data:
            return None

        session = SourceSession.model_validate(data)
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        if session.is_expired(now_ms):
            logger.info("WeRead session expired, clearing it")
            self.clear_session()
            return None

        return session

    def save_session(self, session: SourceSession) -> None:
        self.store.set(SESSION_KEY, session.model_dump(mode="json"))

    def clear_session(self) -> None:
        self.store.remove(SESSION_KEY)

    # History

    def get_history(self) -> List[SyncHistoryEntry]:
        return [SyncHistoryEntry.from_dict(item) for item in self.store.get(HISTORY_KEY, [])]

    def add_history(self, entry: SyncHistoryEntry) -> None:
        """Prepend an entry, keeping the newest MAX_HISTORY_ENTRIES."""
        entries = self.store.get(HISTORY_KEY, [])
        entries.insert(0, entry.to_dict())
        self.store.set(HISTORY_KEY, entries[:MAX_HISTORY_ENTRIES])

    def delete_history_entry(self, entry_id: str) -> bool:
        entries = self.store.get(HISTORY_KEY, [])
        remaining = [item for item in entries if item.get("id") != entry_id]
        if len(remaining) == len(entries):
            return False
        self.store.set(HISTORY_KEY, remaining)
        return True

    def clear_history(self) -> None:
        self.store.remove(HISTORY_KEY)

    # Synced book registry

    def get_synced_book_ids(self) -> List[str]:
        return list(self.store.get(SYNCED_BOOKS_KEY, []))

    def mark_book_synced(self, book_id: str) -> None:
        synced = self.get_synced_book_ids()
        if book_id not in synced:
            synced.append(book_id)
            self.store.set(SYNCED_BOOKS_KEY, synced)

    def is_book_synced(self, book_id: str) -> bool:
        return book_id in self.get_synced_book_ids()

    def clear_synced_books(self) -> None:
        """Full reset: forget every synced book and its checkpoint."""
        for key in list(self.store.get_all()):
            if key.startswith(CHECKPOINT_KEY_PREFIX):
                self.store.remove(key)
        self.store.remove(SYNCED_BOOKS_KEY)

    # Per-book checkpoints

    def get_checkpoint(self, book_id: str) -> int:
        return self.store.get(checkpoint_key(book_id), 0) or 0

    def save_checkpoint(self, book_id: str, timestamp_ms: int) -> None:
        self.store.set(checkpoint_key(book_id), timestamp_ms)

    def get_checkpoints(self) -> Dict[str, int]:
        return {
            key[len(CHECKPOINT_KEY_PREFIX):]: value
            for key, value in self.store.get_all().items()
            if key.startswith(CHECKPOINT_KEY_PREFIX)
        }

    # Progress

    def get_progress(self) -> Optional[SyncProgress]:
        data = self.store.get(PROGRESS_KEY)
        return SyncProgress.from_dict(data) if data else None

    def save_progress(self, progress: SyncProgress) -> None:
        self.store.set(PROGRESS_KEY, progress.to_dict())

    def clear_progress(self) -> None:
        self.store.remove(PROGRESS_KEY)

    # Books marked for background sync

    def get_auto_sync_book_ids(self) -> List[str]:
        return list(self.store.get(AUTO_SYNC_BOOKS_KEY, []))

    def add_auto_sync_book(self, book_id: str) -> None:
        books = self.get_auto_sync_book_ids()
        if book_id not in books:
            books.append(book_id)
            self.store.set(AUTO_SYNC_BOOKS_KEY, books)

    def remove_auto_sync_book(self, book_id: str) -> None:
        books = self.get_auto_sync_book_ids()
        if book_id in books:
            books.remove(book_id)
            self.store.set(AUTO_SYNC_BOOKS_KEY, books)

    def is_auto_sync_book(self, book_id: str) -> bool:
        return book_id in self.get_auto_sync_book_ids()

    def clear_auto_sync_books(self) -> None:
        self.store.set(AUTO_SYNC_BOOKS_KEY, [])

    # Export / import

    def export_state(self) -> Dict[str, Any]:
        return self.store.get_all()

    def import_state(self, data: Dict[str, Any]) -> Dict[str, Any]:
        merged = merge_state(self.store.get_all(), data)
        self.store.replace_all(merged)
        logger.info("Imported state", keys=len(data))
        return merged
