"""
Flat key/value state store backed by the ``state`` table.

Each call runs in its own transaction, so a single get or set is atomic
but there is no atomicity across keys.
"""

from typing import Any, Dict, Optional, Protocol

from weread_sync.db.database import get_db_session
from weread_sync.db.models import StateEntry


class StateStore(Protocol):
    """Key/value persistence used by the sync core."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...

    def get_all(self) -> Dict[str, Any]: ...

    def replace_all(self, data: Dict[str, Any]) -> None: ...


class SqlStateStore:
    """StateStore implementation over SQLAlchemy."""

    def get(self, key: str, default: Any = None) -> Any:
        with get_db_session() as session:
            entry: Optional[StateEntry] = session.get(StateEntry, key)
            if entry is None or entry.value is None:
                return default
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with get_db_session() as session:
            entry = session.get(StateEntry, key)
            if entry is None:
                session.add(StateEntry(key=key, value=value))
            else:
                entry.value = value

    def remove(self, key: str) -> None:
        with get_db_session() as session:
            session.query(StateEntry).filter(StateEntry.key == key).delete()

    def get_all(self) -> Dict[str, Any]:
        with get_db_session() as session:
            return {entry.key: entry.value for entry in session.query(StateEntry).all()}

    def replace_all(self, data: Dict[str, Any]) -> None:
        with get_db_session() as session:
            session.query(StateEntry).delete()
            session.add_all(
                StateEntry(key=key, value=value) for key, value in data.items()
            )
