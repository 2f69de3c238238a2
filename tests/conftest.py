"""Shared fakes for the sync tests."""
from __future__ import annotations

import copy
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from weread_sync.api.base import APIError
from weread_sync.config import DestinationCredentials, SourceSession
from weread_sync.storage.repository import StateRepository
from weread_sync.sync.engine import SyncEngine
from weread_sync.sync.models import Book, Highlight, Note

NOW_MS = 1_700_000_000_000  # 2023-11-14T22:13:20Z
NOW_S = NOW_MS // 1000
DAY_S = 24 * 60 * 60


class MemoryStateStore:
    """StateStore kept in a dict; values are copied like a real store would."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = copy.deepcopy(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self.data:
            return default
        return copy.deepcopy(self.data[key])

    def set(self, key: str, value: Any) -> None:
        self.data[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        self.data.pop(key, None)

    def get_all(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    def replace_all(self, data: Dict[str, Any]) -> None:
        self.data = copy.deepcopy(data)


class FakeResponse:
    def __init__(self, payload: Any = None, *, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON payload provided")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; replays queued responses."""

    def __init__(self, responses: Iterable[Any]) -> None:
        self.headers: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self._responses = list(responses)
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


class FakeReader:
    """In-memory WeRead client."""

    def __init__(
        self,
        books: List[Book],
        notes: Optional[List[Note]] = None,
        highlights: Optional[List[Highlight]] = None,
        failing_books: Iterable[str] = (),
        notebooks_error: Optional[Exception] = None,
    ) -> None:
        self.books = books
        self.notes = notes or []
        self.highlights = highlights or []
        self.failing_books = set(failing_books)
        self.notebooks_error = notebooks_error
        self.closed = 0

    def get_notebooks(self) -> List[Book]:
        if self.notebooks_error:
            raise self.notebooks_error
        return list(self.books)

    def get_bookshelf(self) -> List[Book]:
        return list(self.books)

    def get_book_detail(self, book_id: str) -> Optional[Book]:
        return next((book for book in self.books if book.book_id == book_id), None)

    def get_notes(self, book_id: str) -> List[Note]:
        if book_id in self.failing_books:
            raise APIError("review list failed", status_code=500)
        return [note for note in self.notes if note.book_id == book_id]

    def get_highlights(self, book_id: str) -> List[Highlight]:
        return [item for item in self.highlights if item.book_id == book_id]

    def close(self) -> None:
        self.closed += 1


class FakeWriter:
    """In-memory Writeathon client; ``accept`` decides each card's fate."""

    def __init__(self, valid: bool = True, accept: Optional[Callable[[str, str], bool]] = None) -> None:
        self.valid = valid
        self.accept = accept or (lambda title, content: True)
        self.cards: List[tuple] = []
        self.attempts: List[tuple] = []

    def validate_credentials(self, credentials: DestinationCredentials) -> bool:
        return self.valid

    def get_user_info(self, credentials: DestinationCredentials) -> Optional[Dict[str, Any]]:
        return {"id": credentials.user_id, "username": "reader"} if self.valid else None

    def create_card(self, credentials: DestinationCredentials, title: str, content: str) -> bool:
        self.attempts.append((title, content))
        if not self.accept(title, content):
            return False
        self.cards.append((title, content))
        return True

    def close(self) -> None:
        pass


def make_book(book_id: str = "100", title: str = "Example Book") -> Book:
    return Book(book_id=book_id, title=title, author="Author", cover_url="", category="Fiction")


def make_note(book_id: str = "100", created_at: int = NOW_S - 60, note_id: str = "n1", **kwargs: Any) -> Note:
    base = {
        "chapter_ref": 1,
        "quoted_text": "A quoted passage",
        "commentary": "My thoughts",
    }
    base.update(kwargs)
    return Note(book_id=book_id, created_at=created_at, note_id=note_id, **base)


def make_highlight(book_id: str = "100", created_at: int = NOW_S - 60, highlight_id: str = "h1", **kwargs: Any) -> Highlight:
    base = {"chapter_ref": 1, "quoted_text": "A highlighted passage"}
    base.update(kwargs)
    return Highlight(book_id=book_id, created_at=created_at, highlight_id=highlight_id, **base)


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def repository(store: MemoryStateStore) -> StateRepository:
    return StateRepository(store)


@pytest.fixture
def configured_repository(repository: StateRepository) -> StateRepository:
    repository.save_credentials(DestinationCredentials(api_token="token", user_id="42"))
    repository.save_session(SourceSession(value="wr_skey=abc", expires_at=NOW_MS + DAY_S * 1000))
    return repository


@pytest.fixture
def make_engine(configured_repository: StateRepository):
    def _make(reader: FakeReader, writer: FakeWriter, listener=None, repository=None) -> SyncEngine:
        return SyncEngine(
            repository or configured_repository,
            writer,
            lambda cookie, settings: reader,
            progress_listener=listener,
            clock=lambda: NOW_MS,
        )

    return _make
