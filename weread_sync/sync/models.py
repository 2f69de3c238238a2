"""
Data models for sync operations.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import uuid


@dataclass
class Book:
    """A book snapshot from the WeRead shelf."""
    book_id: str
    title: str
    author: str = ""
    cover_url: str = ""
    category: str = ""


@dataclass
class Note:
    """A WeRead review: a quoted passage with commentary."""
    book_id: str
    chapter_ref: int
    created_at: int  # epoch seconds
    quoted_text: str
    commentary: str
    note_id: str


@dataclass
class Highlight:
    """A WeRead bookmark: a quoted passage without commentary."""
    book_id: str
    chapter_ref: int
    created_at: int  # epoch seconds
    quoted_text: str
    highlight_id: str


@dataclass
class Card:
    """A card to be created in Writeathon."""
    title: str
    content: str
    note_count: int = 0
    highlight_count: int = 0
    earliest_created_at: int = 0  # epoch seconds of the oldest item on the card


@dataclass
class BookChanges:
    """New notes and highlights for a single book."""
    book: Book
    notes: List[Note] = field(default_factory=list)
    highlights: List[Highlight] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.notes and not self.highlights


@dataclass
class DispatchOutcome:
    """Result of dispatching a book's cards."""
    book_id: str
    cards_sent: int = 0
    cards_failed: int = 0
    notes_sent: int = 0
    highlights_sent: int = 0
    earliest_failed_at: Optional[int] = None  # epoch seconds

    @property
    def any_sent(self) -> bool:
        return self.cards_sent > 0


@dataclass
class SyncProgress:
    """Progress of the current sync run."""
    current_book_index: int = 0
    total_books: int = 0
    current_book_title: str = ""
    completed: bool = False
    is_background_run: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncProgress":
        return cls(
            current_book_index=data.get("current_book_index", 0),
            total_books=data.get("total_books", 0),
            current_book_title=data.get("current_book_title", ""),
            completed=data.get("completed", False),
            is_background_run=data.get("is_background_run", False),
        )


@dataclass
class SyncHistoryEntry:
    """Summary of one sync run."""
    note_count: int
    highlight_count: int
    success: bool
    message: str
    book_ids: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncHistoryEntry":
        return cls(
            id=data["id"],
            timestamp=data.get("timestamp", ""),
            note_count=data.get("note_count", 0),
            highlight_count=data.get("highlight_count", 0),
            success=data.get("success", False),
            message=data.get("message", ""),
            book_ids=list(data.get("book_ids", [])),
        )


@dataclass
class SyncResult:
    """Result returned by every sync entry point."""
    success: bool
    message: str
    note_count: int = 0
    highlight_count: int = 0
    book_ids: List[str] = field(default_factory=list)
    failed_books: List[str] = field(default_factory=list)
    history_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
