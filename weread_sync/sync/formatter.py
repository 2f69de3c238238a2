"""
Card rendering for Writeathon.

Cards are markdown. A book's first sync gets a tag line and a link back
to the WeRead reader; later merged cards get a date heading instead.
"""

import re
from dataclasses import dataclass
from typing import List

from weread_sync.sync.models import Book, Card, Highlight, Note
from weread_sync.utils.book_id import book_url

TAG_PREFIX = "WeRead"
TITLE_MAX_LENGTH = 50
QUOTE_PREFIX_LENGTH = 20
SEPARATOR = "---\n\n"

_TITLE_DISALLOWED = re.compile(r"[^\u4e00-\u9fa5a-zA-Z0-9\s]")
_LEADING_WHITESPACE = re.compile(r"^[^\S\r\n]+", re.MULTILINE)


def sanitise_title(title: str, max_length: int = TITLE_MAX_LENGTH) -> str:
    """Keep CJK ideographs, ASCII letters, digits and whitespace; cap the length."""
    title = _TITLE_DISALLOWED.sub("", title)
    if len(title) <= max_length:
        return title
    return title[:max_length // 2]


def sanitise_content(content: str) -> str:
    """Strip leading whitespace, full-width spaces included, from every line."""
    return _LEADING_WHITESPACE.sub("", content)


def quote_prefix(text: str, length: int = QUOTE_PREFIX_LENGTH) -> str:
    if len(text) > length:
        return text[:length] + "..."
    return text


@dataclass(frozen=True)
class FormatContext:
    """Per-book rendering state shared by every card of one sync pass."""
    book: Book
    is_first_sync: bool
    date: str  # YYYY-MM-DD

    @property
    def link(self) -> str:
        return book_url(self.book.book_id)

    def book_header(self) -> str:
        return (
            f"#{TAG_PREFIX}/{sanitise_title(self.book.title)} \n\n"
            f"{TAG_PREFIX}: [{self.book.title}]({self.link})\n\n"
        )

    def date_heading(self) -> str:
        return f"### {self.date}\n\n"


def note_block(note: Note) -> str:
    return f"> {sanitise_content(note.quoted_text)}\n\n{sanitise_content(note.commentary)}\n\n"


def highlight_block(highlight: Highlight) -> str:
    return f"> {sanitise_content(highlight.quoted_text)}\n\n"


def render_merged_card(
    context: FormatContext,
    notes: List[Note],
    highlights: List[Highlight],
) -> Card:
    """One card holding every new note and highlight of a book."""
    content = context.book_header() if context.is_first_sync else context.date_heading()

    for note in notes:
        content += note_block(note) + SEPARATOR

    for highlight in highlights:
        content += highlight_block(highlight)

    content += "\n\n" + SEPARATOR

    return Card(
        title=f"{context.book.title} - notes and highlights",
        content=content,
        note_count=len(notes),
        highlight_count=len(highlights),
        earliest_created_at=min(item.created_at for item in [*notes, *highlights]),
    )


def render_note_card(context: FormatContext, note: Note) -> Card:
    return Card(
        title=f"{context.book.title} - note: {quote_prefix(note.quoted_text)}",
        content=context.book_header() + context.date_heading() + note_block(note) + SEPARATOR,
        note_count=1,
        earliest_created_at=note.created_at,
    )


def render_highlight_card(context: FormatContext, highlight: Highlight) -> Card:
    return Card(
        title=f"{context.book.title} - highlight: {quote_prefix(highlight.quoted_text)}",
        content=context.book_header() + context.date_heading() + highlight_block(highlight) + SEPARATOR,
        highlight_count=1,
        earliest_created_at=highlight.created_at,
    )


def render_cards(
    context: FormatContext,
    notes: List[Note],
    highlights: List[Highlight],
    merge: bool,
) -> List[Card]:
    """Render a book's changes as one merged card or one card per item."""
    if not notes and not highlights:
        return []

    if merge:
        return [render_merged_card(context, notes, highlights)]

    return (
        [render_note_card(context, note) for note in notes]
        + [render_highlight_card(context, highlight) for highlight in highlights]
    )
