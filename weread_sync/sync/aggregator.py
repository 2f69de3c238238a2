"""
Groups new notes and highlights by book and dispatches them as cards.
"""

from typing import Dict, List, Sequence

from weread_sync.api.writeathon import WriteathonClient
from weread_sync.config import DestinationCredentials
from weread_sync.storage.repository import StateRepository
from weread_sync.sync.formatter import FormatContext, render_cards
from weread_sync.sync.models import Book, BookChanges, DispatchOutcome, Highlight, Note
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)


def group_by_book(
    notes: Sequence[Note],
    highlights: Sequence[Highlight],
    books: Sequence[Book],
) -> List[BookChanges]:
    """
    Group items by book, in the order of ``books``.

    Items whose book is not in ``books`` are dropped. Books without any
    item are left out.
    """
    grouped: Dict[str, BookChanges] = {book.book_id: BookChanges(book) for book in books}

    for note in notes:
        changes = grouped.get(note.book_id)
        if changes is None:
            logger.debug("Dropping note for unknown book", book_id=note.book_id, note_id=note.note_id)
            continue
        changes.notes.append(note)

    for highlight in highlights:
        changes = grouped.get(highlight.book_id)
        if changes is None:
            logger.debug(
                "Dropping highlight for unknown book",
                book_id=highlight.book_id,
                highlight_id=highlight.highlight_id,
            )
            continue
        changes.highlights.append(highlight)

    return [changes for changes in grouped.values() if not changes.is_empty]


class ContentAggregator:
    """
    Renders a book's changes and creates the cards in Writeathon.

    A book is added to the synced registry on its first successful card,
    never before.
    """

    def __init__(
        self,
        writer: WriteathonClient,
        repository: StateRepository,
        merge: bool = False,
    ):
        self.writer = writer
        self.repository = repository
        self.merge = merge

    def dispatch_book(
        self,
        changes: BookChanges,
        credentials: DestinationCredentials,
        date: str,
    ) -> DispatchOutcome:
        """
        Create every card for one book, continuing past failed cards.

        Args:
            changes: The book and its new items
            credentials: Writeathon credentials
            date: Heading date (YYYY-MM-DD)

        Returns:
            DispatchOutcome with sent/failed counts
        """
        book = changes.book
        context = FormatContext(
            book=book,
            is_first_sync=not self.repository.is_book_synced(book.book_id),
            date=date,
        )
        outcome = DispatchOutcome(book_id=book.book_id)
        registered = not context.is_first_sync

        for card in render_cards(context, changes.notes, changes.highlights, self.merge):
            if not self.writer.create_card(credentials, card.title, card.content):
                outcome.cards_failed += 1
                if outcome.earliest_failed_at is None or card.earliest_created_at < outcome.earliest_failed_at:
                    outcome.earliest_failed_at = card.earliest_created_at
                continue

            outcome.cards_sent += 1
            outcome.notes_sent += card.note_count
            outcome.highlights_sent += card.highlight_count

            if not registered:
                self.repository.mark_book_synced(book.book_id)
                registered = True

        logger.info(
            "Dispatched book",
            title=book.title,
            first_sync=context.is_first_sync,
            cards_sent=outcome.cards_sent,
            cards_failed=outcome.cards_failed,
        )
        return outcome
