"""
Main sync engine for WeRead Sync Service.

Orchestrates the sync process from WeRead notebooks to Writeathon cards.
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from weread_sync.api.base import APIError, RequestThrottle, SessionExpiredError
from weread_sync.api.weread import WeReadClient
from weread_sync.api.writeathon import WriteathonClient
from weread_sync.config import AppConfig, DestinationCredentials, SourceSession, SyncSettings
from weread_sync.storage.repository import StateRepository
from weread_sync.sync.aggregator import ContentAggregator
from weread_sync.sync.filters import CheckpointPolicy, filter_changes, policy_for_book
from weread_sync.sync.models import (
    Book,
    BookChanges,
    DispatchOutcome,
    SyncHistoryEntry,
    SyncProgress,
    SyncResult,
)
from weread_sync.utils.logging import get_logger, SyncLogger

logger = get_logger(__name__)

ProgressListener = Callable[[SyncProgress], None]

MISSING_CREDENTIALS_MESSAGE = "Please configure the Writeathon API token and user id"
MISSING_SESSION_MESSAGE = "Please log in to WeRead"
INVALID_CREDENTIALS_MESSAGE = "Writeathon API token or user id is invalid"
SESSION_EXPIRED_MESSAGE = "WeRead session expired, please log in again"


class SyncState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncAborted(Exception):
    """A precondition failed; the message is shown to the user."""


def current_time_ms() -> int:
    return int(time.time() * 1000)


def new_run_id() -> str:
    return str(uuid.uuid4())[:8]


def checkpoint_after(outcome: DispatchOutcome, now_ms: int) -> int:
    """
    Checkpoint to store for a book that had at least one card created.

    Item times are whole seconds, so the checkpoint ends just before the
    current second; items from that second are offered again next run.
    When a card failed, the checkpoint ends just before its oldest item.
    """
    checkpoint = (now_ms // 1000) * 1000 - 1
    if outcome.earliest_failed_at is not None:
        checkpoint = min(checkpoint, outcome.earliest_failed_at * 1000 - 1)
    return checkpoint


class SyncEngine:
    """
    Sync engine that coordinates a sync run.

    Responsibilities:
    - Check credentials and session before any network I/O
    - Fetch notes and highlights from WeRead
    - Select what is new for each book
    - Create Writeathon cards and record per-book checkpoints
    - Track progress and sync history
    """

    def __init__(
        self,
        repository: StateRepository,
        writer: WriteathonClient,
        reader_factory: Callable[[str, SyncSettings], WeReadClient],
        progress_listener: Optional[ProgressListener] = None,
        clock: Callable[[], int] = current_time_ms,
    ):
        """
        Initialize sync engine.

        Args:
            repository: Persisted sync state
            writer: Writeathon client
            reader_factory: Builds a WeRead client from a cookie and the
                run's settings
            progress_listener: Called with progress updates of manual runs
            clock: Current time in epoch milliseconds
        """
        self.repository = repository
        self.writer = writer
        self.reader_factory = reader_factory
        self.progress_listener = progress_listener
        self.clock = clock
        self.state = SyncState.IDLE
        self.last_state: Optional[SyncState] = None

    # Progress

    def _publish(self, progress: SyncProgress) -> None:
        self.repository.save_progress(progress)

        if progress.is_background_run or not self.progress_listener:
            return

        try:
            self.progress_listener(progress)
        except Exception as e:
            logger.warning("Progress listener failed", error=str(e))

    # Preconditions

    def _check_preconditions(self) -> Tuple[DestinationCredentials, SourceSession]:
        """
        Raises:
            SyncAborted: If credentials or session are missing or invalid
        """
        credentials = self.repository.get_credentials()
        if not credentials.is_complete:
            raise SyncAborted(MISSING_CREDENTIALS_MESSAGE)

        session = self.repository.get_session(self.clock())
        if session is None:
            raise SyncAborted(MISSING_SESSION_MESSAGE)

        if not self.writer.validate_credentials(credentials):
            raise SyncAborted(INVALID_CREDENTIALS_MESSAGE)

        return credentials, session

    def _fail(self, message: str, sync_logger: SyncLogger) -> SyncResult:
        self.state = SyncState.FAILED
        sync_logger.warning("Sync aborted", reason=message)
        return SyncResult(success=False, message=message)

    def _expire_session(self, sync_logger: SyncLogger) -> SyncResult:
        try:
            self.repository.clear_session()
        except Exception as e:
            sync_logger.error("Could not clear expired session", error=str(e))
        return self._fail(SESSION_EXPIRED_MESSAGE, sync_logger)

    def _crash(self, partial: SyncResult, error: Exception, sync_logger: SyncLogger) -> SyncResult:
        """
        Turn an unexpected error into a failed result.

        Cards already created before the error are kept in the result and
        in the history entry.
        """
        self.state = SyncState.FAILED
        message = f"Sync failed: {error}"
        if partial.note_count or partial.highlight_count:
            message += (
                f" after syncing {partial.note_count} notes and "
                f"{partial.highlight_count} highlights"
            )

        result = SyncResult(
            success=False,
            message=message,
            note_count=partial.note_count,
            highlight_count=partial.highlight_count,
            book_ids=list(partial.book_ids),
            failed_books=list(partial.failed_books),
        )
        try:
            self._record_history(result)
        except Exception as e:
            sync_logger.error("Could not record failed sync", error=str(e))
        return result

    def _finish(self) -> None:
        self.last_state = self.state
        self.state = SyncState.IDLE

    # Full run

    def sync(self, background: bool = False) -> SyncResult:
        """
        Sync every book with new notes or highlights.

        Args:
            background: Scheduled run; restricted to books marked for auto
                sync when any are marked, and no listener notifications

        Returns:
            SyncResult; never raises
        """
        with SyncLogger(new_run_id()) as sync_logger:
            try:
                return self._sync(background, sync_logger)
            finally:
                self._finish()

    def _sync(self, background: bool, sync_logger: SyncLogger) -> SyncResult:
        self.state = SyncState.VALIDATING
        result = SyncResult(success=True, message="")

        try:
            sync_logger.info("Starting sync run", background=background)
            self.repository.clear_progress()

            settings = self.repository.get_sync_settings()
            credentials, session = self._check_preconditions()

            self.state = SyncState.RUNNING
            reader = self.reader_factory(session.value, settings)
            try:
                self._run(reader, settings, credentials, background, result, sync_logger)
            finally:
                reader.close()

        except SyncAborted as e:
            return self._fail(str(e), sync_logger)
        except SessionExpiredError:
            return self._expire_session(sync_logger)
        except Exception as e:
            sync_logger.exception("Sync run failed", error=str(e))
            return self._crash(result, e, sync_logger)

        self.state = SyncState.COMPLETED
        return result

    def _run(
        self,
        reader: WeReadClient,
        settings: SyncSettings,
        credentials: DestinationCredentials,
        background: bool,
        result: SyncResult,
        sync_logger: SyncLogger,
    ) -> None:
        now_ms = self.clock()

        books = reader.get_notebooks()
        if background:
            marked = set(self.repository.get_auto_sync_book_ids())
            if marked:
                books = [book for book in books if book.book_id in marked]

        pending, fetch_failed = self._collect_changes(reader, books, settings, now_ms, sync_logger)
        sync_logger.info(
            "Resolved books to sync",
            books=len(books),
            changed=len(pending),
            fetch_failed=len(fetch_failed),
        )

        result.failed_books.extend(fetch_failed)
        self._dispatch(pending, credentials, settings.merge_notes_and_highlights, now_ms, background, result)

        self.repository.set_last_global_sync_at(now_ms)

        if not pending and not fetch_failed:
            result.message = "No new notes or highlights to sync"
            return

        result.message = self._summary(result, len(pending))
        self._record_history(result)

        sync_logger.info(
            "Sync run completed",
            notes=result.note_count,
            highlights=result.highlight_count,
            books=len(result.book_ids),
            failed_books=len(result.failed_books),
        )

    def _collect_changes(
        self,
        reader: WeReadClient,
        books: List[Book],
        settings: SyncSettings,
        now_ms: int,
        sync_logger: SyncLogger,
    ) -> Tuple[List[BookChanges], List[str]]:
        """
        Fetch and filter every book's notes and highlights.

        A book that cannot be fetched is skipped and reported; an expired
        session aborts the run.
        """
        pending = []
        failed = []

        for book in books:
            try:
                notes = reader.get_notes(book.book_id)
                highlights = reader.get_highlights(book.book_id)
            except SessionExpiredError:
                raise
            except APIError as e:
                sync_logger.error("Failed to fetch book", title=book.title, error=str(e))
                failed.append(book.book_id)
                continue

            policy = policy_for_book(self.repository.get_checkpoint(book.book_id), settings, now_ms)
            new_notes, new_highlights = filter_changes(notes, highlights, policy)

            sync_logger.debug(
                "Filtered book",
                title=book.title,
                notes=len(new_notes),
                highlights=len(new_highlights),
            )

            changes = BookChanges(book, new_notes, new_highlights)
            if not changes.is_empty:
                pending.append(changes)

        return pending, failed

    def _dispatch(
        self,
        pending: List[BookChanges],
        credentials: DestinationCredentials,
        merge: bool,
        now_ms: int,
        background: bool,
        result: SyncResult,
    ) -> None:
        """
        Create cards for each book in order, writing checkpoints as books
        succeed. Counts are added to ``result`` as each book finishes.
        """
        aggregator = ContentAggregator(self.writer, self.repository, merge=merge)
        date = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).date().isoformat()
        total = len(pending)

        self._publish(SyncProgress(total_books=total, is_background_run=background))

        for index, changes in enumerate(pending, start=1):
            self._publish(SyncProgress(
                current_book_index=index,
                total_books=total,
                current_book_title=changes.book.title,
                is_background_run=background,
            ))

            outcome = aggregator.dispatch_book(changes, credentials, date)

            result.note_count += outcome.notes_sent
            result.highlight_count += outcome.highlights_sent
            if outcome.any_sent:
                result.book_ids.append(changes.book.book_id)
                self.repository.save_checkpoint(changes.book.book_id, checkpoint_after(outcome, now_ms))
            if outcome.cards_failed:
                result.failed_books.append(changes.book.book_id)

        self._publish(SyncProgress(
            current_book_index=total,
            total_books=total,
            completed=True,
            is_background_run=background,
        ))

    @staticmethod
    def _summary(result: SyncResult, book_count: int) -> str:
        message = (
            f"Synced {result.note_count} notes and {result.highlight_count} highlights "
            f"from {len(result.book_ids)} of {book_count} books"
        )
        if result.failed_books:
            message += f"; {len(result.failed_books)} books had failures"
        return message

    def _record_history(self, result: SyncResult) -> None:
        entry = SyncHistoryEntry(
            note_count=result.note_count,
            highlight_count=result.highlight_count,
            success=result.success,
            message=result.message,
            book_ids=list(result.book_ids),
        )
        self.repository.add_history(entry)
        result.history_id = entry.id

    # Single book

    def sync_single_book(self, book_id: str) -> SyncResult:
        """
        Sync one book's notes and highlights created since its checkpoint.

        Returns:
            SyncResult; never raises
        """
        with SyncLogger(new_run_id()) as sync_logger:
            try:
                return self._sync_single_book(book_id, sync_logger)
            finally:
                self._finish()

    def _sync_single_book(self, book_id: str, sync_logger: SyncLogger) -> SyncResult:
        self.state = SyncState.VALIDATING
        result = SyncResult(success=True, message="")

        try:
            sync_logger.info("Starting single book sync", book_id=book_id)
            self.repository.clear_progress()

            settings = self.repository.get_sync_settings()
            credentials, session = self._check_preconditions()

            self.state = SyncState.RUNNING
            reader = self.reader_factory(session.value, settings)
            try:
                book = reader.get_book_detail(book_id)
                if book is None:
                    raise SyncAborted("Could not load book details")

                notes = reader.get_notes(book_id)
                highlights = reader.get_highlights(book_id)
            finally:
                reader.close()

            now_ms = self.clock()
            policy = CheckpointPolicy(self.repository.get_checkpoint(book_id))
            changes = BookChanges(book, *filter_changes(notes, highlights, policy))

            self._dispatch(
                [] if changes.is_empty else [changes],
                credentials,
                settings.merge_notes_and_highlights,
                now_ms,
                False,
                result,
            )

            if changes.is_empty:
                result.message = f"No new notes or highlights for {book.title}"
            else:
                result.message = (
                    f"Synced {result.note_count} notes and {result.highlight_count} "
                    f"highlights of {book.title}"
                )
                if result.failed_books:
                    result.message += "; some cards failed"
                self._record_history(result)

        except SyncAborted as e:
            return self._fail(str(e), sync_logger)
        except SessionExpiredError:
            return self._expire_session(sync_logger)
        except Exception as e:
            sync_logger.exception("Single book sync failed", book_id=book_id, error=str(e))
            return self._crash(result, e, sync_logger)

        self.state = SyncState.COMPLETED
        sync_logger.info("Single book sync completed", book_id=book_id, message=result.message)
        return result

    def close(self) -> None:
        """Close the Writeathon client."""
        self.writer.close()


def create_sync_engine(
    repository: StateRepository,
    config: AppConfig,
    progress_listener: Optional[ProgressListener] = None,
) -> SyncEngine:
    """
    Create a sync engine wired to the real WeRead and Writeathon APIs.

    Each run's WeRead client is throttled with that run's request delay.
    """
    def reader_factory(cookie: str, settings: SyncSettings) -> WeReadClient:
        return WeReadClient(
            cookie,
            base_url=config.weread_base_url,
            timeout=config.request_timeout,
            throttle=RequestThrottle(settings.inter_request_delay_ms),
        )

    writer = WriteathonClient(
        base_url=config.writeathon_base_url,
        timeout=config.request_timeout,
    )

    return SyncEngine(
        repository,
        writer,
        reader_factory,
        progress_listener=progress_listener,
    )
