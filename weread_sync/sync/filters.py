"""
Change detection for notes and highlights.

WeRead timestamps are epoch seconds; checkpoints and settings are epoch
milliseconds. Every comparison is done in milliseconds.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from weread_sync.config import SyncSettings, TimeWindow
from weread_sync.sync.models import Note, Highlight


@dataclass(frozen=True)
class CheckpointPolicy:
    """Keep items created strictly after the book's last sync."""
    last_synced_at: int = 0

    def accepts(self, created_at: int) -> bool:
        if not self.last_synced_at:
            return True
        return created_at * 1000 > self.last_synced_at


@dataclass(frozen=True)
class WindowPolicy:
    """Keep items created within a window ending at ``now_ms``."""
    window: TimeWindow
    now_ms: int

    def accepts(self, created_at: int) -> bool:
        duration = self.window.duration_ms
        if duration is None:
            return True
        return created_at * 1000 >= self.now_ms - duration


FilterPolicy = Union[CheckpointPolicy, WindowPolicy]


def filter_changes(
    notes: Sequence[Note],
    highlights: Sequence[Highlight],
    policy: FilterPolicy,
) -> Tuple[List[Note], List[Highlight]]:
    """Return the notes and highlights the policy considers new."""
    return (
        [note for note in notes if policy.accepts(note.created_at)],
        [highlight for highlight in highlights if policy.accepts(highlight.created_at)],
    )


def policy_for_book(checkpoint: int, settings: SyncSettings, now_ms: int) -> FilterPolicy:
    """
    Pick the policy for one book: its checkpoint if it has one, otherwise
    the configured time window.
    """
    if checkpoint > 0:
        return CheckpointPolicy(checkpoint)
    return WindowPolicy(settings.time_window, now_ms)
