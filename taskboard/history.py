"""
Bounded undo/redo history.

The undo side is a deque capped at ``cap`` entries; pushing past the cap
drops the oldest entry for good. Pushing a fresh entry clears the redo side.
"""
from collections import deque
from dataclasses import dataclass
from typing import Optional, List, Tuple

from .commands import Command

DEFAULT_HISTORY_CAP = 100


@dataclass(frozen=True)
class HistoryEntry:
    """One undoable step: (forward, inverse) pairs in application order."""
    label: str
    steps: Tuple[Tuple[Command, Command], ...]

    @property
    def is_transaction(self) -> bool:
        return len(self.steps) > 1

    def forwards(self) -> List[Command]:
        """Forward commands in their original order (for redo)."""
        return [fwd for fwd, _ in self.steps]

    def inverses(self) -> List[Command]:
        """Inverse commands in strict reverse order (for undo)."""
        return [inv for _, inv in reversed(self.steps)]


class HistoryManager:
    """Undo stack (bounded) plus redo stack."""

    def __init__(self, cap: int = DEFAULT_HISTORY_CAP):
        if cap < 1:
            raise ValueError(f"history cap must be positive, got {cap}")
        self.cap = cap
        self._undo: deque = deque(maxlen=cap)
        self._redo: List[HistoryEntry] = []
        self.evicted = 0

    def push(self, entry: HistoryEntry) -> None:
        """Record a freshly applied entry; discards any redo branch."""
        if len(self._undo) == self.cap:
            self.evicted += 1
        self._undo.append(entry)
        self._redo.clear()

    def pop_undo(self) -> Optional[HistoryEntry]:
        return self._undo.pop() if self._undo else None

    def pop_redo(self) -> Optional[HistoryEntry]:
        return self._redo.pop() if self._redo else None

    def push_redo(self, entry: HistoryEntry) -> None:
        """Move an undone entry onto the redo stack."""
        self._redo.append(entry)

    def push_undone(self, entry: HistoryEntry) -> None:
        """Return a redone (or failed-undo) entry to the undo stack without touching redo."""
        self._undo.append(entry)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def peek_undo(self) -> Optional[HistoryEntry]:
        return self._undo[-1] if self._undo else None

    def peek_redo(self) -> Optional[HistoryEntry]:
        return self._redo[-1] if self._redo else None
