"""
ActionEngine: the single authoritative entry point for board mutation.

A successful dispatch is one unit of side effects:

    board mutated → history recorded → search index refreshed → dirty signal

A rejected command produces none of them. Validation failures come back in
the ActionOutcome; they are never raised to the caller and never swallowed.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Tuple

from .commands import Command
from .errors import HistoryEmpty, ValidationError
from .history import HistoryEntry, HistoryManager
from .model import BoardModel
from .search import SearchIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionOutcome:
    """Result of dispatch / undo / redo."""
    applied: bool
    commands: Tuple[Command, ...] = ()
    error: Optional[ValidationError] = None
    touched_cards: FrozenSet[str] = frozenset()

    @property
    def ok(self) -> bool:
        return self.applied and self.error is None

    @property
    def message(self) -> str:
        if self.error is not None:
            return str(self.error)
        return "; ".join(c.describe() for c in self.commands)

    @classmethod
    def rejected(cls, error: ValidationError) -> "ActionOutcome":
        return cls(applied=False, error=error)


@dataclass
class _OpenTransaction:
    label: str
    steps: List[Tuple[Command, Command]] = field(default_factory=list)
    depth: int = 1


class ActionEngine:
    """Validates, applies and records commands against one BoardModel."""

    def __init__(
        self,
        model: BoardModel,
        history: HistoryManager,
        index: SearchIndex,
        on_dirty: Optional[Callable[[], None]] = None,
    ):
        self.model = model
        self.history = history
        self.index = index
        self.on_dirty = on_dirty
        self._txn: Optional[_OpenTransaction] = None

    # ── Dispatch ────────────────────────────────────────────────────────────

    def dispatch(self, command: Command) -> ActionOutcome:
        """Apply a fresh command and record it (or its transaction)."""
        try:
            inverse = self.model.apply(command)
        except ValidationError as e:
            logger.debug(f"Rejected {command.describe()}: {e}")
            return ActionOutcome.rejected(e)

        touched = command.card_ids() | inverse.card_ids()
        if self._txn is not None:
            self._txn.steps.append((command, inverse))
        else:
            self.history.push(HistoryEntry(command.describe(), ((command, inverse),)))
        self._refresh(touched)
        self._mark_dirty()
        return ActionOutcome(applied=True, commands=(command,), touched_cards=touched)

    # ── Undo / Redo ─────────────────────────────────────────────────────────

    def undo(self) -> ActionOutcome:
        if self._txn is not None:
            return ActionOutcome.rejected(ValidationError("cannot undo inside an open transaction"))
        entry = self.history.pop_undo()
        if entry is None:
            return ActionOutcome.rejected(HistoryEmpty("nothing to undo"))

        outcome = self._replay(entry.inverses())
        if outcome.error is not None:
            self.history.push_undone(entry)
            logger.error(f"Undo of '{entry.label}' failed: {outcome.error}")
            return outcome
        self.history.push_redo(entry)
        logger.debug(f"Undid '{entry.label}'")
        return outcome

    def redo(self) -> ActionOutcome:
        if self._txn is not None:
            return ActionOutcome.rejected(ValidationError("cannot redo inside an open transaction"))
        entry = self.history.pop_redo()
        if entry is None:
            return ActionOutcome.rejected(HistoryEmpty("nothing to redo"))

        outcome = self._replay(entry.forwards())
        if outcome.error is not None:
            self.history.push_redo(entry)
            logger.error(f"Redo of '{entry.label}' failed: {outcome.error}")
            return outcome
        self.history.push_undone(entry)
        logger.debug(f"Redid '{entry.label}'")
        return outcome

    def _replay(self, commands: List[Command]) -> ActionOutcome:
        """Apply commands in order; on failure roll back the ones already applied."""
        applied: List[Command] = []
        rollback: List[Command] = []
        touched: FrozenSet[str] = frozenset()
        for command in commands:
            try:
                inverse = self.model.apply(command)
            except ValidationError as e:
                self._rollback(rollback)
                return ActionOutcome.rejected(e)
            applied.append(command)
            rollback.append(inverse)
            touched = touched | command.card_ids() | inverse.card_ids()

        self._refresh(touched)
        self._mark_dirty()
        return ActionOutcome(applied=True, commands=tuple(applied), touched_cards=touched)

    def _rollback(self, inverses: List[Command]) -> None:
        for inverse in reversed(inverses):
            self.model.apply(inverse)

    # ── Transactions ────────────────────────────────────────────────────────

    @property
    def in_transaction(self) -> bool:
        return self._txn is not None

    def begin(self, label: str = "transaction") -> None:
        """Open a transaction; nested opens join the outermost one."""
        if self._txn is not None:
            self._txn.depth += 1
            return
        self._txn = _OpenTransaction(label)

    def commit(self) -> Optional[HistoryEntry]:
        """Close the transaction; the outermost close records one history entry."""
        if self._txn is None:
            raise RuntimeError("commit() without an open transaction")
        self._txn.depth -= 1
        if self._txn.depth > 0:
            return None
        txn, self._txn = self._txn, None
        if not txn.steps:
            return None
        entry = HistoryEntry(txn.label, tuple(txn.steps))
        self.history.push(entry)
        logger.debug(f"Committed transaction '{txn.label}' ({len(txn.steps)} commands)")
        return entry

    def rollback(self) -> None:
        """Abandon the whole transaction, undoing its members in reverse order."""
        if self._txn is None:
            raise RuntimeError("rollback() without an open transaction")
        txn, self._txn = self._txn, None
        self._rollback([inv for _, inv in txn.steps])
        touched: FrozenSet[str] = frozenset()
        for fwd, inv in txn.steps:
            touched = touched | fwd.card_ids() | inv.card_ids()
        self._refresh(touched)
        if txn.steps:
            self._mark_dirty()
        logger.debug(f"Rolled back transaction '{txn.label}'")

    @contextmanager
    def transaction(self, label: str = "transaction"):
        """``with engine.transaction("bulk edit"):``: one undo step for the block."""
        self.begin(label)
        try:
            yield self
        except BaseException:
            if self._txn is not None:
                self.rollback()
            raise
        else:
            if self._txn is not None:
                self.commit()

    # ── Side effects ────────────────────────────────────────────────────────

    def _refresh(self, card_ids: FrozenSet[str]) -> None:
        for card_id in card_ids:
            if self.model.has_card(card_id):
                card = self.model.card(card_id)
                self.index.update(card_id, card.searchable_text, card.updated_at)
            else:
                self.index.remove(card_id)

    def _mark_dirty(self) -> None:
        if self.on_dirty is not None:
            self.on_dirty()

    def reset(self, model: BoardModel) -> None:
        """Swap in a whole new model (after a snapshot load); history restarts."""
        if self._txn is not None:
            raise RuntimeError("cannot replace the board inside an open transaction")
        self.model = model
        self.history.clear()
        self.index.rebuild(model)
