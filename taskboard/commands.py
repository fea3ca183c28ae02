"""
Board mutations as a closed set of invertible commands.

Every command carries the data needed to apply itself. ``BoardModel.apply``
returns the inverse command computed from the state it replaced, so undo
never has to re-read history.

    CreateBoard  ⇄ DeleteBoard ⇄ RestoreBoard
    CreateList   ⇄ DeleteList  ⇄ RestoreList
    CreateCard   ⇄ DeleteCard
    RenameBoard, RenameList, EditCard, MoveCard, ReorderList, ReorderCard
                 - self-inverse (carry the previous value)

Restore* commands are produced as inverses of deletes; they carry the whole
deleted subtree.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple, Dict, Any, FrozenSet

from .schema import Board, CardList, Card, new_id, utc_now


@dataclass(frozen=True)
class Command:
    """Base for every board mutation."""

    def card_ids(self) -> FrozenSet[str]:
        """Cards whose searchable text may change when this command runs."""
        return frozenset()

    def describe(self) -> str:
        return type(self).__name__


# ── Boards ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreateBoard(Command):
    name: str
    description: str = ""
    index: Optional[int] = None
    board_id: str = field(default_factory=lambda: new_id("board"))

    def describe(self) -> str:
        return f"create board '{self.name}'"


@dataclass(frozen=True)
class DeleteBoard(Command):
    board_id: str

    def describe(self) -> str:
        return f"delete board {self.board_id}"


@dataclass(frozen=True)
class RestoreBoard(Command):
    board: Board
    lists: Tuple[CardList, ...]
    cards: Tuple[Card, ...]
    index: int
    was_active: bool = False

    def card_ids(self) -> FrozenSet[str]:
        return frozenset(c.card_id for c in self.cards)

    def describe(self) -> str:
        return f"restore board '{self.board.name}'"


@dataclass(frozen=True)
class RenameBoard(Command):
    board_id: str
    name: str
    description: Optional[str] = None  # None leaves the description unchanged

    def describe(self) -> str:
        return f"rename board to '{self.name}'"


# ── Lists ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreateList(Command):
    board_id: str
    name: str
    index: Optional[int] = None
    list_id: str = field(default_factory=lambda: new_id("list"))

    def describe(self) -> str:
        return f"create list '{self.name}'"


@dataclass(frozen=True)
class DeleteList(Command):
    list_id: str

    def describe(self) -> str:
        return f"delete list {self.list_id}"


@dataclass(frozen=True)
class RestoreList(Command):
    board_id: str
    card_list: CardList
    cards: Tuple[Card, ...]
    index: int

    def card_ids(self) -> FrozenSet[str]:
        return frozenset(c.card_id for c in self.cards)

    def describe(self) -> str:
        return f"restore list '{self.card_list.name}'"


@dataclass(frozen=True)
class RenameList(Command):
    list_id: str
    name: str

    def describe(self) -> str:
        return f"rename list to '{self.name}'"


@dataclass(frozen=True)
class ReorderList(Command):
    list_id: str
    to_index: int

    def describe(self) -> str:
        return f"move list {self.list_id} to position {self.to_index}"


# ── Cards ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreateCard(Command):
    list_id: str
    card: Card
    index: Optional[int] = None

    def card_ids(self) -> FrozenSet[str]:
        return frozenset([self.card.card_id])

    def describe(self) -> str:
        return f"create card '{self.card.title}'"


@dataclass(frozen=True)
class DeleteCard(Command):
    card_id: str

    def card_ids(self) -> FrozenSet[str]:
        return frozenset([self.card_id])

    def describe(self) -> str:
        return f"delete card {self.card_id}"


@dataclass(frozen=True)
class EditCard(Command):
    """Replace selected card fields; ``at`` becomes the card's updated_at."""
    card_id: str
    changes: Dict[str, Any]
    at: datetime = field(default_factory=utc_now)

    def card_ids(self) -> FrozenSet[str]:
        return frozenset([self.card_id])

    def describe(self) -> str:
        return f"edit {', '.join(sorted(self.changes))} of card {self.card_id}"


@dataclass(frozen=True)
class MoveCard(Command):
    """Move a card to a list (the same one or another); index None appends."""
    card_id: str
    to_list_id: str
    to_index: Optional[int] = None

    def describe(self) -> str:
        return f"move card {self.card_id} to list {self.to_list_id}"


@dataclass(frozen=True)
class ReorderCard(Command):
    """Move a card to a new position within its current list."""
    card_id: str
    to_index: int

    def describe(self) -> str:
        return f"move card {self.card_id} to position {self.to_index}"


ALL_COMMANDS = (
    CreateBoard, DeleteBoard, RestoreBoard, RenameBoard,
    CreateList, DeleteList, RestoreList, RenameList, ReorderList,
    CreateCard, DeleteCard, EditCard, MoveCard, ReorderCard,
)
