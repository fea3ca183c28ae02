"""
BoardModel: the board collection and the only code that mutates it.

``apply(command)`` validates everything a command touches before changing
anything, then returns the inverse command. A rejected command raises a
ValidationError and leaves the model exactly as it was.
"""
import logging
from dataclasses import replace
from datetime import date
from typing import Optional, List, Dict, Tuple, Iterable, Any

from .schema import Board, CardList, Card, Comment, Priority, CardStatus
from .commands import (
    Command,
    CreateBoard, DeleteBoard, RestoreBoard, RenameBoard,
    CreateList, DeleteList, RestoreList, RenameList, ReorderList,
    CreateCard, DeleteCard, EditCard, MoveCard, ReorderCard,
)
from .errors import NotFound, InvalidIndex, DuplicateName, IdInUse, InvalidField, ValidationError

logger = logging.getLogger(__name__)

EDITABLE_CARD_FIELDS = ("title", "description", "tags", "due_date", "priority", "status", "comments")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Validation helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _clean_name(name: Any, what: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidField(f"{what} name must not be blank")
    return name.strip()


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _insert_index(index: Optional[int], size: int) -> int:
    """Resolve an insertion point; None appends."""
    if index is None:
        return size
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index <= size:
        raise InvalidIndex(index, size)
    return index


def _position_index(index: int, size: int) -> int:
    """Validate a position among existing items."""
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < size:
        raise InvalidIndex(index, size)
    return index


def _moved(items: Tuple[str, ...], item: str, to_index: int) -> Tuple[str, ...]:
    rest = [i for i in items if i != item]
    rest.insert(to_index, item)
    return tuple(rest)


def _coerce_card_field(name: str, value: Any) -> Any:
    """Normalize one edited card field, raising InvalidField if unusable."""
    if name == "title":
        if not isinstance(value, str) or not value.strip():
            raise InvalidField("card title must not be blank")
        return value.strip()
    if name == "description":
        if not isinstance(value, str):
            raise InvalidField("description must be text")
        return value
    if name == "tags":
        if isinstance(value, str):
            raise InvalidField("tags must be a collection of strings")
        tags = list(value)
        if not all(isinstance(t, str) for t in tags):
            raise InvalidField("tags must be a collection of strings")
        return frozenset(t.strip() for t in tags if t.strip())
    if name == "due_date":
        if value is None or isinstance(value, date):
            return value
        try:
            return date.fromisoformat(value)
        except (TypeError, ValueError):
            raise InvalidField(f"invalid due date: {value!r}")
    if name == "priority":
        try:
            return value if isinstance(value, Priority) else Priority(value)
        except ValueError:
            raise InvalidField(f"invalid priority: {value!r}")
    if name == "status":
        try:
            return value if isinstance(value, CardStatus) else CardStatus(value)
        except ValueError:
            raise InvalidField(f"invalid status: {value!r}")
    if name == "comments":
        comments = tuple(value)
        if not all(isinstance(c, Comment) for c in comments):
            raise InvalidField("comments must be Comment values")
        return comments
    raise InvalidField(f"card field '{name}' cannot be edited")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BoardModel
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BoardModel:
    """The full board collection plus the active-board pointer."""

    def __init__(self):
        self._boards: Dict[str, Board] = {}
        self._lists: Dict[str, CardList] = {}
        self._cards: Dict[str, Card] = {}
        self._board_order: List[str] = []
        self._active: Optional[str] = None
        # Reverse indexes: list → owning board, card → owning list
        self._list_board: Dict[str, str] = {}
        self._card_list: Dict[str, str] = {}

    # ── Construction ────────────────────────────────────────────────────────

    @classmethod
    def from_parts(
        cls,
        boards: Iterable[Board],
        lists: Iterable[CardList],
        cards: Iterable[Card],
        active_board_id: Optional[str] = None,
    ) -> "BoardModel":
        """Assemble a model from loaded entities and check its invariants."""
        model = cls()
        for board in boards:
            if board.board_id in model._boards:
                raise IdInUse(board.board_id)
            model._boards[board.board_id] = board
            model._board_order.append(board.board_id)
        for card_list in lists:
            if card_list.list_id in model._lists:
                raise IdInUse(card_list.list_id)
            model._lists[card_list.list_id] = card_list
        for card in cards:
            if card.card_id in model._cards:
                raise IdInUse(card.card_id)
            model._cards[card.card_id] = card
        model._active = active_board_id
        if model._active is None and model._board_order:
            model._active = model._board_order[0]
        model._reindex()
        model.validate()
        return model

    def _reindex(self) -> None:
        self._list_board = {
            list_id: board.board_id
            for board in self._boards.values()
            for list_id in board.list_ids
        }
        self._card_list = {
            card_id: card_list.list_id
            for card_list in self._lists.values()
            for card_id in card_list.card_ids
        }

    def validate(self) -> None:
        """Check the structural invariants; raise ValidationError if broken."""
        seen_lists = set()
        for board_id in self._board_order:
            for list_id in self._boards[board_id].list_ids:
                if list_id not in self._lists:
                    raise NotFound(list_id, "list")
                if list_id in seen_lists:
                    raise ValidationError(f"list {list_id} is referenced by more than one board")
                seen_lists.add(list_id)
        if seen_lists != set(self._lists):
            orphans = sorted(set(self._lists) - seen_lists)
            raise ValidationError(f"lists not attached to any board: {orphans}")

        seen_cards = set()
        for list_id in seen_lists:
            for card_id in self._lists[list_id].card_ids:
                if card_id not in self._cards:
                    raise NotFound(card_id, "card")
                if card_id in seen_cards:
                    raise ValidationError(f"card {card_id} is referenced by more than one list")
                seen_cards.add(card_id)
        if seen_cards != set(self._cards):
            orphans = sorted(set(self._cards) - seen_cards)
            raise ValidationError(f"cards not attached to any list: {orphans}")

        if self._board_order and self._active not in self._boards:
            raise NotFound(str(self._active), "active board")
        if not self._board_order and self._active is not None:
            raise NotFound(self._active, "active board")

    # ── Read accessors ──────────────────────────────────────────────────────

    @property
    def active_board_id(self) -> Optional[str]:
        return self._active

    @property
    def active_board(self) -> Optional[Board]:
        return self._boards.get(self._active) if self._active else None

    def boards(self) -> List[Board]:
        return [self._boards[b] for b in self._board_order]

    def board(self, board_id: str) -> Board:
        try:
            return self._boards[board_id]
        except KeyError:
            raise NotFound(board_id, "board")

    def card_list(self, list_id: str) -> CardList:
        try:
            return self._lists[list_id]
        except KeyError:
            raise NotFound(list_id, "list")

    def card(self, card_id: str) -> Card:
        try:
            return self._cards[card_id]
        except KeyError:
            raise NotFound(card_id, "card")

    def has_card(self, card_id: str) -> bool:
        return card_id in self._cards

    def lists_of(self, board_id: str) -> List[CardList]:
        return [self._lists[l] for l in self.board(board_id).list_ids]

    def cards_of(self, list_id: str) -> List[Card]:
        return [self._cards[c] for c in self.card_list(list_id).card_ids]

    def all_cards(self) -> List[Card]:
        return list(self._cards.values())

    def list_of_card(self, card_id: str) -> str:
        try:
            return self._card_list[card_id]
        except KeyError:
            raise NotFound(card_id, "card")

    def board_of_list(self, list_id: str) -> str:
        try:
            return self._list_board[list_id]
        except KeyError:
            raise NotFound(list_id, "list")

    def find_board(self, name: str) -> Optional[Board]:
        key = _name_key(name)
        for board in self.boards():
            if _name_key(board.name) == key:
                return board
        return None

    def find_list(self, board_id: str, name: str) -> Optional[CardList]:
        key = _name_key(name)
        for card_list in self.lists_of(board_id):
            if _name_key(card_list.name) == key:
                return card_list
        return None

    def snapshot(self) -> "BoardModel":
        """Independent copy; entities are immutable so a shallow copy suffices."""
        copy = BoardModel()
        copy._boards = dict(self._boards)
        copy._lists = dict(self._lists)
        copy._cards = dict(self._cards)
        copy._board_order = list(self._board_order)
        copy._active = self._active
        copy._list_board = dict(self._list_board)
        copy._card_list = dict(self._card_list)
        return copy

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BoardModel):
            return NotImplemented
        return (
            self._board_order == other._board_order
            and self._active == other._active
            and self._boards == other._boards
            and self._lists == other._lists
            and self._cards == other._cards
        )

    def __repr__(self) -> str:
        return (
            f"BoardModel(boards={len(self._boards)}, lists={len(self._lists)}, "
            f"cards={len(self._cards)}, active={self._active})"
        )

    # ── Navigation ──────────────────────────────────────────────────────────

    def select_board(self, board_id: str) -> None:
        """Make a board active. Navigation only; not part of history."""
        self.board(board_id)
        self._active = board_id

    # ── Mutation ────────────────────────────────────────────────────────────

    def apply(self, command: Command) -> Command:
        """Validate and apply a command, returning its inverse."""
        handler = self._HANDLERS.get(type(command))
        if handler is None:
            raise TypeError(f"unhandled command type: {type(command).__name__}")
        inverse = handler(self, command)
        logger.debug(f"Applied {command.describe()}")
        return inverse

    def _check_board_name(self, name: str, exclude: Optional[str] = None) -> None:
        key = _name_key(name)
        for board_id, board in self._boards.items():
            if board_id != exclude and _name_key(board.name) == key:
                raise DuplicateName(name, "board")

    def _check_list_name(self, board: Board, name: str, exclude: Optional[str] = None) -> None:
        key = _name_key(name)
        for list_id in board.list_ids:
            if list_id != exclude and _name_key(self._lists[list_id].name) == key:
                raise DuplicateName(name, "list")

    def _check_free(self, ids: Iterable[str], table: Dict[str, Any]) -> None:
        for entity_id in ids:
            if entity_id in table:
                raise IdInUse(entity_id)

    # Boards

    def _create_board(self, cmd: CreateBoard) -> Command:
        self._check_free([cmd.board_id], self._boards)
        name = _clean_name(cmd.name, "board")
        self._check_board_name(name)
        index = _insert_index(cmd.index, len(self._board_order))

        self._boards[cmd.board_id] = Board(cmd.board_id, name, cmd.description)
        self._board_order.insert(index, cmd.board_id)
        if self._active is None:
            self._active = cmd.board_id
        return DeleteBoard(cmd.board_id)

    def _delete_board(self, cmd: DeleteBoard) -> Command:
        board = self.board(cmd.board_id)
        index = self._board_order.index(board.board_id)
        lists = tuple(self._lists[l] for l in board.list_ids)
        cards = tuple(self._cards[c] for cl in lists for c in cl.card_ids)
        was_active = self._active == board.board_id

        for card in cards:
            del self._cards[card.card_id]
            del self._card_list[card.card_id]
        for card_list in lists:
            del self._lists[card_list.list_id]
            del self._list_board[card_list.list_id]
        del self._boards[board.board_id]
        self._board_order.remove(board.board_id)
        if was_active:
            if self._board_order:
                self._active = self._board_order[min(index, len(self._board_order) - 1)]
            else:
                self._active = None
        return RestoreBoard(board, lists, cards, index, was_active)

    def _restore_board(self, cmd: RestoreBoard) -> Command:
        board = cmd.board
        self._check_free([board.board_id], self._boards)
        self._check_free([l.list_id for l in cmd.lists], self._lists)
        self._check_free([c.card_id for c in cmd.cards], self._cards)
        self._check_board_name(board.name)
        index = _insert_index(cmd.index, len(self._board_order))
        if tuple(l.list_id for l in cmd.lists) != board.list_ids:
            raise InvalidField(f"restored lists do not match board {board.board_id}")
        if [c for l in cmd.lists for c in l.card_ids] != [c.card_id for c in cmd.cards]:
            raise InvalidField(f"restored cards do not match the lists of board {board.board_id}")

        self._boards[board.board_id] = board
        self._board_order.insert(index, board.board_id)
        for card_list in cmd.lists:
            self._lists[card_list.list_id] = card_list
            self._list_board[card_list.list_id] = board.board_id
            for card_id in card_list.card_ids:
                self._card_list[card_id] = card_list.list_id
        for card in cmd.cards:
            self._cards[card.card_id] = card
        if cmd.was_active or self._active is None:
            self._active = board.board_id
        return DeleteBoard(board.board_id)

    def _rename_board(self, cmd: RenameBoard) -> Command:
        board = self.board(cmd.board_id)
        name = _clean_name(cmd.name, "board")
        self._check_board_name(name, exclude=board.board_id)
        description = board.description if cmd.description is None else cmd.description

        self._boards[board.board_id] = replace(board, name=name, description=description)
        previous_description = None if cmd.description is None else board.description
        return RenameBoard(board.board_id, board.name, previous_description)

    # Lists

    def _create_list(self, cmd: CreateList) -> Command:
        self._check_free([cmd.list_id], self._lists)
        board = self.board(cmd.board_id)
        name = _clean_name(cmd.name, "list")
        self._check_list_name(board, name)
        index = _insert_index(cmd.index, len(board.list_ids))

        list_ids = list(board.list_ids)
        list_ids.insert(index, cmd.list_id)
        self._lists[cmd.list_id] = CardList(cmd.list_id, name)
        self._boards[board.board_id] = replace(board, list_ids=tuple(list_ids))
        self._list_board[cmd.list_id] = board.board_id
        return DeleteList(cmd.list_id)

    def _delete_list(self, cmd: DeleteList) -> Command:
        card_list = self.card_list(cmd.list_id)
        board = self._boards[self._list_board[card_list.list_id]]
        index = board.list_ids.index(card_list.list_id)
        cards = tuple(self._cards[c] for c in card_list.card_ids)

        for card in cards:
            del self._cards[card.card_id]
            del self._card_list[card.card_id]
        del self._lists[card_list.list_id]
        del self._list_board[card_list.list_id]
        self._boards[board.board_id] = replace(
            board, list_ids=tuple(l for l in board.list_ids if l != card_list.list_id)
        )
        return RestoreList(board.board_id, card_list, cards, index)

    def _restore_list(self, cmd: RestoreList) -> Command:
        board = self.board(cmd.board_id)
        card_list = cmd.card_list
        self._check_free([card_list.list_id], self._lists)
        self._check_free([c.card_id for c in cmd.cards], self._cards)
        self._check_list_name(board, card_list.name)
        index = _insert_index(cmd.index, len(board.list_ids))
        if card_list.card_ids != tuple(c.card_id for c in cmd.cards):
            raise InvalidField(f"restored cards do not match list {card_list.list_id}")

        list_ids = list(board.list_ids)
        list_ids.insert(index, card_list.list_id)
        self._boards[board.board_id] = replace(board, list_ids=tuple(list_ids))
        self._lists[card_list.list_id] = card_list
        self._list_board[card_list.list_id] = board.board_id
        for card in cmd.cards:
            self._cards[card.card_id] = card
            self._card_list[card.card_id] = card_list.list_id
        return DeleteList(card_list.list_id)

    def _rename_list(self, cmd: RenameList) -> Command:
        card_list = self.card_list(cmd.list_id)
        board = self._boards[self._list_board[card_list.list_id]]
        name = _clean_name(cmd.name, "list")
        self._check_list_name(board, name, exclude=card_list.list_id)

        self._lists[card_list.list_id] = replace(card_list, name=name)
        return RenameList(card_list.list_id, card_list.name)

    def _reorder_list(self, cmd: ReorderList) -> Command:
        card_list = self.card_list(cmd.list_id)
        board = self._boards[self._list_board[card_list.list_id]]
        old_index = board.list_ids.index(card_list.list_id)
        to_index = _position_index(cmd.to_index, len(board.list_ids))

        self._boards[board.board_id] = replace(
            board, list_ids=_moved(board.list_ids, card_list.list_id, to_index)
        )
        return ReorderList(card_list.list_id, old_index)

    # Cards

    def _create_card(self, cmd: CreateCard) -> Command:
        card = cmd.card
        self._check_free([card.card_id], self._cards)
        card_list = self.card_list(cmd.list_id)
        _coerce_card_field("title", card.title)
        index = _insert_index(cmd.index, len(card_list.card_ids))

        card_ids = list(card_list.card_ids)
        card_ids.insert(index, card.card_id)
        self._cards[card.card_id] = card
        self._lists[card_list.list_id] = replace(card_list, card_ids=tuple(card_ids))
        self._card_list[card.card_id] = card_list.list_id
        return DeleteCard(card.card_id)

    def _delete_card(self, cmd: DeleteCard) -> Command:
        card = self.card(cmd.card_id)
        card_list = self._lists[self._card_list[card.card_id]]
        index = card_list.card_ids.index(card.card_id)

        del self._cards[card.card_id]
        del self._card_list[card.card_id]
        self._lists[card_list.list_id] = replace(
            card_list, card_ids=tuple(c for c in card_list.card_ids if c != card.card_id)
        )
        return CreateCard(card_list.list_id, card, index)

    def _edit_card(self, cmd: EditCard) -> Command:
        card = self.card(cmd.card_id)
        if not cmd.changes:
            raise InvalidField("edit carries no changes")
        changes = {name: _coerce_card_field(name, value) for name, value in cmd.changes.items()}
        previous = {name: getattr(card, name) for name in changes}

        self._cards[card.card_id] = replace(card, updated_at=cmd.at, **changes)
        return EditCard(card.card_id, previous, at=card.updated_at)

    def _move_card(self, cmd: MoveCard) -> Command:
        card = self.card(cmd.card_id)
        target = self.card_list(cmd.to_list_id)
        source = self._lists[self._card_list[card.card_id]]
        old_index = source.card_ids.index(card.card_id)

        if source.list_id == target.list_id:
            to_index = _insert_index(cmd.to_index, len(source.card_ids) - 1)
            self._lists[source.list_id] = replace(
                source, card_ids=_moved(source.card_ids, card.card_id, to_index)
            )
        else:
            to_index = _insert_index(cmd.to_index, len(target.card_ids))
            card_ids = list(target.card_ids)
            card_ids.insert(to_index, card.card_id)
            self._lists[source.list_id] = replace(
                source, card_ids=tuple(c for c in source.card_ids if c != card.card_id)
            )
            self._lists[target.list_id] = replace(target, card_ids=tuple(card_ids))
            self._card_list[card.card_id] = target.list_id
        return MoveCard(card.card_id, source.list_id, old_index)

    def _reorder_card(self, cmd: ReorderCard) -> Command:
        card = self.card(cmd.card_id)
        card_list = self._lists[self._card_list[card.card_id]]
        old_index = card_list.card_ids.index(card.card_id)
        to_index = _position_index(cmd.to_index, len(card_list.card_ids))

        self._lists[card_list.list_id] = replace(
            card_list, card_ids=_moved(card_list.card_ids, card.card_id, to_index)
        )
        return ReorderCard(card.card_id, old_index)

    _HANDLERS = {
        CreateBoard: _create_board,
        DeleteBoard: _delete_board,
        RestoreBoard: _restore_board,
        RenameBoard: _rename_board,
        CreateList: _create_list,
        DeleteList: _delete_list,
        RestoreList: _restore_list,
        RenameList: _rename_list,
        ReorderList: _reorder_list,
        CreateCard: _create_card,
        DeleteCard: _delete_card,
        EditCard: _edit_card,
        MoveCard: _move_card,
        ReorderCard: _reorder_card,
    }
