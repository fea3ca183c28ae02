"""
Tests for the ActionEngine: dispatch side effects, undo/redo, transactions.
"""
import pytest

from taskboard.commands import (
    CreateBoard, CreateCard, CreateList, DeleteList, EditCard, MoveCard, RenameBoard,
)
from taskboard.engine import ActionEngine
from taskboard.errors import DuplicateName, HistoryEmpty, ValidationError
from taskboard.history import HistoryManager
from taskboard.model import BoardModel
from taskboard.schema import Card
from taskboard.search import SearchIndex


class EngineFixture:

    def setup_method(self):
        self.model = BoardModel()
        self.history = HistoryManager(cap=100)
        self.index = SearchIndex()
        self.dirty = 0
        self.engine = ActionEngine(self.model, self.history, self.index, on_dirty=self._dirty)

    def _dirty(self):
        self.dirty += 1

    def _titles(self, list_id):
        return [c.title for c in self.model.cards_of(list_id)]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Dispatch
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestDispatch(EngineFixture):

    def test_success_records_indexes_and_signals(self):
        board = CreateBoard("Personal")
        todo = CreateList(board.board_id, "Todo")
        card = Card.new("Buy milk")
        self.engine.dispatch(board)
        self.engine.dispatch(todo)
        outcome = self.engine.dispatch(CreateCard(todo.list_id, card))

        assert outcome.ok
        assert outcome.touched_cards == frozenset([card.card_id])
        assert self.history.undo_depth == 3
        assert card.card_id in self.index
        assert self.dirty == 3

    def test_rejection_has_no_side_effects(self):
        self.engine.dispatch(CreateBoard("Personal"))
        before = self.model.snapshot()
        outcome = self.engine.dispatch(CreateBoard("personal"))

        assert not outcome.ok
        assert isinstance(outcome.error, DuplicateName)
        assert "already exists" in outcome.message
        assert self.model == before
        assert self.history.undo_depth == 1
        assert self.dirty == 1

    def test_rejection_does_not_clear_redo(self):
        self.engine.dispatch(CreateBoard("Personal"))
        self.engine.undo()
        self.engine.dispatch(RenameBoard("board-missing", "x"))
        assert self.history.can_redo

    def test_edit_updates_index(self):
        board = CreateBoard("B")
        todo = CreateList(board.board_id, "Todo")
        card = Card.new("Buy milk")
        for cmd in (board, todo, CreateCard(todo.list_id, card)):
            self.engine.dispatch(cmd)
        self.engine.dispatch(EditCard(card.card_id, {"title": "Write report"}))
        assert self.index.query("report") == [card.card_id]
        assert self.index.query("milk") == []

    def test_delete_list_drops_cards_from_index(self):
        board = CreateBoard("B")
        todo = CreateList(board.board_id, "Todo")
        card = Card.new("Buy milk")
        for cmd in (board, todo, CreateCard(todo.list_id, card)):
            self.engine.dispatch(cmd)
        self.engine.dispatch(DeleteList(todo.list_id))
        assert card.card_id not in self.index


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Undo / Redo
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestUndoRedo(EngineFixture):

    def _build(self):
        self.board = CreateBoard("Personal")
        self.todo = CreateList(self.board.board_id, "Todo")
        self.card = Card.new("Buy milk")
        self.done = CreateList(self.board.board_id, "Done")
        for cmd in (self.board, self.todo, CreateCard(self.todo.list_id, self.card), self.done):
            assert self.engine.dispatch(cmd).ok

    def test_move_undo_redo_scenario(self):
        self._build()
        self.engine.dispatch(MoveCard(self.card.card_id, self.done.list_id))
        assert self._titles(self.done.list_id) == ["Buy milk"]

        self.engine.undo()
        assert self._titles(self.todo.list_id) == ["Buy milk"]
        assert self._titles(self.done.list_id) == []

        self.engine.redo()
        assert self._titles(self.done.list_id) == ["Buy milk"]
        assert self._titles(self.todo.list_id) == []

    def test_undo_all_returns_to_initial_state(self):
        initial = self.model.snapshot()
        self._build()
        self.engine.dispatch(EditCard(self.card.card_id, {"title": "Buy oat milk"}))
        self.engine.dispatch(MoveCard(self.card.card_id, self.done.list_id))
        while self.history.can_undo:
            assert self.engine.undo().ok
        assert self.model == initial
        assert len(self.index) == 0

    def test_undo_redo_round_trip_restores_state(self):
        self._build()
        self.engine.dispatch(EditCard(self.card.card_id, {"description": "2 litres"}))
        after = self.model.snapshot()
        self.engine.undo()
        self.engine.redo()
        assert self.model == after

    def test_empty_history(self):
        outcome = self.engine.undo()
        assert not outcome.ok
        assert isinstance(outcome.error, HistoryEmpty)
        assert isinstance(self.engine.redo().error, HistoryEmpty)

    def test_new_dispatch_discards_redo(self):
        self._build()
        self.engine.undo()
        self.engine.dispatch(RenameBoard(self.board.board_id, "Home"))
        assert not self.history.can_redo

    def test_cap_keeps_latest(self):
        engine = ActionEngine(BoardModel(), HistoryManager(cap=3), SearchIndex())
        for name in "abcde":
            engine.dispatch(CreateBoard(name))
        undone = 0
        while engine.undo().ok:
            undone += 1
        assert undone == 3
        assert [b.name for b in engine.model.boards()] == ["a", "b"]

    def test_redo_stays_on_stack_if_replay_fails(self):
        self._build()
        self.engine.dispatch(CreateBoard("Work"))
        self.engine.undo()
        # A board created behind the engine's back now owns the name.
        self.model.apply(CreateBoard("Work"))
        before = self.model.snapshot()
        outcome = self.engine.redo()
        assert not outcome.ok
        assert isinstance(outcome.error, DuplicateName)
        assert self.history.can_redo
        assert self.model == before


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Transactions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTransactions(EngineFixture):

    def _cards(self, n):
        board = CreateBoard("B")
        self.todo = CreateList(board.board_id, "Todo")
        self.done = CreateList(board.board_id, "Done")
        for cmd in (board, self.todo, self.done):
            self.engine.dispatch(cmd)
        cards = [Card.new(f"card {i}") for i in range(n)]
        for card in cards:
            self.engine.dispatch(CreateCard(self.todo.list_id, card))
        return cards

    def test_transaction_is_one_undo_step(self):
        cards = self._cards(3)
        depth = self.history.undo_depth
        with self.engine.transaction("move all"):
            for card in cards:
                self.engine.dispatch(MoveCard(card.card_id, self.done.list_id))
        assert self.history.undo_depth == depth + 1
        assert self.history.peek_undo().label == "move all"

        self.engine.undo()
        assert self._titles(self.todo.list_id) == ["card 0", "card 1", "card 2"]
        self.engine.redo()
        assert self._titles(self.done.list_id) == ["card 0", "card 1", "card 2"]

    def test_nested_transactions_flatten(self):
        cards = self._cards(2)
        depth = self.history.undo_depth
        with self.engine.transaction("outer"):
            self.engine.dispatch(MoveCard(cards[0].card_id, self.done.list_id))
            with self.engine.transaction("inner"):
                self.engine.dispatch(MoveCard(cards[1].card_id, self.done.list_id))
            assert self.engine.in_transaction
        assert self.history.undo_depth == depth + 1
        assert self.history.peek_undo().label == "outer"

    def test_exception_rolls_back_every_member(self):
        cards = self._cards(2)
        before = self.model.snapshot()
        depth = self.history.undo_depth
        with pytest.raises(RuntimeError):
            with self.engine.transaction("doomed"):
                self.engine.dispatch(MoveCard(cards[0].card_id, self.done.list_id))
                self.engine.dispatch(EditCard(cards[1].card_id, {"title": "renamed"}))
                raise RuntimeError("boom")
        assert self.model == before
        assert self.history.undo_depth == depth
        assert not self.engine.in_transaction
        assert self.index.query("renamed") == []

    def test_undo_rejected_inside_transaction(self):
        self._cards(1)
        self.engine.begin("open")
        outcome = self.engine.undo()
        assert not outcome.ok
        assert isinstance(outcome.error, ValidationError)
        self.engine.commit()

    def test_empty_transaction_records_nothing(self):
        self._cards(0)
        depth = self.history.undo_depth
        with self.engine.transaction("noop"):
            pass
        assert self.history.undo_depth == depth

    def test_commit_without_begin(self):
        with pytest.raises(RuntimeError):
            self.engine.commit()

    def test_reset_replaces_model_and_clears_history(self, sample_model):
        self._cards(1)
        self.engine.reset(sample_model)
        assert self.engine.model is sample_model
        assert not self.history.can_undo
        assert len(self.index) == 1
        assert self.index.query("milk")
