"""
Tests for the Session context object: input events, view, tick and open().
"""
import pytest

from taskboard.commands import CreateCard, DeleteCard, EditCard, MoveCard
from taskboard.config import Config, ENV_PASSPHRASE
from taskboard.crypto import SnapshotCipher
from taskboard.errors import ConfigError, ValidationError
from taskboard.persistence import EventKind
from taskboard.schema import Card
from taskboard.serializer import dumps
from taskboard.session import (
    Direction, EditCancel, EditCommit, EditStart, EditTarget, Focus, JumpToResult,
    Navigate, Redo, SearchQuery, SelectBoard, Session, ShiftCard, Submit, Undo,
)
from taskboard.storage import LocalStore

from conftest import ImmediateExecutor


def _titles(view, list_index):
    return [c.title for c in view.active.lists[list_index].cards]


@pytest.fixture
def session(tmp_path, sample_model, clock):
    store = LocalStore(str(tmp_path / "board.json"))
    return Session(
        sample_model, store, config=Config(debounce_ms=0), executor=ImmediateExecutor(), clock=clock
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Navigation and editing
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestNavigation:

    def test_initial_view(self, session):
        view = session.view()
        assert view.active.board.name == "Personal"
        assert [l.card_list.name for l in view.active.lists] == ["Todo", "Done"]
        assert _titles(view, 0) == ["Buy milk"]
        assert view.focus == Focus(0, 0)
        assert not view.can_undo

    def test_navigate_clamps(self, session):
        session.handle(Navigate(Direction.LEFT))
        assert session.focus == Focus(0, 0)
        session.handle(Navigate(Direction.RIGHT))
        session.handle(Navigate(Direction.RIGHT))
        assert session.focus == Focus(1, 0)
        assert session.focused_card_id() is None

    def test_select_board_is_not_undoable(self, session):
        session.handle(EditStart(EditTarget.NEW_BOARD))
        session.handle(EditCommit("Work"))
        personal = session.model.find_board("Personal")
        session.handle(SelectBoard(personal.board_id))
        assert session.view().active.board.name == "Personal"
        assert session.history.undo_depth == 1

    def test_select_unknown_board(self, session):
        outcome = session.handle(SelectBoard("board-missing"))
        assert not outcome.ok
        assert "not found" in session.view().message


class TestEditing:

    def test_edit_card_title_and_undo(self, session):
        session.handle(EditStart(EditTarget.CARD, "title"))
        assert session.editing.initial == "Buy milk"
        assert session.handle(EditCommit("Buy oat milk")).ok
        assert session.editing is None
        assert _titles(session.view(), 0) == ["Buy oat milk"]

        session.handle(Undo())
        assert _titles(session.view(), 0) == ["Buy milk"]
        session.handle(Redo())
        assert _titles(session.view(), 0) == ["Buy oat milk"]

    def test_invalid_value_keeps_editor_open(self, session):
        session.handle(EditStart(EditTarget.CARD, "title"))
        outcome = session.handle(EditCommit("   "))
        assert not outcome.ok
        assert session.editing is not None
        assert session.view().message == "card title must not be blank"

    def test_cancel(self, session):
        session.handle(EditStart(EditTarget.CARD, "title"))
        session.handle(EditCancel())
        assert session.editing is None
        assert not session.history.can_undo

    def test_new_card_gets_focus(self, session):
        session.handle(EditStart(EditTarget.NEW_CARD))
        session.handle(EditCommit("Call mom"))
        assert _titles(session.view(), 0) == ["Buy milk", "Call mom"]
        assert session.focus == Focus(0, 1)

    def test_new_list(self, session):
        session.handle(EditStart(EditTarget.NEW_LIST))
        session.handle(EditCommit("Waiting"))
        view = session.view()
        assert [l.card_list.name for l in view.active.lists] == ["Todo", "Done", "Waiting"]
        assert view.focus == Focus(2, 0)

    def test_new_board_becomes_active(self, session):
        session.handle(EditStart(EditTarget.NEW_BOARD))
        session.handle(EditCommit("Work"))
        view = session.view()
        assert view.active.board.name == "Work"
        assert [b.name for b in view.boards] == ["Personal", "Work"]

    def test_rename_list_duplicate(self, session):
        session.handle(EditStart(EditTarget.LIST))
        outcome = session.handle(EditCommit("Done"))
        assert not outcome.ok
        assert "already exists" in outcome.message

    def test_board_description(self, session):
        session.handle(EditStart(EditTarget.BOARD, "description"))
        session.handle(EditCommit("things at home"))
        assert session.model.active_board.description == "things at home"
        assert session.model.active_board.name == "Personal"

    def test_edit_card_with_nothing_focused(self, session):
        session.handle(Navigate(Direction.RIGHT))
        outcome = session.handle(EditStart(EditTarget.CARD))
        assert not outcome.ok
        assert session.editing is None

    def test_commit_without_start(self, session):
        assert not session.handle(EditCommit("x")).ok

    def test_unknown_event(self, session):
        with pytest.raises(TypeError):
            session.handle("jump")


class TestShiftCard:

    def test_shift_right_then_undo(self, session):
        session.handle(ShiftCard(Direction.RIGHT))
        view = session.view()
        assert _titles(view, 0) == []
        assert _titles(view, 1) == ["Buy milk"]
        assert view.focus == Focus(1, 0)

        session.handle(Undo())
        view = session.view()
        assert _titles(view, 0) == ["Buy milk"]
        assert view.can_redo

    def test_shift_past_edge(self, session):
        outcome = session.handle(ShiftCard(Direction.LEFT))
        assert not outcome.ok

    def test_shift_down(self, session):
        session.handle(EditStart(EditTarget.NEW_CARD))
        session.handle(EditCommit("Call mom"))
        session.handle(Navigate(Direction.UP))
        session.handle(ShiftCard(Direction.DOWN))
        assert _titles(session.view(), 0) == ["Call mom", "Buy milk"]
        assert session.focus == Focus(0, 1)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Search and bulk submit
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSearch:

    def test_query_and_jump_across_boards(self, session):
        session.handle(EditStart(EditTarget.NEW_BOARD))
        session.handle(EditCommit("Work"))
        assert session.view().active.board.name == "Work"

        session.handle(SearchQuery("mlk"))
        view = session.view()
        assert [c.title for c in view.search_results] == ["Buy milk"]

        session.handle(JumpToResult(0))
        assert session.view().active.board.name == "Personal"
        assert session.focus == Focus(0, 0)

    def test_results_follow_edits(self, session):
        session.handle(SearchQuery("milk"))
        card_id = session.focused_card_id()
        session.dispatch(DeleteCard(card_id))
        assert session.view().search_results == ()

    def test_clear_query(self, session):
        session.handle(SearchQuery("milk"))
        session.handle(SearchQuery("  "))
        assert session.view().search_results == ()

    def test_jump_out_of_range(self, session):
        assert not session.handle(JumpToResult(3)).ok


class TestSubmit:

    def test_bulk_is_one_undo_step(self, session):
        todo = session.focused_list_id()
        cards = [Card.new("a"), Card.new("b")]
        outcome = session.handle(Submit(tuple(CreateCard(todo, c) for c in cards), label="add two"))
        assert outcome.ok
        assert session.history.undo_depth == 1
        session.handle(Undo())
        assert _titles(session.view(), 0) == ["Buy milk"]

    def test_bulk_rejection_rolls_back(self, session):
        todo = session.focused_list_id()
        card_id = session.focused_card_id()
        outcome = session.handle(Submit((
            EditCard(card_id, {"title": "changed"}),
            MoveCard(card_id, "list-missing"),
        )))
        assert not outcome.ok
        assert _titles(session.view(), 0) == ["Buy milk"]
        assert not session.history.can_undo
        assert not session.engine.in_transaction
        assert session.model.list_of_card(card_id) == todo


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Tick, persistence and open()
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTick:

    def test_edit_is_saved_on_tick(self, session, tmp_path):
        session.handle(EditStart(EditTarget.CARD))
        session.handle(EditCommit("Buy oat milk"))
        assert session.view().unsaved

        session.tick()
        events = session.tick()
        assert [e.kind for e in events] == [EventKind.SAVED]
        assert not session.view().unsaved

        model, _ = LocalStore(str(tmp_path / "board.json")).load()
        assert model == session.model

    def test_loaded_board_replaces_model(self, tmp_path, sample_model, clock, remote):
        from taskboard.cloud import CloudSyncClient
        from taskboard.model import BoardModel

        cipher = SnapshotCipher.from_passphrase("pw", "alice", 1000)
        client = CloudSyncClient(remote, cipher)
        client.authenticate("alice", "secret")
        remote.payload = cipher.encrypt(dumps(sample_model)).to_payload()
        remote.version = 7

        store = LocalStore(str(tmp_path / "board.json"))
        session = Session(BoardModel(), store, client, Config(debounce_ms=0),
                          executor=ImmediateExecutor(), clock=clock)
        session.handle(EditStart(EditTarget.NEW_BOARD))
        session.handle(EditCommit("Scratch"))
        session.load_remote()
        session.tick()
        events = session.tick()

        assert EventKind.LOADED in [e.kind for e in events]
        assert "unsaved local edits were discarded" in session.view().message
        assert session.model == sample_model
        assert not session.history.can_undo
        assert session.index.query("milk")
        assert session.coordinator.dirty  # the loaded board still has to reach disk

        session.tick()
        session.tick()
        loaded, _ = store.load()
        assert loaded == sample_model
        assert remote.saves == []

    def test_close_flushes(self, session, tmp_path):
        session.handle(EditStart(EditTarget.NEW_CARD))
        session.handle(EditCommit("Call mom"))
        session.close()
        model, _ = LocalStore(str(tmp_path / "board.json")).load()
        assert len(model.all_cards()) == 2


class TestOpen:

    def test_open_loads_existing_board(self, tmp_path, sample_model):
        path = tmp_path / "board.json"
        LocalStore(str(path)).save(dumps(sample_model))
        session = Session.open(Config(board_path=str(path)), executor=ImmediateExecutor())
        assert session.model == sample_model
        assert session.index.query("milk")
        assert not session.coordinator.cloud_enabled

    def test_open_without_file(self, tmp_path):
        session = Session.open(Config(board_path=str(tmp_path / "none.json")), executor=ImmediateExecutor())
        assert session.view().active is None

    def test_cloud_needs_passphrase(self, tmp_path, monkeypatch):
        monkeypatch.delenv(ENV_PASSPHRASE, raising=False)
        cfg = Config(board_path=str(tmp_path / "b.json"), cloud_enabled=True,
                     api_url="https://sync.example.test", account="alice")
        with pytest.raises(ConfigError):
            Session.open(cfg, executor=ImmediateExecutor())

    def test_cloud_session_reads_known_version(self, tmp_path, monkeypatch, remote):
        monkeypatch.setenv(ENV_PASSPHRASE, "pw")
        path = tmp_path / "b.json"
        LocalStore(str(path)).save_sync_meta({"remote_version": 12})
        cfg = Config(board_path=str(path), cloud_enabled=True, api_url="https://sync.example.test",
                     account="alice", kdf_iterations=1000)
        session = Session.open(cfg, api=remote, executor=ImmediateExecutor())
        assert session.coordinator.cloud_enabled
        assert session.coordinator.client.known_version == 12
