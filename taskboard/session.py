"""
Session: the explicit context object the render loop talks to.

A Session owns the active BoardModel (through the ActionEngine), the history,
the search index and the persistence coordinator. The render/input bridge:

    session.handle(event)   - one input event, processed to completion
    session.tick()          - once per frame: schedule saves, drain sync status
    session.view()          - cheap read-only snapshot for drawing

Nothing here ever waits on disk or network.
"""
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from .cloud import CloudSyncClient, HttpRemoteApi, RemoteApi
from .commands import (
    Command, CreateBoard, CreateCard, CreateList, EditCard, MoveCard,
    RenameBoard, RenameList, ReorderCard,
)
from .config import Config
from .crypto import SnapshotCipher
from .engine import ActionEngine, ActionOutcome
from .errors import ConfigError, NotFound, ValidationError
from .history import HistoryManager
from .model import BoardModel
from .persistence import EventKind, PersistenceCoordinator, SyncEvent, SyncStatus
from .schema import Board, Card, CardList
from .search import SearchIndex
from .serializer import dumps
from .storage import LocalStore

logger = logging.getLogger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Inbound events
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Direction(Enum):
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


class EditTarget(Enum):
    CARD = "card"
    NEW_CARD = "new_card"
    LIST = "list"
    NEW_LIST = "new_list"
    BOARD = "board"
    NEW_BOARD = "new_board"


@dataclass(frozen=True)
class Navigate:
    direction: Direction


@dataclass(frozen=True)
class SelectBoard:
    board_id: str


@dataclass(frozen=True)
class EditStart:
    target: EditTarget = EditTarget.CARD
    field: str = "title"


@dataclass(frozen=True)
class EditCommit:
    value: Any


@dataclass(frozen=True)
class EditCancel:
    pass


@dataclass(frozen=True)
class ShiftCard:
    """Move the focused card one step: left/right between lists, up/down within."""
    direction: Direction


@dataclass(frozen=True)
class Undo:
    pass


@dataclass(frozen=True)
class Redo:
    pass


@dataclass(frozen=True)
class SearchQuery:
    text: str


@dataclass(frozen=True)
class JumpToResult:
    index: int = 0


@dataclass(frozen=True)
class Submit:
    """Dispatch prepared commands; more than one run as a single transaction."""
    commands: Tuple[Command, ...]
    label: str = "bulk edit"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Outbound view
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class Focus:
    list_index: int = 0
    card_index: int = 0


@dataclass(frozen=True)
class EditState:
    target: EditTarget
    field: str
    subject_id: Optional[str]
    initial: Any = None


@dataclass(frozen=True)
class ListView:
    card_list: CardList
    cards: Tuple[Card, ...]


@dataclass(frozen=True)
class BoardView:
    board: Board
    lists: Tuple[ListView, ...]


@dataclass(frozen=True)
class SessionView:
    boards: Tuple[Board, ...]
    active: Optional[BoardView]
    focus: Focus
    sync: SyncStatus
    search_query: str = ""
    search_results: Tuple[Card, ...] = ()
    editing: Optional[EditState] = None
    message: str = ""
    can_undo: bool = False
    can_redo: bool = False
    unsaved: bool = False


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Session
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Session:
    """Board, history, search and persistence for one running app."""

    def __init__(
        self,
        model: BoardModel,
        store: LocalStore,
        client: Optional[CloudSyncClient] = None,
        config: Optional[Config] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or Config()
        self.history = HistoryManager(self.config.history_cap)
        self.index = SearchIndex(self.config.search_ngram)
        self.index.rebuild(model)
        self.coordinator = PersistenceCoordinator(
            store,
            self._snapshot,
            client,
            debounce_secs=self.config.debounce_secs,
            max_signals=self.config.debounce_max_signals,
            max_attempts=self.config.sync_max_attempts,
            backoff_base=self.config.sync_backoff_base,
            backoff_max=self.config.sync_backoff_max,
            executor=executor,
            clock=clock,
        )
        self.engine = ActionEngine(model, self.history, self.index, on_dirty=self.coordinator.mark_dirty)
        self.focus = Focus()
        self.editing: Optional[EditState] = None
        self.search_query = ""
        self.search_results: List[str] = []
        self.message = ""

    @classmethod
    def open(
        cls,
        config: Config,
        api: Optional[RemoteApi] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Session":
        """Wire a session from configuration, loading the local board file if present."""
        store = LocalStore(config.board_path)
        loaded = store.load()
        model = loaded[0] if loaded else BoardModel()

        client = None
        if config.cloud_enabled:
            passphrase = Config.passphrase()
            if not passphrase:
                raise ConfigError(
                    "cloud sync needs an encryption passphrase.\n"
                    "Set it:  export TASKBOARD_PASSPHRASE=…"
                )
            cipher = SnapshotCipher.from_passphrase(passphrase, config.account, config.kdf_iterations)
            client = CloudSyncClient(
                api or HttpRemoteApi(config.api_url, timeout=config.request_timeout),
                cipher,
                known_version=store.load_sync_meta().get("remote_version"),
            )
        logger.info(f"Session opened ({model!r}, cloud={'on' if client else 'off'})")
        return cls(model, store, client, config=config, executor=executor, clock=clock)

    @property
    def model(self) -> BoardModel:
        return self.engine.model

    def _snapshot(self) -> bytes:
        return dumps(self.engine.model)

    # ── Input ───────────────────────────────────────────────────────────────

    def handle(self, event: Any) -> Optional[ActionOutcome]:
        """Process one input event synchronously."""
        handler = self._EVENT_HANDLERS.get(type(event))
        if handler is None:
            raise TypeError(f"unknown input event: {type(event).__name__}")
        outcome = handler(self, event)
        if outcome is not None:
            self.message = outcome.message
            if outcome.ok:
                self._after_mutation()
        return outcome

    def dispatch(self, command: Command) -> ActionOutcome:
        return self.handle(Submit((command,)))

    def _after_mutation(self) -> None:
        self._clamp_focus()
        if self.search_query:
            self.search_results = self.index.query(self.search_query, self.config.search_limit)

    def _on_navigate(self, event: Navigate) -> None:
        lists = self._active_lists()
        if not lists:
            return None
        li, ci = self.focus.list_index, self.focus.card_index
        if event.direction == Direction.LEFT:
            li -= 1
        elif event.direction == Direction.RIGHT:
            li += 1
        elif event.direction == Direction.UP:
            ci -= 1
        elif event.direction == Direction.DOWN:
            ci += 1
        self.focus = Focus(li, ci)
        self._clamp_focus()
        return None

    def _on_select_board(self, event: SelectBoard) -> Optional[ActionOutcome]:
        try:
            self.model.select_board(event.board_id)
        except NotFound as e:
            return ActionOutcome.rejected(e)
        self.focus = Focus()
        self.coordinator.mark_dirty(remote=False)
        return None

    def _on_edit_start(self, event: EditStart) -> Optional[ActionOutcome]:
        target = event.target
        subject_id, initial = None, None
        if target == EditTarget.CARD:
            subject_id = self.focused_card_id()
            if subject_id is None:
                return ActionOutcome.rejected(ValidationError("no card selected"))
            initial = getattr(self.model.card(subject_id), event.field, None)
        elif target in (EditTarget.LIST, EditTarget.NEW_CARD):
            subject_id = self.focused_list_id()
            if subject_id is None:
                return ActionOutcome.rejected(ValidationError("no list selected"))
            if target == EditTarget.LIST:
                initial = self.model.card_list(subject_id).name
        elif target in (EditTarget.BOARD, EditTarget.NEW_LIST):
            board = self.model.active_board
            if board is None:
                return ActionOutcome.rejected(ValidationError("no board selected"))
            subject_id = board.board_id
            if target == EditTarget.BOARD:
                initial = getattr(board, "description" if event.field == "description" else "name")
        self.editing = EditState(target, event.field, subject_id, initial)
        return None

    def _on_edit_commit(self, event: EditCommit) -> Optional[ActionOutcome]:
        editing = self.editing
        if editing is None:
            return ActionOutcome.rejected(ValidationError("nothing is being edited"))

        target, subject = editing.target, editing.subject_id
        if target == EditTarget.CARD:
            command = EditCard(subject, {editing.field: event.value})
        elif target == EditTarget.NEW_CARD:
            command = CreateCard(subject, Card.new(event.value) if isinstance(event.value, str) else event.value)
        elif target == EditTarget.LIST:
            command = RenameList(subject, event.value)
        elif target == EditTarget.NEW_LIST:
            command = CreateList(subject, event.value)
        elif target == EditTarget.BOARD:
            board = self.model.board(subject)
            if editing.field == "description":
                command = RenameBoard(subject, board.name, description=event.value)
            else:
                command = RenameBoard(subject, event.value)
        else:
            command = CreateBoard(event.value)

        outcome = self.engine.dispatch(command)
        if not outcome.ok:
            return outcome  # keep the editor open so the user can fix the value
        self.editing = None

        if isinstance(command, CreateBoard):
            self.model.select_board(command.board_id)
            self.focus = Focus()
        elif isinstance(command, CreateList):
            self.focus = Focus(len(self.model.board(subject).list_ids) - 1, 0)
        elif isinstance(command, CreateCard):
            self.focus = Focus(self.focus.list_index, len(self.model.card_list(subject).card_ids) - 1)
        return outcome

    def _on_edit_cancel(self, event: EditCancel) -> None:
        self.editing = None
        return None

    def _on_shift_card(self, event: ShiftCard) -> Optional[ActionOutcome]:
        card_id = self.focused_card_id()
        if card_id is None:
            return ActionOutcome.rejected(ValidationError("no card selected"))
        lists = self._active_lists()
        li, ci = self.focus.list_index, self.focus.card_index

        if event.direction in (Direction.LEFT, Direction.RIGHT):
            step = -1 if event.direction == Direction.LEFT else 1
            target = li + step
            if not 0 <= target < len(lists):
                return ActionOutcome.rejected(ValidationError("no list in that direction"))
            outcome = self.engine.dispatch(MoveCard(card_id, lists[target].list_id))
            if outcome.ok:
                self.focus = Focus(target, len(self.model.card_list(lists[target].list_id).card_ids) - 1)
            return outcome

        to_index = ci - 1 if event.direction == Direction.UP else ci + 1
        outcome = self.engine.dispatch(ReorderCard(card_id, to_index))
        if outcome.ok:
            self.focus = Focus(li, to_index)
        return outcome

    def _on_undo(self, event: Undo) -> ActionOutcome:
        return self.engine.undo()

    def _on_redo(self, event: Redo) -> ActionOutcome:
        return self.engine.redo()

    def _on_search(self, event: SearchQuery) -> None:
        self.search_query = event.text.strip()
        if self.search_query:
            self.search_results = self.index.query(self.search_query, self.config.search_limit)
        else:
            self.search_results = []
        return None

    def _on_jump(self, event: JumpToResult) -> Optional[ActionOutcome]:
        if not 0 <= event.index < len(self.search_results):
            return ActionOutcome.rejected(ValidationError("no such search result"))
        card_id = self.search_results[event.index]
        try:
            list_id = self.model.list_of_card(card_id)
            board_id = self.model.board_of_list(list_id)
        except NotFound as e:
            return ActionOutcome.rejected(e)
        if board_id != self.model.active_board_id:
            self.model.select_board(board_id)
            self.coordinator.mark_dirty(remote=False)
        board = self.model.board(board_id)
        card_list = self.model.card_list(list_id)
        self.focus = Focus(board.list_ids.index(list_id), card_list.card_ids.index(card_id))
        return None

    def _on_submit(self, event: Submit) -> ActionOutcome:
        if len(event.commands) == 1:
            return self.engine.dispatch(event.commands[0])

        self.engine.begin(event.label)
        applied: List[Command] = []
        touched = frozenset()
        for command in event.commands:
            outcome = self.engine.dispatch(command)
            if not outcome.ok:
                self.engine.rollback()
                return outcome
            applied.extend(outcome.commands)
            touched = touched | outcome.touched_cards
        self.engine.commit()
        return ActionOutcome(applied=True, commands=tuple(applied), touched_cards=touched)

    _EVENT_HANDLERS = {
        Navigate: _on_navigate,
        SelectBoard: _on_select_board,
        EditStart: _on_edit_start,
        EditCommit: _on_edit_commit,
        EditCancel: _on_edit_cancel,
        ShiftCard: _on_shift_card,
        Undo: _on_undo,
        Redo: _on_redo,
        SearchQuery: _on_search,
        JumpToResult: _on_jump,
        Submit: _on_submit,
    }

    # ── Focus helpers ───────────────────────────────────────────────────────

    def _active_lists(self) -> List[CardList]:
        board = self.model.active_board
        return self.model.lists_of(board.board_id) if board else []

    def _clamp_focus(self) -> None:
        lists = self._active_lists()
        if not lists:
            self.focus = Focus()
            return
        li = min(max(self.focus.list_index, 0), len(lists) - 1)
        size = len(lists[li].card_ids)
        ci = min(max(self.focus.card_index, 0), max(size - 1, 0))
        self.focus = Focus(li, ci)

    def focused_list_id(self) -> Optional[str]:
        lists = self._active_lists()
        if not lists or self.focus.list_index >= len(lists):
            return None
        return lists[self.focus.list_index].list_id

    def focused_card_id(self) -> Optional[str]:
        list_id = self.focused_list_id()
        if list_id is None:
            return None
        card_ids = self.model.card_list(list_id).card_ids
        if self.focus.card_index >= len(card_ids):
            return None
        return card_ids[self.focus.card_index]

    # ── Frame tick / sync ───────────────────────────────────────────────────

    def tick(self) -> List[SyncEvent]:
        """Once per frame: let the coordinator schedule work and apply its results."""
        events = self.coordinator.poll()
        for event in events:
            if event.kind == EventKind.LOADED and event.model is not None:
                self.engine.reset(event.model)
                self.editing = None
                self.focus = Focus()
                self._after_mutation()
                self.coordinator.mark_dirty(remote=False)
            if event.message and event.kind != EventKind.RETRYING:
                self.message = event.message
        return events

    def sign_in(self, username: str, password: str) -> None:
        self.coordinator.sign_in(username, password)

    def load_remote(self) -> None:
        self.coordinator.load_remote()

    def retry_sync(self) -> None:
        self.coordinator.retry_sync()

    def resolve_conflict(self, keep_local: bool) -> None:
        self.coordinator.resolve_conflict(keep_local)

    def close(self) -> None:
        """Flush pending edits and wait for the worker to finish."""
        if self.coordinator.dirty:
            self.coordinator.flush()
            while self.coordinator.busy or self.coordinator.dirty:
                self.coordinator.poll()
                time.sleep(0.01)
            self.coordinator.poll()
        self.coordinator.shutdown(wait=True)

    # ── Read side ───────────────────────────────────────────────────────────

    def view(self) -> SessionView:
        model = self.model
        board = model.active_board
        active = None
        if board is not None:
            active = BoardView(
                board=board,
                lists=tuple(
                    ListView(cl, tuple(model.cards_of(cl.list_id)))
                    for cl in model.lists_of(board.board_id)
                ),
            )
        results = tuple(model.card(c) for c in self.search_results if model.has_card(c))
        return SessionView(
            boards=tuple(model.boards()),
            active=active,
            focus=self.focus,
            sync=self.coordinator.status,
            search_query=self.search_query,
            search_results=results,
            editing=self.editing,
            message=self.message,
            can_undo=self.history.can_undo,
            can_redo=self.history.can_redo,
            unsaved=self.coordinator.dirty or self.coordinator.unsaved_error is not None,
        )
