"""Shared fixtures: deterministic executors, a fake clock and an in-memory remote."""
import threading
from concurrent.futures import Executor, Future
from typing import List, Optional

import pytest

from taskboard.cloud import RemoteApi, RemoteSnapshot
from taskboard.commands import CreateBoard, CreateCard, CreateList
from taskboard.errors import NetworkUnavailable, RemoteNotFound, Unauthorized, VersionConflict
from taskboard.model import BoardModel
from taskboard.schema import Card


class ImmediateExecutor(Executor):
    """Runs each job inline on submit."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Queues jobs until the test runs them with run_next()."""

    def __init__(self):
        self.jobs: List = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    @property
    def pending(self) -> int:
        return len(self.jobs)

    def run_next(self):
        future, fn, args, kwargs = self.jobs.pop(0)
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class FakeRemoteApi(RemoteApi):
    """In-memory remote store with scriptable failures."""

    def __init__(self):
        self.payload: Optional[str] = None
        self.version = 0
        self.saves: List[str] = []
        self.save_failures: List[Exception] = []
        self.load_failures: List[Exception] = []
        self.password = "secret"
        self.lock = threading.Lock()

    def authenticate(self, username, password):
        if password != self.password:
            raise Unauthorized("bad credentials")
        return f"token-{username}"

    def save(self, token, payload, base_version, force=False):
        with self.lock:
            if self.save_failures:
                raise self.save_failures.pop(0)
            if not force and self.payload is not None and base_version != self.version:
                raise VersionConflict(remote_version=self.version, known_version=base_version)
            self.payload = payload
            self.version += 1
            self.saves.append(payload)
            return self.version

    def load(self, token):
        with self.lock:
            if self.load_failures:
                raise self.load_failures.pop(0)
            if self.payload is None:
                raise RemoteNotFound("empty")
            return RemoteSnapshot(self.payload, self.version)


def network_down(times: int) -> List[Exception]:
    return [NetworkUnavailable("connection refused") for _ in range(times)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemoteApi()


@pytest.fixture
def sample_model():
    """One board 'Personal' with lists 'Todo' and 'Done' and one card."""
    model = BoardModel()
    board = CreateBoard("Personal")
    model.apply(board)
    todo = CreateList(board.board_id, "Todo")
    done = CreateList(board.board_id, "Done")
    model.apply(todo)
    model.apply(done)
    model.apply(CreateCard(todo.list_id, Card.new("Buy milk")))
    return model
