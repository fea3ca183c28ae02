"""
Persistence coordinator: debounced saves off the render thread.

Main thread                          Worker (single thread)
───────────                          ──────────────────────
mark_dirty()  ─┐
mark_dirty()  ─┤ debounce window
poll() ────────┴─ snapshot bytes ──▶ local atomic write
                                     remote save (retry w/ backoff)
poll() ◀──────── status channel ◀─── SyncEvent(...)

Rules:
  - Bursts of dirty signals collapse into one save (inactivity window or a
    signal count, whichever comes first).
  - At most one job runs at a time. A dirty signal during a save schedules a
    follow-up that is submitted as soon as the running job finishes.
  - A superseded save is never cancelled mid-write, but it stops retrying and
    its outcome is dropped in favor of the follow-up.
  - Local write failure aborts the job (remote step skipped).
  - Remote failures retry with exponential backoff; once the budget is spent
    (or the error is not retryable) sync pauses until retry_sync().
"""
import logging
import queue
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from .cloud import CloudSyncClient
from .errors import LocalIOError, RemoteNotFound, SyncError, Tampered, VersionConflict
from .model import BoardModel
from .storage import LocalStore

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECS = 0.5
DEFAULT_MAX_SIGNALS = 20
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE = 0.5
DEFAULT_BACKOFF_MAX = 30.0


class SyncState(Enum):
    IDLE = "idle"
    SAVING = "saving"
    LOADING = "loading"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    """What the render side shows in its status line."""
    state: SyncState = SyncState.IDLE
    reason: str = ""


class SyncStatusCell:
    """The single SyncStatus, guarded by a lock held only for the read/write."""

    def __init__(self):
        self._lock = threading.Lock()
        self._status = SyncStatus()

    def get(self) -> SyncStatus:
        with self._lock:
            return self._status

    def set(self, state: SyncState, reason: str = "") -> None:
        with self._lock:
            self._status = SyncStatus(state, reason)


class EventKind(Enum):
    SAVED = "saved"                  # local (and remote, if version set) save done
    LOCAL_WRITE_FAILED = "local_write_failed"
    RETRYING = "retrying"
    SYNC_PAUSED = "sync_paused"      # retry budget spent or non-retryable error
    CONFLICT = "conflict"
    SUPERSEDED = "superseded"        # stale job stopped in favor of a follow-up
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"
    SIGNED_IN = "signed_in"
    SIGN_IN_FAILED = "sign_in_failed"


@dataclass(frozen=True)
class SyncEvent:
    """One message on the status channel."""
    kind: EventKind
    message: str = ""
    job: int = 0
    version: Optional[int] = None
    model: Optional[BoardModel] = None
    error: Optional[Exception] = None


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry ``attempt`` (1-based): base, 2·base, 4·base, … ≤ cap."""
    return min(base * (2 ** (attempt - 1)), cap)


class PersistenceCoordinator:
    """Owns SyncStatus and the dirty flag; schedules save/load jobs."""

    def __init__(
        self,
        store: LocalStore,
        snapshot: Callable[[], bytes],
        client: Optional[CloudSyncClient] = None,
        debounce_secs: float = DEFAULT_DEBOUNCE_SECS,
        max_signals: int = DEFAULT_MAX_SIGNALS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.snapshot = snapshot
        self.client = client
        self.debounce_secs = debounce_secs
        self.max_signals = max_signals
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.clock = clock
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="taskboard-sync")
        self._owns_executor = executor is None

        self._status = SyncStatusCell()
        self._channel: "queue.Queue[SyncEvent]" = queue.Queue()

        # Main-thread state
        self._dirty = False
        self._remote_wanted = False
        self._signals = 0
        self._last_signal = 0.0
        self._immediate = False
        self._force_next = False
        self._pending_load = False
        self._paused = False
        self._paused_status: Optional[SyncStatus] = None
        self._unsaved_error: Optional[str] = None
        self._job_id = 0
        self._in_flight: Optional[Future] = None
        self._in_flight_job = 0
        self._superseded: Optional[threading.Event] = None

    # ── Read side ───────────────────────────────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        return self._status.get()

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def cloud_enabled(self) -> bool:
        return self.client is not None

    @property
    def unsaved_error(self) -> Optional[str]:
        """Set while the last local write failed (changes are not durable)."""
        return self._unsaved_error

    # ── Signals from the main thread ────────────────────────────────────────

    def mark_dirty(self, remote: bool = True) -> None:
        """Record an edit. Never blocks; the save happens on a later poll()."""
        self._dirty = True
        self._remote_wanted = self._remote_wanted or remote
        self._signals += 1
        self._last_signal = self.clock()
        if self._in_flight is not None:
            self._immediate = True
            if self._superseded is not None:
                self._superseded.set()

    def flush(self) -> None:
        """Save now instead of waiting for the debounce window."""
        if not self._dirty:
            self.mark_dirty()
        self._immediate = True

    def retry_sync(self) -> None:
        """User-initiated: resume a paused sync and push the current board."""
        self._resume()
        self._status.set(SyncState.IDLE)
        self.mark_dirty(remote=True)
        self._immediate = True
        logger.info("Sync resumed by user")

    def resolve_conflict(self, keep_local: bool) -> None:
        """Settle a VersionConflict: push ours over theirs, or take theirs."""
        self._resume()
        if keep_local:
            self._force_next = True
            self.mark_dirty(remote=True)
            self._immediate = True
            logger.info("Conflict resolved: keeping local board (overwrite remote)")
        else:
            self.load_remote()
            logger.info("Conflict resolved: taking remote board")

    def load_remote(self) -> None:
        """Schedule a background load of the remote snapshot."""
        if self.client is None:
            raise SyncError("cloud sync is not configured")
        self._pending_load = True

    def sign_in(self, username: str, password: str) -> None:
        """Authenticate on the worker; result arrives as SIGNED_IN / SIGN_IN_FAILED."""
        if self.client is None:
            raise SyncError("cloud sync is not configured")
        self._executor.submit(self._run_sign_in, username, password)

    # ── Frame tick ──────────────────────────────────────────────────────────

    def poll(self) -> List[SyncEvent]:
        """Called once per frame: finish jobs, drain the channel, submit due work."""
        finished = self._in_flight is not None and self._in_flight.done()
        if finished:
            error = self._in_flight.exception()
            if error is not None:
                logger.error(f"Sync job {self._in_flight_job} crashed: {error!r}")
                self._status.set(SyncState.ERROR, f"internal error: {error}")
            self._in_flight = None
            self._superseded = None

        events = self._drain()

        if self._in_flight is None:
            if self._pending_load:
                self._submit_load()
            elif self._dirty and self._due():
                self._submit_save()
        return events

    def _drain(self) -> List[SyncEvent]:
        events = []
        while True:
            try:
                event = self._channel.get_nowait()
            except queue.Empty:
                break
            if event.kind in (EventKind.SYNC_PAUSED, EventKind.CONFLICT):
                if event.job == self._in_flight_job and self._dirty and self._immediate:
                    # A follow-up is already waiting; it carries newer data.
                    logger.info(f"Discarding outcome of superseded job {event.job}")
                    continue
                self._pause(event)
            elif event.kind == EventKind.LOCAL_WRITE_FAILED:
                self._unsaved_error = event.message
            elif event.kind == EventKind.SAVED:
                self._unsaved_error = None
            elif event.kind == EventKind.SIGNED_IN:
                self._resume()
            elif event.kind == EventKind.LOADED:
                # The board these signals describe is about to be replaced.
                if self._dirty:
                    logger.warning("Remote board loaded over unsaved local edits")
                    event = replace(event, message=f"{event.message}; unsaved local edits were discarded")
                self._dirty = False
                self._remote_wanted = False
                self._signals = 0
                self._immediate = False
            events.append(event)
        return events

    def _pause(self, event: SyncEvent) -> None:
        self._paused = True
        if event.kind == EventKind.CONFLICT:
            self._paused_status = SyncStatus(SyncState.CONFLICT, event.message)
        else:
            self._paused_status = SyncStatus(SyncState.ERROR, f"sync paused: {event.message}")

    def _resume(self) -> None:
        self._paused = False
        self._paused_status = None

    def _due(self) -> bool:
        if self._immediate or self._signals >= self.max_signals:
            return True
        return (self.clock() - self._last_signal) >= self.debounce_secs

    # ── Job submission (main thread) ────────────────────────────────────────

    def _next_job(self) -> int:
        self._job_id += 1
        return self._job_id

    def _submit_save(self) -> None:
        document = self.snapshot()
        remote = self._remote_wanted and self.client is not None and not self._paused
        force = self._force_next
        job = self._next_job()

        self._dirty = False
        self._remote_wanted = False
        self._signals = 0
        self._immediate = False
        self._force_next = False
        self._superseded = threading.Event()
        self._in_flight_job = job
        # While paused the conflict or error stays on screen; saves are local only.
        held = self._paused_status if self._paused else None
        if held is None:
            self._status.set(SyncState.SAVING)
        logger.debug(f"Submitting save job {job} ({len(document)} bytes, remote={remote})")
        self._in_flight = self._executor.submit(
            self._run_save, job, document, remote, force, self._superseded, held
        )

    def _submit_load(self) -> None:
        job = self._next_job()
        self._pending_load = False
        self._superseded = None
        self._in_flight_job = job
        self._status.set(SyncState.LOADING)
        logger.debug(f"Submitting load job {job}")
        self._in_flight = self._executor.submit(self._run_load, job)

    # ── Worker side ─────────────────────────────────────────────────────────

    def _post(self, kind: EventKind, job: int, message: str = "", **extra) -> None:
        self._channel.put(SyncEvent(kind=kind, message=message, job=job, **extra))

    def _run_save(self, job: int, document: bytes, remote: bool, force: bool,
                  superseded: threading.Event, held: Optional[SyncStatus] = None) -> None:
        try:
            self.store.save(document)
        except LocalIOError as e:
            logger.error(f"Local save failed; changes are only in memory: {e}")
            self._status.set(SyncState.ERROR, f"changes not saved: {e}")
            self._post(EventKind.LOCAL_WRITE_FAILED, job, str(e), error=e)
            return

        if not remote:
            if held is None:
                self._status.set(SyncState.IDLE)
            else:
                self._status.set(held.state, held.reason)
            self._post(EventKind.SAVED, job, "saved locally")
            return

        attempt = 0
        while True:
            attempt += 1
            try:
                version = self.client.save(document, force=force)
            except VersionConflict as e:
                logger.warning(f"Remote save conflict: {e}")
                self._status.set(SyncState.CONFLICT, str(e))
                self._post(EventKind.CONFLICT, job, str(e), error=e)
                return
            except SyncError as e:
                if e.retryable and attempt < self.max_attempts:
                    delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
                    logger.warning(f"Remote save attempt {attempt} failed ({e}); retrying in {delay:.1f}s")
                    self._status.set(SyncState.ERROR, f"{e} (retry {attempt}/{self.max_attempts - 1})")
                    self._post(EventKind.RETRYING, job, str(e), error=e)
                    if superseded.wait(delay):
                        logger.info(f"Save job {job} superseded by newer edits; stopping retries")
                        self._post(EventKind.SUPERSEDED, job)
                        return
                    continue
                logger.error(f"Remote save failed after {attempt} attempt(s); sync paused: {e}")
                self._status.set(SyncState.ERROR, f"sync paused: {e}")
                self._post(EventKind.SYNC_PAUSED, job, str(e), error=e)
                return
            break

        try:
            self.store.save_sync_meta({
                "remote_version": version,
                "synced_at": datetime.now(timezone.utc).isoformat(),
            })
        except LocalIOError as e:
            logger.warning(f"Could not record remote version locally: {e}")
        self._status.set(SyncState.IDLE)
        self._post(EventKind.SAVED, job, f"synced (v{version})", version=version)

    def _run_load(self, job: int) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                model, version = self.client.load()
            except RemoteNotFound as e:
                logger.info("No remote snapshot yet")
                self._status.set(SyncState.IDLE)
                self._post(EventKind.LOAD_FAILED, job, str(e), error=e)
                return
            except Tampered as e:
                logger.error(f"Remote snapshot rejected; keeping local board: {e}")
                self._status.set(SyncState.ERROR, f"remote snapshot rejected: {e}")
                self._post(EventKind.LOAD_FAILED, job, str(e), error=e)
                return
            except SyncError as e:
                if e.retryable and attempt < self.max_attempts:
                    delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
                    logger.warning(f"Remote load attempt {attempt} failed ({e}); retrying in {delay:.1f}s")
                    self._post(EventKind.RETRYING, job, str(e), error=e)
                    time.sleep(delay)
                    continue
                logger.error(f"Remote load failed: {e}")
                self._status.set(SyncState.ERROR, f"load failed: {e}")
                self._post(EventKind.LOAD_FAILED, job, str(e), error=e)
                return
            break

        try:
            self.store.save_sync_meta({
                "remote_version": version,
                "synced_at": datetime.now(timezone.utc).isoformat(),
            })
        except LocalIOError as e:
            logger.warning(f"Could not record remote version locally: {e}")
        self._status.set(SyncState.IDLE)
        self._post(EventKind.LOADED, job, f"loaded remote board (v{version})", version=version, model=model)

    def _run_sign_in(self, username: str, password: str) -> None:
        try:
            self.client.authenticate(username, password)
        except SyncError as e:
            logger.error(f"Sign-in failed: {e}")
            self._status.set(SyncState.ERROR, f"sign-in failed: {e}")
            self._post(EventKind.SIGN_IN_FAILED, 0, str(e), error=e)
            return
        self._post(EventKind.SIGNED_IN, 0, f"signed in as {username}")

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
