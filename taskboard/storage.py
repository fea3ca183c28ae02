"""
Local board file (load / atomic save).

The board file is replaced atomically: the document is written to a temp
file in the same directory, flushed to disk, then renamed over the old copy.
A crash mid-write leaves the previous good file in place.

A small sidecar (``<board>.sync.json``) remembers the last remote version
acknowledged by the server.
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import LocalIOError
from .model import BoardModel
from .serializer import DocumentMeta, loads

logger = logging.getLogger(__name__)

DEFAULT_BOARD_PATH = Path.home() / ".local" / "share" / "taskboard" / "board.json"


def atomic_write(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` via temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class LocalStore:
    """The durable local copy of the board collection."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else DEFAULT_BOARD_PATH
        self.sync_path = self.path.with_name(self.path.name + ".sync.json")

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Tuple[BoardModel, DocumentMeta]]:
        """Read and validate the board file. Missing file -> None."""
        if not self.path.exists():
            return None
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise LocalIOError(f"cannot read {self.path}: {e}")
        model, meta = loads(raw)
        logger.info(f"Loaded board file {self.path} ({model!r})")
        return model, meta

    def save(self, document: bytes) -> None:
        """Atomically replace the board file with a serialized document."""
        try:
            atomic_write(self.path, document)
        except OSError as e:
            raise LocalIOError(f"cannot write {self.path}: {e}")
        logger.debug(f"Board file written: {self.path} ({len(document)} bytes)")

    def load_sync_meta(self) -> Dict[str, Any]:
        """Sidecar contents; an unreadable sidecar is treated as empty."""
        if not self.sync_path.exists():
            return {}
        try:
            with open(self.sync_path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable sync metadata {self.sync_path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save_sync_meta(self, meta: Dict[str, Any]) -> None:
        try:
            atomic_write(self.sync_path, json.dumps(meta, indent=2).encode("utf-8"))
        except OSError as e:
            raise LocalIOError(f"cannot write {self.sync_path}: {e}")
