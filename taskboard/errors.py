"""
Error taxonomy for the taskboard core.

    ValidationError  - a command was rejected; the board is untouched
    SyncError        - remote save/load failed; absorbed into SyncState
    LocalIOError     - the local board file could not be written
    ConfigError      - configuration is invalid or incomplete
"""
from typing import Optional


class TaskboardError(Exception):
    """Root of every error raised by the taskboard core."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Validation (Board Model)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ValidationError(TaskboardError):
    """Raised when a command fails board validation."""

    kind = "invalid"


class NotFound(ValidationError):
    """A referenced board, list, or card does not exist."""

    kind = "not_found"

    def __init__(self, entity_id: str, entity: str = "entity"):
        self.entity_id = entity_id
        self.entity = entity
        super().__init__(f"{entity} {entity_id} not found")


class InvalidIndex(ValidationError):
    """A position is outside the range of its container."""

    kind = "invalid_index"

    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(f"index {index} out of range (size {size})")


class DuplicateName(ValidationError):
    """A board or list name collides with an existing sibling."""

    kind = "duplicate_name"

    def __init__(self, name: str, scope: str = "board"):
        self.name = name
        self.scope = scope
        super().__init__(f"a {scope} named '{name}' already exists")


class IdInUse(ValidationError):
    """A create command reuses an identifier that is still present."""

    kind = "id_in_use"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"identifier {entity_id} is already in use")


class InvalidField(ValidationError):
    """An edit names an unknown field or carries an unusable value."""

    kind = "invalid_field"


class HistoryEmpty(ValidationError):
    """Undo or redo was requested with nothing on the stack."""

    kind = "history_empty"


class CorruptDocument(ValidationError):
    """A serialized board document is malformed or breaks board invariants."""

    kind = "corrupt_document"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Sync (Cloud Sync Client)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SyncError(TaskboardError):
    """Base for remote save/load failures."""

    retryable = False


class Unauthorized(SyncError):
    """Credentials were rejected or the session token expired."""
    pass


class NetworkUnavailable(SyncError):
    """The remote API could not be reached (includes timeouts)."""

    retryable = True


class Tampered(SyncError):
    """The remote payload failed authentication or is not a valid board."""
    pass


class VersionConflict(SyncError):
    """The remote snapshot is newer than the last version we know about."""

    def __init__(self, remote_version: Optional[int] = None, known_version: Optional[int] = None):
        self.remote_version = remote_version
        self.known_version = known_version
        super().__init__(
            f"remote snapshot v{remote_version} is newer than local v{known_version}"
        )


class RemoteNotFound(SyncError):
    """Nothing has been saved remotely for this account yet."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Local I/O and configuration
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class LocalIOError(TaskboardError):
    """The local board file could not be read or written."""
    pass


class ConfigError(TaskboardError):
    """Raised when configuration is invalid or incomplete."""
    pass
