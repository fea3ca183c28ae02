# Taskboard: configuration
# Override defaults via config.yaml or environment variables.

import logging
import os
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

CONFIG_PATH = Path.home() / ".config" / "taskboard" / "config.yaml"
ENV_CONFIG = "TASKBOARD_CONFIG"
ENV_API_URL = "TASKBOARD_API_URL"
ENV_PASSPHRASE = "TASKBOARD_PASSPHRASE"

LOG_FORMAT = "%(asctime)s [taskboard] %(levelname)s: %(message)s"


@dataclass
class Config:
    """Runtime configuration for the taskboard core."""

    # Local persistence
    board_path: str = "~/.local/share/taskboard/board.json"

    # Behavior: history and search
    history_cap: int = 100
    search_ngram: int = 3
    search_limit: int = 20

    # Behavior: save debouncing
    debounce_ms: int = 500
    debounce_max_signals: int = 20

    # Cloud sync (None / False = local only)
    cloud_enabled: bool = False
    api_url: Optional[str] = None
    account: str = ""
    request_timeout: float = 10.0
    sync_max_attempts: int = 5
    sync_backoff_base: float = 0.5
    sync_backoff_max: float = 30.0
    kdf_iterations: int = 390_000

    # Logging (applied only by hosts that call configure_logging)
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def resolve_paths(self):
        """Expand ~ and apply environment overrides."""
        self.board_path = str(Path(self.board_path).expanduser())
        if self.log_file:
            self.log_file = str(Path(self.log_file).expanduser())
        api_url = os.environ.get(ENV_API_URL)
        if api_url:
            self.api_url = api_url

    def validate(self):
        """Raise ConfigError for values the core cannot run with."""
        if self.history_cap < 1:
            raise ConfigError(f"history_cap must be at least 1 (got {self.history_cap})")
        if self.search_ngram < 1:
            raise ConfigError(f"search_ngram must be at least 1 (got {self.search_ngram})")
        if self.debounce_ms < 0:
            raise ConfigError(f"debounce_ms must not be negative (got {self.debounce_ms})")
        if self.debounce_max_signals < 1:
            raise ConfigError(f"debounce_max_signals must be at least 1 (got {self.debounce_max_signals})")
        if self.sync_max_attempts < 1:
            raise ConfigError(f"sync_max_attempts must be at least 1 (got {self.sync_max_attempts})")
        if self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be positive (got {self.request_timeout})")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"unknown log_level: {self.log_level}")
        if self.cloud_enabled:
            if not self.api_url:
                raise ConfigError(
                    "cloud_enabled is set but no api_url is configured.\n"
                    f"Set api_url in the config file or export {ENV_API_URL}=https://…"
                )
            if not self.account:
                raise ConfigError("cloud_enabled is set but no account is configured")

    @property
    def debounce_secs(self) -> float:
        return self.debounce_ms / 1000

    @staticmethod
    def passphrase() -> Optional[str]:
        """Encryption passphrase from the environment; never read from or written to disk."""
        return os.environ.get(ENV_PASSPHRASE) or None

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults when absent."""
        cfg_path = Path(path or os.environ.get(ENV_CONFIG) or CONFIG_PATH).expanduser()
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"cannot read config {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"config {cfg_path} must be a mapping")
            known = {f.name for f in fields(cls)}
            try:
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except TypeError as e:
                raise ConfigError(f"invalid config {cfg_path}: {e}")
        else:
            cfg = cls()
        cfg.resolve_paths()
        cfg.validate()
        return cfg


def configure_logging(cfg: Config) -> None:
    """Host-side log setup; the core itself only ever calls getLogger()."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if cfg.log_file:
        Path(cfg.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(cfg.log_file)]
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper()),
        format=LOG_FORMAT,
        handlers=handlers,
    )
