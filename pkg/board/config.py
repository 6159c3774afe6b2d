# Project board: configuration
# Values come from board.yaml (or PROJECTBOARD_CONFIG), then environment overrides.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

CONFIG_PATH = Path(__file__).parent.parent.parent / "board.yaml"
BACKENDS = ("sqlite", "rest")

# env var -> config attribute
ENV_OVERRIDES = {
    "PROJECTBOARD_DB": "db_path",
    "PROJECTBOARD_BACKEND": "backend",
    "PROJECTBOARD_REST_URL": "rest_url",
    "PROJECTBOARD_REST_KEY": "rest_api_key",
    "PROJECTBOARD_OWNER": "owner_id",
    "PROJECTBOARD_API_SECRET": "api_secret",
}


TRUE_WORDS = ("1", "true", "yes", "on")
FALSE_WORDS = ("0", "false", "no", "off")


def _as_bool(name, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in TRUE_WORDS + FALSE_WORDS:
        return value.strip().lower() in TRUE_WORDS
    raise ConfigError(f"{name} must be true or false, got {value!r}")


def _as_number(name, value) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")


@dataclass
class BoardConfig:
    """Runtime configuration for the board service."""

    # Storage
    backend: str = "sqlite"                 # "sqlite" | "rest"
    db_path: str = "~/.local/share/projectboard/board.db"
    owner_id: str = "local"

    # Managed backend (backend = "rest")
    rest_url: Optional[str] = None
    rest_api_key: Optional[str] = None
    rest_access_token: Optional[str] = None
    request_timeout: float = 10.0

    # Reconciler
    refetch_delay: Optional[float] = 0.5    # None = no re-fetch after a move
    discard_stale: bool = True

    # HTTP API
    api_secret: str = ""
    seed_default_lanes: bool = True

    def validate(self) -> "BoardConfig":
        self.discard_stale = _as_bool("discard_stale", self.discard_stale)
        self.seed_default_lanes = _as_bool("seed_default_lanes", self.seed_default_lanes)
        self.request_timeout = _as_number("request_timeout", self.request_timeout)
        if self.refetch_delay is not None:
            self.refetch_delay = _as_number("refetch_delay", self.refetch_delay)
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend '{self.backend}'. Available: {list(BACKENDS)}")
        if self.backend == "rest" and not (self.rest_url and self.rest_api_key):
            raise ConfigError(
                "REST backend needs rest_url and rest_api_key.\n"
                "Set them in board.yaml or via PROJECTBOARD_REST_URL / PROJECTBOARD_REST_KEY."
            )
        if self.refetch_delay is not None and self.refetch_delay < 0:
            raise ConfigError(f"refetch_delay must be >= 0, got {self.refetch_delay}")
        return self

    def resolve_paths(self):
        """Expand ~ in paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def build_store(self):
        """Instantiate the configured project store."""
        self.validate()
        if self.backend == "rest":
            from .rest_store import RestProjectStore
            return RestProjectStore(
                self.rest_url,
                self.rest_api_key,
                self.owner_id,
                access_token=self.rest_access_token,
                timeout=self.request_timeout,
            )
        from .store import SqliteProjectStore
        return SqliteProjectStore(self.db_path, owner_id=self.owner_id)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BoardConfig":
        """Load config from YAML, then apply environment overrides."""
        path = path or os.environ.get("PROJECTBOARD_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        data = {}
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                try:
                    data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")
        cfg = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

        for env_name, attr in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                setattr(cfg, attr, value)

        cfg.resolve_paths()
        return cfg.validate()
