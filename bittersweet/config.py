"""Store configuration, data directory and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bittersweet.fileio import read_yaml, write_yaml_atomic

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def workspace_root() -> Path:
    """Data directory holding config.yaml and the storage files."""
    return Path(
        os.environ.get("BITTERSWEET_ROOT", str(Path.home() / ".bittersweet"))
    ).expanduser().resolve()


def config_path(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / CONFIG_FILENAME


def storage_dir(root: Path | None = None) -> Path:
    if root is None:
        root = workspace_root()
    return root / "storage"


@dataclass
class StoreConfig:
    storage_key: str = "bittersweet-store"
    write_batch_window_ms: int = 100
    event_history_size: int = 100
    max_emit_depth: int = 8
    tick_interval_seconds: float = 1.0
    max_target_duration: int = 180  # minutes
    max_task_duration: int = 480  # minutes
    user_id: str = "local-user"
    timezone: str = "UTC"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> StoreConfig:
        """Known keys only; values of the wrong type fall back to defaults."""
        config = cls()
        if not d:
            return config
        for f in fields(cls):
            if f.name not in d:
                continue
            default = getattr(config, f.name)
            value = d[f.name]
            try:
                setattr(config, f.name, type(default)(value))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid config value %s=%r", f.name, value)
        return config

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def tzinfo(self) -> ZoneInfo:
        return get_timezone(self.timezone)


def get_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, defaulting to UTC."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", name)
        return ZoneInfo("UTC")


def load_config(root: Path | None = None) -> StoreConfig:
    """Read config.yaml from the data directory, defaulting every field."""
    data = read_yaml(config_path(root))
    config = StoreConfig.from_dict(data)
    # Normalize an invalid zone name so later lookups don't warn again.
    config.timezone = str(get_timezone(config.timezone))
    return config


def save_config(config: StoreConfig, root: Path | None = None) -> None:
    write_yaml_atomic(config_path(root), config.to_dict())


def configure_logging(config: StoreConfig) -> None:
    """Basic stderr logging for the app shell. Library code only logs."""
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
