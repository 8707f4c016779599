"""Configuration loading for bitseed.

Values are layered: model defaults, then ``bitseed.toml``, then ``BITSEED_*``
environment variables. The merged mapping is validated by the pydantic
``Config`` model.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError

from bitseed.exceptions import ConfigurationError
from bitseed.logging_config import setup_logging
from bitseed.models import (
    Config,
    ObservabilityConfig,
    PersistenceConfig,
    SeederConfig,
    TrackerConfig,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "bitseed.toml"

# section -> {option: environment variable}
ENV_OVERRIDES: dict[str, dict[str, str]] = {
    "tracker": {
        "host": "BITSEED_TRACKER_HOST",
        "port": "BITSEED_TRACKER_PORT",
        "announce_path": "BITSEED_ANNOUNCE_PATH",
        "interval": "BITSEED_ANNOUNCE_INTERVAL",
    },
    "seeder": {
        "internal_address": "BITSEED_INTERNAL_ADDRESS",
        "external_address": "BITSEED_EXTERNAL_ADDRESS",
        "port": "BITSEED_SEEDER_PORT",
        "peer_workers": "BITSEED_PEER_WORKERS",
        "seeders_stop_seeding": "BITSEED_SEEDERS_STOP_SEEDING",
        "stop_after_iterations": "BITSEED_STOP_AFTER_ITERATIONS",
        "announce_interval": "BITSEED_SELF_ANNOUNCE_INTERVAL",
        "read_timeout": "BITSEED_READ_TIMEOUT",
    },
    "supervisor": {"restart_delay": "BITSEED_RESTART_DELAY"},
    "torrent": {"piece_length": "BITSEED_PIECE_LENGTH"},
    "persistence": {
        "backend": "BITSEED_PERSISTENCE",
        "database": "BITSEED_DATABASE",
    },
    "observability": {
        "log_level": "BITSEED_LOG_LEVEL",
        "log_file": "BITSEED_LOG_FILE",
        "console": "BITSEED_LOG_CONSOLE",
        "structured_logging": "BITSEED_STRUCTURED_LOGGING",
    },
}

_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off"})

_config_manager: ConfigManager | None = None


def coerce_env_value(raw: str) -> bool | int | float | str:
    """Turn an environment string into a bool, int or float when it looks like one.

    Anything else is returned unchanged and left for pydantic to validate.
    """
    lowered = raw.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    for kind in (int, float):
        try:
            return kind(raw)
        except ValueError:
            continue
    return raw


def candidate_config_files() -> list[Path]:
    home = Path.home()
    return [
        Path.cwd() / CONFIG_FILE_NAME,
        home / ".config" / "bitseed" / CONFIG_FILE_NAME,
        home / f".{CONFIG_FILE_NAME}",
    ]


def environment_overrides(environ: dict[str, str] | None = None) -> dict[str, dict[str, Any]]:
    """Collect the ``BITSEED_*`` variables that are set, grouped by section."""
    environ = os.environ if environ is None else environ
    overrides: dict[str, dict[str, Any]] = {}
    for section, options in ENV_OVERRIDES.items():
        values = {
            option: coerce_env_value(environ[variable])
            for option, variable in options.items()
            if variable in environ
        }
        if values:
            overrides[section] = values
    return overrides


class ConfigManager:
    """Locates, loads and validates the bitseed configuration.

    Args:
        config_file: explicit TOML file. When omitted the working directory,
            ``~/.config/bitseed`` and ``~/.bitseed.toml`` are searched in order.
        setup_logs: apply the ``[observability]`` section once loaded.

    """

    def __init__(self, config_file: str | Path | None = None, setup_logs: bool = True):
        if config_file:
            self.config_file: Path | None = Path(config_file)
        else:
            self.config_file = next((p for p in candidate_config_files() if p.exists()), None)
        self.config = self.load()
        if setup_logs:
            self.apply_logging()

    def read_file(self) -> dict[str, Any]:
        """Parse the TOML file. A missing or unreadable file yields no values."""
        if self.config_file is None or not self.config_file.exists():
            return {}
        try:
            return toml.loads(self.config_file.read_text(encoding="utf-8"))
        except (OSError, toml.TomlDecodeError) as e:
            logger.warning("Ignoring config file %s: %s", self.config_file, e)
            return {}

    def load(self) -> Config:
        data = self.read_file()
        for section, values in environment_overrides().items():
            current = data.get(section)
            data[section] = {**current, **values} if isinstance(current, dict) else values
        try:
            return Config.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def apply_logging(self) -> None:
        setup_logging(self.config.observability)

    def export(self, fmt: str = "toml") -> str:
        """Render the active configuration as ``toml`` or ``json``."""
        data = self.config.model_dump(mode="json", exclude_none=True)
        renderers = {"toml": toml.dumps, "json": lambda d: json.dumps(d, indent=2)}
        render = renderers.get((fmt or "toml").lower())
        if render is None:
            msg = f"Unsupported export format: {fmt}"
            raise ConfigurationError(msg)
        return render(data)


def get_config() -> Config:
    """Return the process-wide configuration, loading it on first use."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def reload_config() -> Config:
    """Re-read the file and environment of the process-wide manager."""
    if _config_manager is None:
        msg = "Configuration not initialized"
        raise ConfigurationError(msg)
    _config_manager.config = _config_manager.load()
    _config_manager.apply_logging()
    return _config_manager.config


def set_config(new_config: Config) -> None:
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(None, setup_logs=False)
    _config_manager.config = new_config
    _config_manager.apply_logging()


def reset_config() -> None:
    global _config_manager
    _config_manager = None


def get_tracker_config() -> TrackerConfig:
    return get_config().tracker


def get_seeder_config() -> SeederConfig:
    return get_config().seeder


def get_persistence_config() -> PersistenceConfig:
    return get_config().persistence


def get_observability_config() -> ObservabilityConfig:
    return get_config().observability
