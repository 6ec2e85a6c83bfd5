"""Session configuration loaded from YAML, env vars and CLI args."""

import os
import logging
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised for invalid session configuration."""


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class SessionOptions:
    path: str = ""
    container: str = ""
    default_container: str = ""
    capacity: int = 1000
    notification_interval: float = 0.2
    tail_lines: int = 100
    show_timestamp: bool = False
    show_source: bool = False
    filter: str = ""

    def effective_container(self) -> str:
        """An empty explicit container falls back to the default one."""
        return self.container or self.default_container

    def validate(self):
        if not self.path:
            raise ConfigError("path is required")
        if self.capacity <= 0:
            raise ConfigError(f"capacity must be > 0, got {self.capacity}")
        if self.notification_interval <= 0:
            raise ConfigError(
                f"notification_interval must be > 0, got {self.notification_interval}"
            )
        if self.tail_lines < 0:
            raise ConfigError(f"tail_lines must be >= 0, got {self.tail_lines}")


# key -> (env var, converter)
_FIELDS = {
    "container": (None, str),
    "default_container": ("DEFAULT_CONTAINER", str),
    "capacity": ("LOG_CAPACITY", int),
    "notification_interval": ("NOTIFY_INTERVAL", float),
    "tail_lines": ("TAIL_LINES", int),
    "show_timestamp": ("SHOW_TIMESTAMP", _parse_bool),
    "show_source": ("SHOW_SOURCE", _parse_bool),
    "filter": (None, str),
}


def _convert(key: str, value, converter):
    try:
        return converter(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {key}: {value!r}") from e


def load_yaml_config(path: str | None) -> dict:
    """Load session settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(cli_args=None, yaml_data: dict | None = None) -> SessionOptions:
    """Build SessionOptions from defaults <- YAML <- env vars <- CLI args."""
    yaml_data = yaml_data or {}
    kwargs: dict = {}

    for key, (env_var, converter) in _FIELDS.items():
        if key in yaml_data and yaml_data[key] is not None:
            kwargs[key] = _convert(key, yaml_data[key], converter)
        if env_var and env_var in os.environ:
            kwargs[key] = _convert(key, os.environ[env_var], converter)
        value = getattr(cli_args, key, None)
        if value is not None:
            kwargs[key] = _convert(key, value, converter)

    path = getattr(cli_args, "path", None) or yaml_data.get("path")
    if path:
        kwargs["path"] = str(path)

    return SessionOptions(**kwargs)
