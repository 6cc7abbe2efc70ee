"""
Client settings.

Every setting is a `ConfigValue` grouped into a section dataclass:

    data     payload encoding and the inline/fetch split
    rpc      HTTP transport timeouts
    logging  log level and JSON lines

A setting resolves to the first of: its DWN_* environment variable, a value
set at runtime or loaded from a YAML file, its default.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

import yaml

from dwnclient.core import load_yaml
from dwnclient.errors import DwnError

T = TypeVar("T")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUTHY = {"1", "true", "yes", "y", "on"}

_ENV_PARSERS: Dict[type, Callable[[str], Any]] = {
    bool: lambda raw: raw.strip().lower() in _TRUTHY,
    int: int,
    float: float,
    str: str,
}


class ConfigError(DwnError):
    """A setting is unknown, unparseable, or fails its check."""


@dataclass
class ConfigValue(Generic[T]):
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _override: Optional[T] = field(default=None, repr=False)
    _listeners: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        raw = os.environ.get(self.env_var) if self.env_var else None
        if raw is not None:
            return self._parse_env(raw)
        if self._override is None:
            return self.default
        return self._override

    def set(self, value: T) -> None:
        if self.validator is not None and not self.validator(value):
            raise ConfigError(f"Rejected value {value!r} ({self.description or 'setting'})")
        previous, self._override = self._override, value
        for listener in self._listeners:
            listener(previous, value)

    def reset(self) -> None:
        self._override = None

    def on_change(self, listener: Callable[[Optional[T], T], None]) -> None:
        self._listeners.append(listener)

    def _parse_env(self, raw: str) -> T:
        kind = type(self.default)
        parser = _ENV_PARSERS.get(kind, str)
        try:
            return parser(raw)
        except ValueError as ex:
            raise ConfigError(f"{self.env_var}: cannot parse {raw!r} as {kind.__name__}") from ex


def _setting(default: Any, env_var: str, description: str, validator=None) -> Any:
    return field(default_factory=lambda: ConfigValue(default, env_var, description, validator))


def _non_empty(value: Any) -> bool:
    return bool(value)


@dataclass
class DataConfig:
    """Payload handling."""
    max_inline_size: ConfigValue[int] = _setting(
        10000, "DWN_MAX_INLINE_DATA_SIZE",
        "Largest payload (bytes) carried inline with a message",
        lambda n: n >= 0,
    )
    default_text_format: ConfigValue[str] = _setting(
        "text/plain", "DWN_DEFAULT_TEXT_FORMAT", "dataFormat for text payloads", _non_empty,
    )
    default_json_format: ConfigValue[str] = _setting(
        "application/json", "DWN_DEFAULT_JSON_FORMAT", "dataFormat for structured payloads", _non_empty,
    )
    default_bytes_format: ConfigValue[str] = _setting(
        "application/octet-stream", "DWN_DEFAULT_BYTES_FORMAT", "dataFormat for raw byte payloads", _non_empty,
    )


@dataclass
class RpcConfig:
    """Remote node transport."""
    timeout_seconds: ConfigValue[float] = _setting(
        30.0, "DWN_RPC_TIMEOUT", "Total time allowed for one JSON-RPC round trip", lambda s: s > 0,
    )
    connect_timeout_seconds: ConfigValue[float] = _setting(
        10.0, "DWN_RPC_CONNECT_TIMEOUT", "Time allowed to establish a connection", lambda s: s > 0,
    )


@dataclass
class LoggingConfig:
    level: ConfigValue[str] = _setting(
        "INFO", "DWN_LOG_LEVEL", "Log level name",
        lambda name: str(name).upper() in LOG_LEVELS,
    )
    json: ConfigValue[bool] = _setting(False, "DWN_LOG_JSON", "Emit one JSON object per log line")


def iter_settings(section: Any, prefix: str = "") -> Iterator[Tuple[str, ConfigValue]]:
    """Yield `(dotted.path, ConfigValue)` for every setting under `section`."""
    for f in fields(section):
        value = getattr(section, f.name)
        path = prefix + f.name
        if isinstance(value, ConfigValue):
            yield path, value
        elif is_dataclass(value):
            yield from iter_settings(value, path + ".")


@dataclass
class DwnConfig:
    data: DataConfig = field(default_factory=DataConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Effective values as nested sections."""
        out: Dict[str, Any] = {}
        for path, setting in iter_settings(self):
            section, name = path.rsplit(".", 1)
            out.setdefault(section, {})[name] = setting.get()
        return out

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Owns one `DwnConfig` and the YAML files applied to it.

    `ConfigManager.instance()` gives the process-wide manager; tests and
    embedders may construct private managers directly.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __init__(self, config: Optional[DwnConfig] = None):
        self._config = config or DwnConfig()
        self._sources: List[Path] = []

    @classmethod
    def instance(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @property
    def config(self) -> DwnConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        source = Path(path)
        if not source.is_file():
            raise ConfigError(f"No such configuration file: {source}")
        document = load_yaml(source)
        if document is None:
            return
        if not isinstance(document, dict):
            raise ConfigError(f"{source}: top level must be a mapping")

        known = dict(iter_settings(self._config))
        for path_, value in self._flatten(document):
            if path_ not in known:
                raise ConfigError(f"{source}: unknown setting {path_}")
            known[path_].set(value)
        self._sources.append(source)

    @staticmethod
    def _flatten(document: Dict[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any]]:
        for key, value in document.items():
            if isinstance(value, dict):
                yield from ConfigManager._flatten(value, f"{prefix}{key}.")
            else:
                yield f"{prefix}{key}", value

    def _lookup(self, path: str) -> ConfigValue:
        for candidate, setting in iter_settings(self._config):
            if candidate == path:
                return setting
        raise ConfigError(f"Invalid config path: {path}")

    def set(self, path: str, value: Any) -> None:
        """Override one setting, e.g. `manager.set("data.max_inline_size", 2048)`."""
        self._lookup(path).set(value)

    def get(self, path: str) -> Any:
        return self._lookup(path).get()

    def reload(self) -> None:
        """Re-apply every file loaded so far, skipping ones that disappeared."""
        sources, self._sources = self._sources, []
        for source in sources:
            if source.is_file():
                self.load_from_file(source)

    def validate(self) -> List[str]:
        """Check effective values; returns one message per failing setting."""
        problems: List[str] = []
        for path, setting in iter_settings(self._config):
            try:
                value = setting.get()
            except ConfigError as ex:
                problems.append(f"{path}: {ex}")
                continue
            if setting.validator is not None and not setting.validator(value):
                problems.append(f"{path}: {value!r} rejected")
        return problems


def get_config() -> DwnConfig:
    """The process-wide configuration."""
    return ConfigManager.instance().config
