"""
Stakecourt Configuration System

Configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (STAKECOURT_*)
    2. Runtime overrides and loaded files
    3. Default values

Example stakecourt.yaml:

    stake:
      default_lockup_period: 604800
    voting:
      commit_stage_seconds: 172800
      reveal_stage_seconds: 172800
    observability:
      log_level: debug
      log_format: text

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from stakecourt.observability import configure_logging
from stakecourt.schema import validate_against_schema

T = TypeVar("T")

CONFIG_SCHEMA = "stakecourt-config.schema.json"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        try:
            if target_type == bool:
                return value.lower() in ("true", "1", "yes", "on")  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
        except ValueError as e:
            raise ConfigValidationError(f"{self.env_var}: cannot parse {value!r}") from e
        return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class StakeConfig:
    """Configuration for stake accounts."""
    default_lockup_period: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="STAKECOURT_STAKE_LOCKUP_PERIOD",
        description="Lockup period in seconds when an account configuration omits one",
        validator=lambda x: isinstance(x, int) and x >= 0,
    ))
    minimum_initial_stake: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="STAKECOURT_STAKE_MIN_INITIAL",
        description="Smallest initial stake an account may be funded with",
        validator=lambda x: isinstance(x, int) and x >= 0,
    ))


@dataclass
class VotingConfig:
    """Configuration for panel voting."""
    commit_stage_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=172800,
        env_var="STAKECOURT_VOTING_COMMIT_STAGE",
        description="Length of the commit stage in seconds",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))
    reveal_stage_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=172800,
        env_var="STAKECOURT_VOTING_REVEAL_STAGE",
        description="Length of the reveal stage in seconds",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="STAKECOURT_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="STAKECOURT_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class StakecourtConfig:
    """Root configuration, aggregating all component configurations."""
    stake: StakeConfig = field(default_factory=StakeConfig)
    voting: VotingConfig = field(default_factory=VotingConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = StakecourtConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[StakecourtConfig], None]] = []
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Discard the singleton (tests)."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> StakecourtConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e

        if data:
            errors = validate_against_schema(data, CONFIG_SCHEMA)
            if errors:
                raise ConfigValidationError(f"{path}: " + "; ".join(errors))
            self._apply_dict(data)
        if path not in self._config_paths:
            self._config_paths.append(path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any]) -> None:
            for key, value in values.items():
                if hasattr(config_obj, key):
                    attr = getattr(config_obj, key)
                    if isinstance(attr, ConfigValue):
                        attr.set(value)
                    elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                        apply_to_config(attr, value)

        apply_to_config(self._config, data)

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("voting.commit_stage_seconds", 3600)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("voting.reveal_stage_seconds")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[StakecourtConfig], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in self._config_paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def apply_logging(self) -> None:
        """Configure the engine's log handler from the observability section."""
        obs = self._config.observability
        configure_logging(level=obs.log_level.get(), fmt=obs.log_format.get())

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> StakecourtConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()


__all__ = [
    "ConfigError",
    "ConfigValidationError",
    "ConfigValue",
    "StakeConfig",
    "VotingConfig",
    "ObservabilityConfig",
    "StakecourtConfig",
    "ConfigManager",
    "get_config",
    "get_config_manager",
]
