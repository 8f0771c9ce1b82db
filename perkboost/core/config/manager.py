"""
ConfigManager: hierarchical, dot-notation access to tunable engine settings.

Purpose
-------
- Provide dot-notation access to tunable values such as feature toggles,
  sweeper cadence, resolver policy and listener timeouts.
- Back configuration with built-in defaults deep-merged with YAML files.
- Allow in-memory overrides at runtime (admin tools, tests).

Responsibilities
----------------
- Load and deep-merge every YAML file found under the config directory.
- Serve reads from an in-memory tree with hit/miss metrics.
- Apply overrides atomically per key with optional validators.

Non-Responsibilities
--------------------
- Environment/static settings (see `perkboost.core.config.config.Config`).
- Persisting overrides (they live for the lifetime of the instance).

Key Design Decisions
--------------------
- Instances, not class state: the composition root owns one manager and hands
  it to every service, so tests can build an isolated manager per case.
- YAML is the single source for defaults; overrides always win over YAML.
- Missing keys fall back to the built-in defaults, then the caller's default.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, MutableMapping, Optional, Union

import yaml

from perkboost.core.exceptions import ConfigurationError
from perkboost.core.logging.logger import get_logger

logger = get_logger(__name__)


# Built-in defaults; YAML files deep-merge on top of these.
DEFAULT_SETTINGS: Dict[str, Any] = {
    "features": {
        "perks_enabled": True,
        "boosts_enabled": True,
        "seasonal_perks_enabled": False,
    },
    "boosts": {
        "sweeper": {
            "interval_seconds": 60,
            "run_on_start": True,
        },
        "resolver": {
            "charge_unselected_highest_only": False,
        },
    },
    "analytics": {
        "enabled": True,
    },
    "core": {
        "event": {
            "listener_timeout": {
                "critical_seconds": 5.0,
                "high_seconds": 10.0,
            },
        },
    },
}


@dataclass
class ConfigMetrics:
    """Counters for config reads and writes."""

    gets: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    fallback_to_defaults: int = 0
    sets: int = 0
    errors: int = 0
    total_get_time_ms: float = 0.0

    def snapshot(self) -> Dict[str, Any]:
        avg_get_ms = self.total_get_time_ms / self.gets if self.gets else 0.0
        hit_rate = (self.cache_hits / self.gets * 100) if self.gets else 0.0
        return {
            "gets": self.gets,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "hit_rate_percent": round(hit_rate, 2),
            "fallback_to_defaults": self.fallback_to_defaults,
            "sets": self.sets,
            "errors": self.errors,
            "avg_get_time_ms": round(avg_get_ms, 3),
        }


class ConfigManager:
    """
    Tunable configuration tree with dot-notation access.

    Examples
    --------
    >>> config = ConfigManager.from_directory(Path("config"))
    >>> config.get("boosts.sweeper.interval_seconds", 60)
    60
    >>> config.set("features.perks_enabled", False)
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._defaults: Dict[str, Any] = copy.deepcopy(
            dict(defaults) if defaults is not None else DEFAULT_SETTINGS
        )
        self._values: Dict[str, Any] = copy.deepcopy(self._defaults)
        self._validators: Dict[str, Callable[[Any], Any]] = {}
        self._metrics = ConfigMetrics()

        if overrides:
            for key, value in overrides.items():
                self.set(key, value)

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @classmethod
    def from_directory(
        cls,
        config_dir: Union[str, Path],
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ConfigManager":
        """Build a manager from built-in defaults plus every YAML file in ``config_dir``."""
        manager = cls()
        manager.load_yaml_directory(config_dir)
        if overrides:
            for key, value in overrides.items():
                manager.set(key, value)
        return manager

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            else:
                target[key] = copy.deepcopy(value)

    def load_yaml_directory(self, config_dir: Union[str, Path]) -> int:
        """
        Recursively load YAML files from ``config_dir`` into the defaults.

        Returns the number of files merged. A missing directory is not an
        error; malformed files are logged and skipped.
        """
        config_dir = Path(config_dir)
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return 0

        yaml_files = sorted(config_dir.rglob("*.yaml")) + sorted(config_dir.rglob("*.yml"))
        loaded_count = 0

        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                self._metrics.errors += 1
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                continue

            if isinstance(data, dict):
                self._deep_merge_dict(self._defaults, data)
                self._deep_merge_dict(self._values, data)
                loaded_count += 1
                logger.debug(
                    "Loaded YAML config",
                    extra={"file": str(yaml_file.relative_to(config_dir))},
                )
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "root_type": type(data).__name__,
                    },
                )

        logger.info(
            "YAML configs loaded",
            extra={"yaml_file_count": loaded_count, "config_dir": str(config_dir)},
        )
        return loaded_count

    # =========================================================================
    # READS
    # =========================================================================

    @staticmethod
    def _traverse(tree: Mapping[str, Any], key: str) -> Any:
        value: Any = tree
        for part in key.split("."):
            if not isinstance(value, Mapping):
                return None
            value = value.get(part)
            if value is None:
                return None
        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Parameters
        ----------
        key:
            Dot-notation config path (e.g. ``"boosts.sweeper.interval_seconds"``).
        default:
            Value to return if the key is not found.
        """
        start_time = time.perf_counter()
        self._metrics.gets += 1
        try:
            value = self._traverse(self._values, key)
            if value is not None:
                self._metrics.cache_hits += 1
                return value

            self._metrics.cache_misses += 1
            fallback = self._traverse(self._defaults, key)
            if fallback is not None:
                self._metrics.fallback_to_defaults += 1
                return fallback
            return default
        finally:
            self._metrics.total_get_time_ms += (time.perf_counter() - start_time) * 1000

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in {"true", "yes", "1", "on"}
        return bool(value)

    # =========================================================================
    # WRITES
    # =========================================================================

    def register_validator(self, key: str, validator: Callable[[Any], Any]) -> None:
        """
        Register a validator for a full dot-notation key.

        The validator receives the candidate value and returns the value to
        store, or raises ``ValueError`` / ``TypeError`` to reject it.
        """
        self._validators[key] = validator

    def set(self, key: str, value: Any) -> None:
        """
        Override one dot-notation key in memory.

        Raises
        ------
        ConfigurationError
            If a registered validator rejects the value or an intermediate
            path segment is not a mapping.
        """
        validator = self._validators.get(key)
        if validator is not None:
            try:
                value = validator(value)
            except (TypeError, ValueError) as exc:
                self._metrics.errors += 1
                raise ConfigurationError(key, str(exc)) from exc

        parts = key.split(".")
        node: MutableMapping[str, Any] = self._values
        for part in parts[:-1]:
            child = node.get(part)
            if child is None:
                child = {}
                node[part] = child
            elif not isinstance(child, MutableMapping):
                self._metrics.errors += 1
                raise ConfigurationError(key, f"'{part}' is not a mapping")
            node = child

        old_value = node.get(parts[-1])
        node[parts[-1]] = value
        self._metrics.sets += 1

        logger.info(
            "Configuration override applied",
            extra={"config_key": key, "old_value": old_value, "new_value": value},
        )

    def reset(self) -> None:
        """Drop every override and return to defaults plus YAML."""
        self._values = copy.deepcopy(self._defaults)

    # =========================================================================
    # METRICS
    # =========================================================================

    def get_metrics(self) -> Dict[str, Any]:
        return self._metrics.snapshot()
