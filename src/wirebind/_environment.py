from __future__ import annotations

import logging
import os
from collections import ChainMap
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ._errors import UnknownEnvironmentError


if TYPE_CHECKING:
    from collections.abc import Mapping


logger = logging.getLogger(__name__)

DEFAULT_ENV_VAR = "APP_ENV"


@dataclass
class EnvironmentConfig:
    name: str
    variables: dict[str, Any] = field(default_factory=dict)
    services: dict[str, str] = field(default_factory=dict)
    features: list[str] = field(default_factory=list)


class EnvironmentManager:
    """Tracks the active deployment environment and its feature flags.

    Variable lookups go through three layers, first hit wins: values set with
    ``set()``, the active environment's ``variables``, then the process
    environment.
    """

    def __init__(
        self,
        default: str = "development",
        *,
        env_var: str = DEFAULT_ENV_VAR,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._environ: Mapping[str, str] = os.environ if environ is None else environ
        self._environments: dict[str, EnvironmentConfig] = {}
        self._overrides: dict[str, Any] = {}
        self._current = self._environ.get(env_var) or default
        self._variables: ChainMap[str, Any] = self._layer_variables()

    @classmethod
    def with_presets(cls, default: str = "development", **kwargs: Any) -> EnvironmentManager:
        manager = cls(default, **kwargs)
        for config in (development(), production(), testing(), staging()):
            manager.register(config)
        return manager

    def register(self, config: EnvironmentConfig) -> EnvironmentManager:
        self._environments[config.name] = config
        if config.name == self._current:
            self._variables = self._layer_variables()
        return self

    def set_environment(self, name: str) -> EnvironmentManager:
        if name not in self._environments:
            raise UnknownEnvironmentError(name)
        logger.debug("Switching environment %s -> %s", self._current, name)
        self._current = name
        self._variables = self._layer_variables()
        return self

    @property
    def current(self) -> str:
        return self._current

    def get_environment(self, name: str | None = None) -> EnvironmentConfig | None:
        return self._environments.get(name or self._current)

    def environments(self) -> list[str]:
        return list(self._environments)

    def is_environment(self, *names: str) -> bool:
        return self._current in names

    def get(self, key: str, default: Any = None) -> Any:
        return self._variables.get(key, default)

    def set(self, key: str, value: Any) -> EnvironmentManager:
        self._overrides[key] = value
        return self

    def has_feature(self, feature: str) -> bool:
        env = self.get_environment()
        return env is not None and feature in env.features

    def service_hint(self, service: str, default: str | None = None) -> str | None:
        env = self.get_environment()
        if env is None:
            return default
        return env.services.get(service, default)

    def _layer_variables(self) -> ChainMap[str, Any]:
        env = self.get_environment()
        return ChainMap(self._overrides, env.variables if env else {}, self._environ)


def development() -> EnvironmentConfig:
    return EnvironmentConfig(
        name="development",
        variables={"DEBUG": True, "LOG_LEVEL": "debug", "CACHE_TTL": 60, "DB_POOL_SIZE": 5},
        services={"logger": "ConsoleLogger", "cache": "MemoryCache", "database": "SQLiteDatabase"},
        features=["hot-reload", "debug-toolbar", "detailed-errors"],
    )


def production() -> EnvironmentConfig:
    return EnvironmentConfig(
        name="production",
        variables={"DEBUG": False, "LOG_LEVEL": "error", "CACHE_TTL": 3600, "DB_POOL_SIZE": 20},
        services={"logger": "FileLogger", "cache": "RedisCache", "database": "PostgreSQLDatabase"},
        features=["performance-monitoring", "error-tracking"],
    )


def testing() -> EnvironmentConfig:
    return EnvironmentConfig(
        name="test",
        variables={"DEBUG": False, "LOG_LEVEL": "warn", "CACHE_TTL": 1, "DB_POOL_SIZE": 1},
        services={"logger": "NullLogger", "cache": "MemoryCache", "database": "InMemoryDatabase"},
        features=["test-doubles", "fast-teardown"],
    )


def staging() -> EnvironmentConfig:
    return EnvironmentConfig(
        name="staging",
        variables={"DEBUG": True, "LOG_LEVEL": "info", "CACHE_TTL": 1800, "DB_POOL_SIZE": 10},
        services={"logger": "FileLogger", "cache": "RedisCache", "database": "PostgreSQLDatabase"},
        features=["performance-monitoring", "debug-toolbar"],
    )
