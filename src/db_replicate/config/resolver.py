"""Inherited per-type configuration lookup.

A subtype inherits each replication setting from the nearest ancestor that
sets it explicitly, falling back to the configured baseline.

Usage:
    from db_replicate.config.resolver import ConfigResolver

    resolver = ConfigResolver(config)
    settings = resolver.resolve(["Admin", "User"], primary_key="id")
    settings.enabled
"""

from typing import Any, Sequence

from db_replicate.config.models import (
    BASELINE,
    ReplicationConfig,
    ResolvedTypeConfig,
    TypeConfig,
)

_FIELDS = ("enabled", "natural_key", "attributes", "associations", "preserve_id", "polymorphic")


class ConfigResolver:
    """Resolve ``TypeConfig`` values along a type's ancestor chain."""

    def __init__(self, config: ReplicationConfig | None = None) -> None:
        self._config = config or ReplicationConfig()
        self._cache: dict[tuple[tuple[str, ...], str], ResolvedTypeConfig] = {}

    @property
    def config(self) -> ReplicationConfig:
        return self._config

    def resolve(self, chain: Sequence[str], primary_key: str = "id") -> ResolvedTypeConfig:
        """Resolve settings for a type.

        Args:
            chain: Type names from the concrete type up to (but excluding)
                the persistence root, e.g. ``["Admin", "User"]``.
            primary_key: Identity field name; used as the natural key of a
                level that enables ``preserve_id`` without declaring one.

        Returns:
            Frozen ``ResolvedTypeConfig``.
        """
        cache_key = (tuple(chain), primary_key)
        if cache_key in self._cache:
            return self._cache[cache_key]

        levels = [self._level(name, primary_key) for name in chain]
        levels.append(self._config.baseline)

        values: dict[str, Any] = {}
        for field in _FIELDS:
            for level in levels:
                value = getattr(level, field)
                if value is not None:
                    values[field] = value
                    break
            else:
                values[field] = getattr(BASELINE, field)

        resolved = ResolvedTypeConfig(primary_key=primary_key, **values)
        self._cache[cache_key] = resolved
        return resolved

    def _level(self, type_name: str, primary_key: str) -> TypeConfig:
        level = self._config.types.get(type_name, TypeConfig())
        # preserve_id implies the identity field as natural key at the same level
        if level.preserve_id and level.natural_key is None:
            level = level.model_copy(update={"natural_key": (primary_key,)})
        return level
