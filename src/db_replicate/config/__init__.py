"""Configuration management: profiles, replication settings, TOML loading.

Usage:
    >>> from db_replicate.config import load_db_config, ConfigResolver, TypeConfig
"""

from db_replicate.config.loader import load_db_config
from db_replicate.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    PolymorphicRelation,
    ReplicationConfig,
    ResolvedTypeConfig,
    TypeConfig,
)
from db_replicate.config.resolver import ConfigResolver

__all__ = [
    "load_db_config",
    "ConfigResolver",
    "DatabaseConfig",
    "DatabaseProfile",
    "PolymorphicRelation",
    "ReplicationConfig",
    "ResolvedTypeConfig",
    "TypeConfig",
]
