"""Configuration loading from replicate.toml."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_replicate.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    ReplicationConfig,
    TypeConfig,
)


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load profiles and per-type replication settings from a TOML file.

    Args:
        config_path: Path to replicate.toml (default: ``./replicate.toml``)

    Returns:
        DatabaseConfig with all profiles and type settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid

    Example:
        # replicate.toml
        [profiles.prod]
        url = "postgresql://reader@db/app"

        [types.User]
        enabled = true
        natural_key = ["login"]
        associations = ["profile", "emails"]
    """
    if config_path is None:
        config_path = Path.cwd() / "replicate.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Replication config not found: {config_path}\n"
            f"Create replicate.toml with [profiles.<name>] and [types.<Type>] tables."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    try:
        profiles = {
            name: DatabaseProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        types = {
            name: TypeConfig(**type_data)
            for name, type_data in data.get("types", {}).items()
        }
    except (ValidationError, TypeError) as e:
        raise ValueError(f"Invalid replication config {config_path}: {e}") from e

    return DatabaseConfig(
        profiles=profiles,
        replication=ReplicationConfig(types=types),
    )
