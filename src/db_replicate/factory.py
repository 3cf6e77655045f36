"""Engine and store factory.

Resolves a connection profile from replicate.toml, builds a SQLAlchemy
engine for it and opens a ``SQLAlchemyStore`` bound to a session.

Usage:
    from db_replicate.factory import get_active_profile_name, open_store

    profile_name = get_active_profile_name(env_prefix="APP_")
    with open_store(config, profile_name, "myapp.models:Base") as store:
        ...
"""

import importlib
import os
from contextlib import contextmanager
from typing import Any, Iterator
from urllib.parse import quote

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from db_replicate.adapters.orm import SQLAlchemyStore
from db_replicate.config.models import DatabaseConfig, DatabaseProfile


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(profile_name: str | None = None, env_prefix: str = "") -> str:
    """Get profile name from the argument or the ``{env_prefix}DB_PROFILE`` env var.

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    if profile_name:
        return profile_name

    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Pass --profile <name> or set {env_var}=<name>."
    )


def get_profile(config: DatabaseConfig, profile_name: str) -> DatabaseProfile:
    """Look up a profile by name.

    Raises:
        ProfileNotFoundError: If the profile is not in the config
    """
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in replicate.toml.\n"
            f"Available profiles: {available}"
        )
    return config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution and driver normalization.

    ``postgres://`` and ``postgresql://`` become ``postgresql+psycopg://``.
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


# ============================================================================
# Engine and Store
# ============================================================================


def create_engine_for_url(url: str, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine.

    SQLite engines get the pysqlite SAVEPOINT fix (driver-level autocommit
    off, explicit ``BEGIN``) so per-record savepoints work.
    """
    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def import_base(spec: str) -> Any:
    """Import a declarative base from ``"package.module:Base"``.

    Raises:
        ValueError: If ``spec`` is not in ``module:attribute`` form
    """
    module_name, _, attribute = spec.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:Base', got '{spec}'")
    module = importlib.import_module(module_name)
    base = module
    for part in attribute.split("."):
        base = getattr(base, part)
    return base


@contextmanager
def open_store(
    config: DatabaseConfig,
    profile_name: str,
    base: Any,
    commit: bool = False,
) -> Iterator[SQLAlchemyStore]:
    """Open a session-bound ``SQLAlchemyStore`` for a profile.

    Args:
        config: Loaded configuration.
        profile_name: Profile to connect to.
        base: Declarative base, or a ``"module:Base"`` import string.
        commit: Commit the session on clean exit; otherwise roll back.
    """
    if isinstance(base, str):
        base = import_base(base)

    engine = create_engine_for_url(resolve_url(get_profile(config, profile_name)))
    try:
        with Session(engine) as session:
            yield SQLAlchemyStore(session, base, config.replication)
            if commit:
                session.commit()
            else:
                session.rollback()
    finally:
        engine.dispose()
