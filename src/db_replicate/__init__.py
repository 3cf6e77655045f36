"""db-replicate: Copy object graphs between databases.

Dumps a record and everything it is configured to take along as an ordered
stream of ``(type, id, attributes)`` tuples, then loads that stream into
another database, rewriting every cross-record reference to the ids the
target assigned.

Usage:
    from db_replicate import Dumper, Loader, SQLAlchemyStore, PickleWriter
    from db_replicate import load_db_config, open_store
"""

__version__ = "0.1.0"

# Engine
from db_replicate.dumper import Dumper
from db_replicate.keymap import KeyMap
from db_replicate.loader import Loader, ProductionGuardError

# Records
from db_replicate.records.base import Record, RecordClass, RecordStore, UnknownTypeError
from db_replicate.records.habtm import JOIN_TYPE, JoinRecord

# Adapters
from db_replicate.adapters.orm import SQLAlchemyStore

# Config
from db_replicate.config.loader import load_db_config
from db_replicate.config.models import DatabaseConfig, ReplicationConfig, TypeConfig

# Factory
from db_replicate.factory import ProfileNotFoundError, open_store

# Transport
from db_replicate.transport import (
    JsonLinesWriter,
    PickleWriter,
    TransportError,
    read_json_lines,
    read_pickle,
)

__all__ = [
    # Engine
    "Dumper",
    "Loader",
    "KeyMap",
    "ProductionGuardError",
    # Records
    "Record",
    "RecordClass",
    "RecordStore",
    "UnknownTypeError",
    "JoinRecord",
    "JOIN_TYPE",
    # Adapters
    "SQLAlchemyStore",
    # Config
    "load_db_config",
    "DatabaseConfig",
    "ReplicationConfig",
    "TypeConfig",
    # Factory
    "open_store",
    "ProfileNotFoundError",
    # Transport
    "PickleWriter",
    "JsonLinesWriter",
    "read_pickle",
    "read_json_lines",
    "TransportError",
]
