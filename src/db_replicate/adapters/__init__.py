"""Storage adapters implementing the Record capability.

Usage:
    from db_replicate.adapters import SQLAlchemyStore
"""

from db_replicate.adapters.orm import (
    SQLAlchemyRecord,
    SQLAlchemyRecordClass,
    SQLAlchemyStore,
)

__all__ = [
    "SQLAlchemyStore",
    "SQLAlchemyRecordClass",
    "SQLAlchemyRecord",
]
