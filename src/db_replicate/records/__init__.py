"""Record capability contract and the many-to-many join pseudo-record.

Usage:
    from db_replicate.records import Record, RecordStore, Relation, JoinRecord
"""

from db_replicate.records.base import (
    Cardinality,
    Record,
    RecordClass,
    RecordStore,
    Related,
    RelatedMany,
    RelatedNone,
    RelatedOne,
    RelatedUnexpected,
    Relation,
    RelationKind,
    ReplicableRecord,
    UnknownTypeError,
)
from db_replicate.records.habtm import JOIN_TYPE, JoinRecord

__all__ = [
    "Cardinality",
    "Record",
    "RecordClass",
    "RecordStore",
    "Related",
    "RelatedMany",
    "RelatedNone",
    "RelatedOne",
    "RelatedUnexpected",
    "Relation",
    "RelationKind",
    "ReplicableRecord",
    "UnknownTypeError",
    "JOIN_TYPE",
    "JoinRecord",
]
