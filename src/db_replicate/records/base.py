"""Record capability contract consumed by the dumper and loader.

The engine never talks to an ORM directly.  Storage layers implement three
Protocols:

- ``Record``: one persisted object (identity, attributes, relations).
- ``RecordClass``: class-level operations for one type (natural-key lookup,
  raw upsert, fetch by target id).
- ``RecordStore``: type-name registry that hands out ``RecordClass``es and
  wraps native objects as ``Record``s.

``ReplicableRecord`` implements the parts of ``Record`` that are the same
for every storage layer -- most importantly ``render_attributes``, which
turns owning foreign keys into symbolic references.

Usage:
    from db_replicate.records.base import Record, Relation, RelationKind

    def walk(record: Record) -> None:
        for relation in record.declared_associations():
            if relation.kind is RelationKind.OWNING:
                ...
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Sequence, runtime_checkable

from db_replicate.codec import encode_single


class UnknownTypeError(LookupError):
    """Raised when a type name is not registered with the store."""

    pass


# ============================================================================
# Relation descriptors
# ============================================================================


class RelationKind(str, Enum):
    """Direction of a relation relative to the record that declares it."""

    OWNING = "owning"              # this record holds the foreign key
    DEPENDENT = "dependent"        # the far side holds a key to this record
    MANY_TO_MANY = "many_to_many"  # membership lives in a join table


class Cardinality(str, Enum):
    ONE = "one"
    MANY = "many"


@dataclass(frozen=True)
class Relation:
    """Static description of one association of a record type.

    Attributes:
        name: Association name (``fetch_related`` key).
        kind: Owning, dependent or many-to-many.
        cardinality: Single record or collection.
        target_type: Far-side type name; ``None`` for polymorphic relations.
        foreign_key: Attribute holding the far-side id (owning only).
        foreign_type: Attribute holding the far-side type name
            (polymorphic owning only).
        polymorphic: Far-side type is read per instance from ``foreign_type``.
        references_identity: ``False`` when the foreign key points at a
            non-identity column of the far side; such values are copied
            verbatim instead of being encoded as references.
    """

    name: str
    kind: RelationKind
    cardinality: Cardinality = Cardinality.ONE
    target_type: str | None = None
    foreign_key: str | None = None
    foreign_type: str | None = None
    polymorphic: bool = False
    references_identity: bool = True


# ============================================================================
# Related: result of fetching an association
# ============================================================================


@dataclass(frozen=True)
class RelatedNone:
    """The association is empty."""


@dataclass(frozen=True)
class RelatedOne:
    record: "Record"


@dataclass(frozen=True)
class RelatedMany:
    records: list["Record"] = field(default_factory=list)


@dataclass(frozen=True)
class RelatedUnexpected:
    """The accessor returned something that is neither a record nor a collection."""

    value: Any
    detail: str = ""


Related = RelatedNone | RelatedOne | RelatedMany | RelatedUnexpected


# ============================================================================
# Protocols
# ============================================================================


@runtime_checkable
class Record(Protocol):
    """One persisted object as seen by the dumper and the loader."""

    def type_name(self) -> str:
        """Concrete type name, stable across source and target systems."""
        ...

    def identity(self) -> Any:
        """Source-system primary key."""
        ...

    def is_replication_enabled(self) -> bool:
        """Whether this record's type may be dumped at all."""
        ...

    def allowed_attribute_names(self, extra: Sequence[str] = ()) -> list[str]:
        """Attributes to dump: identity, natural key, configured and ``extra``."""
        ...

    def replicated_associations(self) -> list[str]:
        """Association names configured for traversal on this type."""
        ...

    def declared_associations(self) -> list[Relation]:
        """All associations of this type in declaration order."""
        ...

    def render_attributes(self, extra: Sequence[str] = ()) -> dict:
        """Flat attribute mapping with owning keys encoded as references."""
        ...

    def fetch_related(self, relation_name: str) -> Related:
        """Load an association.

        Raises:
            Exception: Any storage error; the dumper reports and skips it.
        """
        ...

    def set_collection_membership(self, relation_name: str, ids: list[Any]) -> None:
        """Replace the full membership of a many-to-many association."""
        ...


class RecordClass(Protocol):
    """Class-level operations for one record type."""

    type_name: str

    def ancestors(self) -> list[str]:
        """Type names from this type up to, excluding, the persistence root."""
        ...

    def natural_key(self) -> tuple[str, ...]:
        ...

    def preserve_identity(self) -> bool:
        ...

    def find_by_natural_key(self, key_values: dict[str, Any]) -> Any | None:
        """Locate an existing target-side object whose attributes match."""
        ...

    def new(self) -> Any:
        """Return a fresh, unsaved native object."""
        ...

    def upsert(
        self,
        instance: Any,
        attributes: dict[str, Any],
        preserve_identity: bool = False,
        suppress_hooks: bool = True,
    ) -> tuple[Any, Any]:
        """Write ``attributes`` to ``instance`` and persist it.

        With ``suppress_hooks`` the write must not run validation or
        lifecycle callbacks.  The identity field is written only when
        ``preserve_identity`` is set.

        Returns:
            ``(target_id, persisted_object)``.
        """
        ...

    def get(self, target_id: Any) -> Record | None:
        """Fetch a target-side record by its identity."""
        ...


class RecordStore(Protocol):
    """Registry of record types for one datastore."""

    def record_class(self, type_name: str) -> RecordClass:
        """Return the class-level capability for ``type_name``.

        Raises:
            UnknownTypeError: If the type is not registered.
        """
        ...

    def wrap(self, obj: Any) -> Record | None:
        """Wrap a native object as a ``Record``; ``None`` if it is not one."""
        ...


# ============================================================================
# Shared Record behaviour
# ============================================================================


class ReplicableRecord(ABC):
    """Base class providing generic ``Record`` behaviour.

    Subclasses supply raw attribute access and owner-reference lookup; this
    class renders the replicant attribute mapping from them.
    """

    @abstractmethod
    def type_name(self) -> str: ...

    @abstractmethod
    def identity(self) -> Any: ...

    @abstractmethod
    def allowed_attribute_names(self, extra: Sequence[str] = ()) -> list[str]: ...

    @abstractmethod
    def declared_associations(self) -> list[Relation]: ...

    @abstractmethod
    def raw_attributes(self, names: Sequence[str]) -> dict:
        """Return stored scalar values for the subset of ``names`` this type has."""

    @abstractmethod
    def owner_reference(self, relation: Relation) -> tuple[str, Any] | None:
        """``(type, id)`` an owning relation points at, or ``None`` when empty."""

    def replicant_id(self) -> tuple[str, Any]:
        return self.type_name(), self.identity()

    def render_attributes(self, extra: Sequence[str] = ()) -> dict:
        """Allowed scalars plus encoded references for every owning relation.

        A polymorphic relation always renders its type field next to the
        foreign key.  An empty owning relation renders its foreign key as
        ``None``; a polymorphic one also nulls its type field.  Foreign keys
        that do not point at the far side's identity are left as plain values.
        """
        attributes = self.raw_attributes(self.allowed_attribute_names(extra))

        for relation in self.declared_associations():
            if relation.kind is not RelationKind.OWNING or not relation.references_identity:
                continue
            reference = self.owner_reference(relation)
            if reference is not None:
                attributes[relation.foreign_key] = encode_single(*reference)
                if relation.polymorphic:
                    attributes[relation.foreign_type] = reference[0]
            else:
                attributes[relation.foreign_key] = None
                if relation.polymorphic:
                    attributes[relation.foreign_type] = None

        return attributes

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.type_name()}:{self.identity()}>"
