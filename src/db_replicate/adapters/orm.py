"""Record capability over SQLAlchemy ORM mappings.

Provides ``SQLAlchemyStore``, a ``RecordStore`` built from a declarative
base, plus the ``RecordClass`` and ``Record`` implementations it hands out.

Relationship directions map to replication relation kinds:

- ``MANYTOONE``  -> owning, one
- ``ONETOMANY``  -> dependent, one when ``uselist=False`` else many
- ``MANYTOMANY`` -> many-to-many

Typed ("polymorphic") foreign keys have no ORM counterpart and are declared
with ``TypeConfig.polymorphic``.  Single-table inheritance supplies the
ancestor chain for config inheritance and key-map aliases; joined-table
inheritance is not supported for writes.

Writes with ``suppress_hooks=True`` go through Core ``insert``/``update``
statements inside a SAVEPOINT, so ``@validates`` validators and mapper
events never run and a failed row does not poison the session.

Usage:
    from sqlalchemy.orm import Session
    from db_replicate.adapters.orm import SQLAlchemyStore

    with Session(engine) as session:
        store = SQLAlchemyStore(session, Base, config.replication)
        user = store.wrap(session.get(User, 7))
"""

from typing import Any, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper, RelationshipDirection, Session

from db_replicate.config.models import ReplicationConfig, ResolvedTypeConfig
from db_replicate.config.resolver import ConfigResolver
from db_replicate.records.base import (
    Cardinality,
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


class SQLAlchemyStore:
    """``RecordStore`` over every class mapped by a declarative base.

    Type names are mapped class names, so they must be unique within
    ``base``.

    Args:
        session: Session used for all reads and writes.  The caller owns
            the outer transaction (commit or roll back when done).
        base: Declarative base (or anything with a ``registry``).
        config: Per-type replication settings.
    """

    def __init__(
        self,
        session: Session,
        base: Any,
        config: ReplicationConfig | None = None,
    ) -> None:
        self.session = session
        self.resolver = ConfigResolver(config)
        registry = base.registry
        registry.configure()

        self._by_name: dict[str, SQLAlchemyRecordClass] = {}
        self._by_class: dict[type, SQLAlchemyRecordClass] = {}
        for mapper in registry.mappers:
            if len(mapper.primary_key) > 1:
                raise ValueError(
                    f"{mapper.class_.__name__} has a composite primary key; "
                    f"only single-column identities can be replicated"
                )
            record_class = SQLAlchemyRecordClass(self, mapper)
            self._by_name[record_class.type_name] = record_class
            self._by_class[mapper.class_] = record_class

    def type_names(self) -> list[str]:
        return sorted(self._by_name)

    def record_class(self, type_name: str) -> "SQLAlchemyRecordClass":
        try:
            return self._by_name[type_name]
        except KeyError:
            raise UnknownTypeError(f"Unknown record type '{type_name}'") from None

    def class_for(self, cls: type) -> "SQLAlchemyRecordClass | None":
        for klass in cls.__mro__:
            if klass in self._by_class:
                return self._by_class[klass]
        return None

    def type_name_for(self, mapper: Mapper) -> str:
        record_class = self._by_class.get(mapper.class_)
        return record_class.type_name if record_class else mapper.class_.__name__

    def wrap(self, obj: Any) -> "SQLAlchemyRecord | None":
        if obj is None:
            return None
        record_class = self.class_for(type(obj))
        return record_class.wrap(obj) if record_class else None

    def to_related(self, value: Any) -> Related:
        """Classify an association accessor's return value."""
        if value is None:
            return RelatedNone()
        record = self.wrap(value)
        if record is not None:
            return RelatedOne(record)
        if isinstance(value, (str, bytes, dict)) or not hasattr(value, "__iter__"):
            return RelatedUnexpected(value, f"{type(value).__name__} is not a mapped object")
        records = [self.wrap(item) for item in value]
        if any(r is None for r in records):
            return RelatedUnexpected(value, "collection holds unmapped objects")
        return RelatedMany(records)


class SQLAlchemyRecordClass:
    """Class-level capability for one mapped class."""

    def __init__(self, store: SQLAlchemyStore, mapper: Mapper) -> None:
        self.store = store
        self.mapper = mapper
        self.class_ = mapper.class_
        self.type_name = mapper.class_.__name__
        self.primary_key = mapper.get_property_by_column(mapper.primary_key[0]).key
        self._relations: list[Relation] | None = None

    def __repr__(self) -> str:
        return f"<SQLAlchemyRecordClass {self.type_name}>"

    @property
    def config(self) -> ResolvedTypeConfig:
        return self.store.resolver.resolve(self.ancestors(), self.primary_key)

    def ancestors(self) -> list[str]:
        return [self.store.type_name_for(m) for m in self.mapper.iterate_to_root()]

    def natural_key(self) -> tuple[str, ...]:
        return self.config.natural_key

    def preserve_identity(self) -> bool:
        return self.config.preserve_id

    def relations(self) -> list[Relation]:
        """Declared relationships followed by configured polymorphic relations."""
        if self._relations is not None:
            return self._relations

        relations: list[Relation] = []
        for prop in self.mapper.relationships:
            target = self.store.type_name_for(prop.mapper)
            if prop.direction is RelationshipDirection.MANYTOONE:
                local_col, remote_col = prop.local_remote_pairs[0]
                relations.append(Relation(
                    name=prop.key,
                    kind=RelationKind.OWNING,
                    cardinality=Cardinality.ONE,
                    target_type=target,
                    foreign_key=self.mapper.get_property_by_column(local_col).key,
                    references_identity=bool(remote_col.primary_key),
                ))
            elif prop.direction is RelationshipDirection.MANYTOMANY:
                relations.append(Relation(
                    name=prop.key,
                    kind=RelationKind.MANY_TO_MANY,
                    cardinality=Cardinality.MANY,
                    target_type=target,
                ))
            else:
                relations.append(Relation(
                    name=prop.key,
                    kind=RelationKind.DEPENDENT,
                    cardinality=Cardinality.MANY if prop.uselist else Cardinality.ONE,
                    target_type=target,
                ))

        declared = {r.name for r in relations}
        for poly in self.config.polymorphic:
            if poly.name in declared:
                continue
            relations.append(Relation(
                name=poly.name,
                kind=RelationKind.OWNING,
                cardinality=Cardinality.ONE,
                foreign_key=poly.id_field,
                foreign_type=poly.type_field,
                polymorphic=True,
            ))

        self._relations = relations
        return relations

    def wrap(self, obj: Any) -> "SQLAlchemyRecord":
        return SQLAlchemyRecord(self, obj)

    def get(self, target_id: Any) -> "SQLAlchemyRecord | None":
        obj = self.store.session.get(self.class_, target_id)
        return self.store.wrap(obj)

    def find_by_natural_key(self, key_values: dict[str, Any]) -> Any | None:
        stmt = select(self.class_).filter_by(**key_values).limit(1)
        return self.store.session.scalars(stmt).first()

    def new(self) -> Any:
        # Bypasses __init__ and init events, like ORM row loading does
        return self.mapper.class_manager.new_instance()

    def upsert(
        self,
        instance: Any,
        attributes: dict[str, Any],
        preserve_identity: bool = False,
        suppress_hooks: bool = True,
    ) -> tuple[Any, Any]:
        """Write ``attributes`` and persist; see ``RecordClass.upsert``."""
        identity = sa_inspect(instance).identity
        existing_id = identity[0] if identity else None

        if suppress_hooks:
            target_id = self._write_core(existing_id, attributes, preserve_identity)
        else:
            target_id = self._write_orm(instance, attributes, preserve_identity)

        obj = self.store.session.get(self.class_, target_id, populate_existing=True)
        return target_id, obj

    def _column_values(self, attributes: dict[str, Any], preserve_identity: bool) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for key, value in attributes.items():
            if key == self.primary_key and not preserve_identity:
                continue
            if key not in self.mapper.column_attrs:
                raise KeyError(f"{self.type_name} has no column attribute '{key}'")
            values[self.mapper.column_attrs[key].columns[0].key] = value

        discriminator = self.mapper.polymorphic_on
        if discriminator is not None and self.mapper.polymorphic_identity is not None:
            values.setdefault(discriminator.key, self.mapper.polymorphic_identity)
        return values

    def _write_core(self, existing_id: Any, attributes: dict[str, Any], preserve_identity: bool) -> Any:
        mapper = self.mapper
        if mapper.inherits is not None and mapper.local_table is not mapper.inherits.local_table:
            raise NotImplementedError(
                f"{self.type_name} uses joined-table inheritance, which raw writes do not support"
            )

        table = mapper.local_table
        pk_column = mapper.primary_key[0]
        values = self._column_values(attributes, preserve_identity)
        session = self.store.session

        with session.begin_nested():
            if existing_id is None:
                result = session.execute(insert(table).values(**values))
                return result.inserted_primary_key[0]
            if values:
                session.execute(update(table).where(pk_column == existing_id).values(**values))
            return values.get(pk_column.key, existing_id)

    def _write_orm(self, instance: Any, attributes: dict[str, Any], preserve_identity: bool) -> Any:
        for key, value in attributes.items():
            if key == self.primary_key and not preserve_identity:
                continue
            setattr(instance, key, value)

        session = self.store.session
        with session.begin_nested():
            session.add(instance)
            session.flush()
        return sa_inspect(instance).identity[0]


class SQLAlchemyRecord(ReplicableRecord):
    """One mapped object exposed through the ``Record`` capability."""

    def __init__(self, record_class: SQLAlchemyRecordClass, obj: Any) -> None:
        self.record_class = record_class
        self.obj = obj

    def type_name(self) -> str:
        return self.record_class.type_name

    def identity(self) -> Any:
        return getattr(self.obj, self.record_class.primary_key)

    def is_replication_enabled(self) -> bool:
        return self.record_class.config.enabled

    def allowed_attribute_names(self, extra: Sequence[str] = ()) -> list[str]:
        return self.record_class.config.allowed_attributes(tuple(extra))

    def replicated_associations(self) -> list[str]:
        return list(self.record_class.config.associations)

    def declared_associations(self) -> list[Relation]:
        return self.record_class.relations()

    def raw_attributes(self, names: Sequence[str]) -> dict:
        column_attrs = self.record_class.mapper.column_attrs
        return {name: getattr(self.obj, name) for name in names if name in column_attrs}

    def owner_reference(self, relation: Relation) -> tuple[str, Any] | None:
        remote_id = getattr(self.obj, relation.foreign_key)
        if remote_id is None:
            return None
        if relation.polymorphic:
            type_name = getattr(self.obj, relation.foreign_type)
            return (type_name, remote_id) if type_name else None
        return relation.target_type, remote_id

    def fetch_related(self, relation_name: str) -> Related:
        relation = self._relation(relation_name)
        if relation.polymorphic:
            reference = self.owner_reference(relation)
            if reference is None:
                return RelatedNone()
            store = self.record_class.store
            owner = store.record_class(reference[0]).get(reference[1])
            return RelatedOne(owner) if owner is not None else RelatedNone()

        return self.record_class.store.to_related(getattr(self.obj, relation_name))

    def set_collection_membership(self, relation_name: str, ids: list[Any]) -> None:
        """Replace the association rows of a many-to-many relationship."""
        mapper = self.record_class.mapper
        prop = mapper.relationships[relation_name]
        if prop.secondary is None:
            raise ValueError(f"{self.type_name()}.{relation_name} is not a many-to-many relationship")

        (parent_col, owner_fk), = prop.synchronize_pairs
        (_, member_fk), = prop.secondary_synchronize_pairs
        owner_value = getattr(self.obj, mapper.get_property_by_column(parent_col).key)

        session = self.record_class.store.session
        with session.begin_nested():
            session.execute(delete(prop.secondary).where(owner_fk == owner_value))
            rows = [{owner_fk.key: owner_value, member_fk.key: i} for i in dict.fromkeys(ids)]
            if rows:
                session.execute(insert(prop.secondary), rows)
        session.expire(self.obj, [relation_name])

    def _relation(self, name: str) -> Relation:
        for relation in self.declared_associations():
            if relation.name == name:
                return relation
        raise KeyError(f"{self.type_name()} has no association '{name}'")
