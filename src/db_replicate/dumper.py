"""Dump a record graph as an ordered stream of replicant tuples.

The dumper walks root records and their configured associations depth
first and calls every listener with ``(type, id, attributes, obj)`` for
each record, in an order that guarantees a tuple never references a record
whose tuple has not been emitted yet:

1. owning relations (the records this one points *to*),
2. the record itself,
3. single-valued dependents, then multi-valued dependents,
4. many-to-many collections, each followed by a ``JoinRecord`` snapshot.

Every ``(type, id)`` pair is emitted at most once per dumper.  A record
reached again through a dependent edge of its own owner is written there,
before the dependent that references it; only a cycle made purely of owning
edges is cut short.

Usage:
    from db_replicate.dumper import Dumper
    from db_replicate.transport import PickleWriter

    with open("users.dump", "wb") as out, Dumper(store) as dumper:
        dumper.listen(PickleWriter(out))
        dumper.log_to(verbose=True)
        dumper.dump(user, associations=["profile"])
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, TextIO

from db_replicate.records.base import (
    Cardinality,
    Record,
    RecordStore,
    RelatedMany,
    RelatedNone,
    RelatedOne,
    Relation,
    RelationKind,
)
from db_replicate.records.habtm import JoinRecord

logger = logging.getLogger(__name__)

Listener = Callable[[str, Any, dict, Any], None]


@dataclass(frozen=True)
class DumpOptions:
    """Per-call overrides applied to the root objects of one ``dump()``."""

    associations: tuple[str, ...] = ()
    attributes: tuple[str, ...] = ()


_NO_OPTIONS = DumpOptions()


class Dumper:
    """Depth-first, deduplicating replicant writer.

    Args:
        store: Optional ``RecordStore`` used to wrap native ORM objects
            passed to ``dump()``.  Objects that already implement ``Record``
            are accepted without it.
    """

    def __init__(self, store: RecordStore | None = None) -> None:
        self._store = store
        self._listeners: list[Listener] = []
        self._dumped: set[tuple[str, Any]] = set()
        # Records whose owning relations are being dumped along the current
        # chain of owning edges; reset whenever a non-owning edge is followed.
        self._owning_chain: set[tuple[str, Any]] = set()
        # Root options kept until the root is written, possibly by a re-entry.
        self._root_options: dict[tuple[str, Any], DumpOptions] = {}

    def __enter__(self) -> "Dumper":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.complete()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def listen(self, callback: Listener | None = None):
        """Register a listener; usable as a decorator.

        Listeners run in registration order.
        """
        if callback is None:
            def decorator(fn: Listener) -> Listener:
                self._listeners.append(fn)
                return fn
            return decorator
        self._listeners.append(callback)
        return callback

    def use(self, factory: Callable[..., Listener], *args: Any, **kwargs: Any) -> Listener:
        """Build a listener with ``factory(self, *args)`` and register it."""
        instance = factory(self, *args, **kwargs)
        self.listen(instance)
        return instance

    def log_to(self, out: TextIO | None = None, verbose: bool = False, quiet: bool = False):
        """Register a ``Status`` reporter writing to ``out`` (default stderr)."""
        from db_replicate.status import Status

        return self.use(Status, "dump", out, verbose, quiet)

    def complete(self) -> None:
        """Notify listeners that define ``complete()`` that dumping is done."""
        for listener in self._listeners:
            complete = getattr(listener, "complete", None)
            if callable(complete):
                complete()

    # ------------------------------------------------------------------
    # Dumping
    # ------------------------------------------------------------------

    def dumped(self, key: tuple[str, Any]) -> bool:
        """Whether the ``(type, id)`` pair has already been written."""
        return key in self._dumped

    def dump(
        self,
        *objects: Any,
        associations: Iterable[str] = (),
        attributes: Iterable[str] = (),
    ) -> None:
        """Dump records (or collections of records) in argument order.

        Args:
            *objects: Records, native objects the store can wrap, or
                iterables of either.
            associations: Extra associations to traverse on these roots.
            attributes: Extra attributes to include for these roots.

        Raises:
            TypeError: If a root object is neither a record nor iterable.
        """
        options = DumpOptions(tuple(associations), tuple(attributes))
        for obj in objects:
            for record in self._records(obj):
                if isinstance(record, JoinRecord):
                    self._dump_join(record)
                else:
                    self._dump_record(record, options)

    def write(self, type_name: str, id: Any, attributes: dict, obj: Any) -> None:
        """Emit one tuple to every listener and mark it dumped."""
        self._dumped.add((type_name, id))
        for listener in self._listeners:
            listener(type_name, id, attributes, obj)

    def _records(self, obj: Any) -> Iterable[Any]:
        if isinstance(obj, (JoinRecord, Record)):
            return [obj]
        if self._store is not None:
            record = self._store.wrap(obj)
            if record is not None:
                return [record]
        if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes, dict)):
            return [r for item in obj for r in self._records(item)]
        raise TypeError(f"Cannot dump {type(obj).__name__}: not a replicable record")

    def _dump_record(self, record: Record, options: DumpOptions) -> None:
        if not record.is_replication_enabled():
            logger.debug(f"skipping {record.type_name()}:{record.identity()}: replication disabled")
            return

        key = (record.type_name(), record.identity())
        if key in self._dumped or key in self._owning_chain:
            return

        options = self._root_options.get(key, options)
        included = list(dict.fromkeys([*record.replicated_associations(), *options.associations]))
        relations = [r for r in record.declared_associations() if r.name in included]

        if options is not _NO_OPTIONS:
            self._root_options[key] = options
        self._owning_chain.add(key)
        try:
            for relation in relations:
                if relation.kind is RelationKind.OWNING:
                    self._dump_relation(record, relation)
        finally:
            self._owning_chain.discard(key)
            self._root_options.pop(key, None)

        # Reached again through a dependent edge of an owner and written there.
        if key in self._dumped:
            return

        self.write(key[0], key[1], record.render_attributes(options.attributes), record)

        for relation in relations:
            if relation.kind is RelationKind.DEPENDENT and relation.cardinality is Cardinality.ONE:
                self._dump_relation(record, relation)
        for relation in relations:
            if relation.kind is RelationKind.DEPENDENT and relation.cardinality is Cardinality.MANY:
                self._dump_relation(record, relation)
        for relation in relations:
            if relation.kind is RelationKind.MANY_TO_MANY:
                self._dump_relation(record, relation)

    def _dump_relation(self, record: Record, relation: Relation) -> None:
        """Dump one association; traversal failures skip the relation only."""
        label = f"{record.type_name()}#{relation.name} {relation.kind.value}"

        try:
            related = record.fetch_related(relation.name)
        except Exception as e:
            logger.warning(f"warn: {label} association raised {type(e).__name__}: {e}. skipping.")
            return

        if isinstance(related, RelatedNone):
            return
        if isinstance(related, RelatedOne):
            members = [related.record]
        elif isinstance(related, RelatedMany):
            members = list(related.records)
        else:
            logger.warning(
                f"warn: {label} association unexpectedly returned a "
                f"{type(related.value).__name__}. skipping."
            )
            return

        if relation.kind is RelationKind.OWNING:
            for member in members:
                self._dump_record(member, _NO_OPTIONS)
        else:
            chain, self._owning_chain = self._owning_chain, set()
            try:
                for member in members:
                    self._dump_record(member, _NO_OPTIONS)
            finally:
                self._owning_chain = chain

        if relation.kind is RelationKind.MANY_TO_MANY:
            present = []
            for member in members:
                if (member.type_name(), member.identity()) in self._dumped:
                    present.append(member)
                else:
                    logger.warning(
                        f"warn: {label} member {member.type_name()}:{member.identity()} "
                        f"was not dumped; omitting from join"
                    )
            self._dump_join(JoinRecord.capture(record, relation, present))

    def _dump_join(self, join: JoinRecord) -> None:
        if self.dumped((join.type_name(), join.identity())):
            return
        self.write(join.type_name(), join.identity(), join.attributes(), join)
