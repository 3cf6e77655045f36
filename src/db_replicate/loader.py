"""Load replicant tuples into a target datastore.

The loader reads ``(type, id, attributes)`` tuples and creates or updates
records through a ``RecordStore``.  Tuples are expected in dump order, so a
record referenced by id always precedes the records referencing it.  The
loader keeps a ``KeyMap`` from source ids to target ids and uses it to
rewrite every symbolic reference before the record is written.

No single tuple can abort the stream: unresolved references are nulled,
persistence failures are logged and counted, and loading continues.

Usage:
    from db_replicate.loader import Loader

    with open("users.dump", "rb") as f, Loader(store) as loader:
        loader.log_to(verbose=True)
        loader.read(f)

    loader.summary()  # {"User": {"loaded": 3, "failed": 0}, ...}
"""

import logging
import os
from collections import Counter
from typing import IO, Any, Callable, Iterable, TextIO

from db_replicate.codec import RefKind, is_reference
from db_replicate.keymap import KeyMap
from db_replicate.records.base import RecordStore
from db_replicate.records.habtm import JOIN_TYPE, JoinRecord
from db_replicate.transport import open_reader

logger = logging.getLogger(__name__)

Filter = Callable[[str, Any, dict, Any], None]

ENV_VAR = "DB_REPLICATE_ENV"


class ProductionGuardError(RuntimeError):
    """Raised when a loader is created in a production environment."""

    pass


class Loader:
    """Streaming replicant loader.

    Args:
        store: Target ``RecordStore``.
        allow_production: Permit loading when ``DB_REPLICATE_ENV`` is
            ``production``.
        suppress_hooks: Write records without validation or lifecycle
            callbacks (default).  Disable only for stores that need their
            normal save path.

    Raises:
        ProductionGuardError: If running in production without
            ``allow_production``.
    """

    def __init__(
        self,
        store: RecordStore,
        allow_production: bool = False,
        suppress_hooks: bool = True,
    ) -> None:
        if os.environ.get(ENV_VAR) == "production" and not allow_production:
            raise ProductionGuardError(
                f"Refusing to load replicants with {ENV_VAR}=production. "
                f"Pass allow_production=True to override."
            )
        self._store = store
        self._suppress_hooks = suppress_hooks
        self._filters: list[Filter] = []
        self.keymap = KeyMap()
        self.stats: Counter[str] = Counter()
        self.failures: Counter[str] = Counter()

    def __enter__(self) -> "Loader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.complete()

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def filter(self, callback: Filter | None = None):
        """Register a filter called with ``(type, id, attributes, obj)``.

        Filters run in reverse registration order: filters registered later
        see each object first.  Usable as a decorator.
        """
        if callback is None:
            def decorator(fn: Filter) -> Filter:
                self._filters.insert(0, fn)
                return fn
            return decorator
        self._filters.insert(0, callback)
        return callback

    listen = filter

    def use(self, factory: Callable[..., Filter], *args: Any, **kwargs: Any) -> Filter:
        """Build a filter with ``factory(self, *args)`` and register it."""
        instance = factory(self, *args, **kwargs)
        self.filter(instance)
        return instance

    def log_to(self, out: TextIO | None = None, verbose: bool = False, quiet: bool = False):
        """Register a ``Status`` reporter writing to ``out`` (default stderr)."""
        from db_replicate.status import Status

        return self.use(Status, "load", out, verbose, quiet)

    def complete(self) -> None:
        """Notify filters that define ``complete()`` that loading is done."""
        for f in self._filters:
            complete = getattr(f, "complete", None)
            if callable(complete):
                complete()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def feed(self, type_name: str, id: Any, attributes: dict) -> Any:
        """Load one tuple and run it through the filter chain.

        Returns:
            The persisted target object, or ``None`` when loading failed.
        """
        obj = self.load(type_name, id, attributes)
        self.stats[type_name] += 1
        for f in self._filters:
            f(type_name, id, attributes, obj)
        return obj

    def read(self, stream: IO | Iterable[tuple], format: str = "pickle") -> int:
        """Feed every tuple from a transport stream (or an iterable of tuples).

        Objects with a ``read`` method are decoded with ``format``; anything
        else is iterated as ``(type, id, attributes)`` tuples.

        Returns:
            Number of tuples fed.
        """
        tuples = open_reader(stream, format) if hasattr(stream, "read") else stream
        count = 0
        for type_name, id, attributes in tuples:
            self.feed(type_name, id, attributes)
            count += 1
        return count

    def load(self, type_name: str, id: Any, attributes: dict) -> Any:
        """Translate references, upsert the record and register its id.

        Returns:
            The persisted target object, or ``None`` on failure.
        """
        unresolved = self.translate_ids(attributes)

        try:
            if type_name == JOIN_TYPE:
                target_id, instance = JoinRecord.load_replicant(self._store, attributes)
                aliases: list[str] = []
            else:
                record_class = self._store.record_class(type_name)
                natural_key = record_class.natural_key()
                existing = None
                missing = unresolved.intersection(natural_key)
                if missing:
                    logger.error(
                        f"error: {type_name} {id} natural key {', '.join(sorted(missing))} "
                        f"unresolved; creating a new record"
                    )
                elif natural_key:
                    existing = record_class.find_by_natural_key(
                        {name: attributes.get(name) for name in natural_key}
                    )
                target_id, instance = record_class.upsert(
                    existing if existing is not None else record_class.new(),
                    attributes,
                    preserve_identity=record_class.preserve_identity(),
                    suppress_hooks=self._suppress_hooks,
                )
                aliases = record_class.ancestors()[1:]
        except Exception as e:
            logger.error(f"error: loading {type_name} {id} {type(e).__name__} {e}")
            self.failures[type_name] += 1
            return None

        self.register_id(type_name, id, target_id, aliases)
        return instance

    def translate_ids(self, attributes: dict) -> set[str]:
        """Rewrite symbolic references in ``attributes`` to target ids in place.

        Unresolved single references become ``None``; unresolved list
        elements are dropped.  Each miss is logged as an error.

        Returns:
            Names of attributes whose single reference did not resolve.
        """
        unresolved: set[str] = set()
        for key, value in attributes.items():
            kind = is_reference(value)
            if kind is RefKind.SINGLE:
                ref_type, remote_id = value["type"], value["id"]
                local_id = self.keymap.get(ref_type, remote_id)
                if local_id is None:
                    logger.error(f"error: {ref_type}:{remote_id} missing from keymap")
                    unresolved.add(key)
                attributes[key] = local_id
            elif kind is RefKind.LIST:
                ref_type = value["type"]
                local_ids = []
                for remote_id in value["ids"]:
                    local_id = self.keymap.get(ref_type, remote_id)
                    if local_id is None:
                        logger.error(f"error: {ref_type}:{remote_id} missing from keymap")
                    else:
                        local_ids.append(local_id)
                attributes[key] = local_ids
        return unresolved

    def register_id(self, type_name: str, remote_id: Any, local_id: Any, aliases: Iterable[str] = ()) -> None:
        """Record the id mapping under the type and its ancestor aliases."""
        self.keymap.put(type_name, remote_id, local_id, aliases)

    def summary(self) -> dict[str, dict[str, int]]:
        """Per-type counts of tuples loaded and failed."""
        return {
            type_name: {
                "loaded": count - self.failures[type_name],
                "failed": self.failures[type_name],
            }
            for type_name, count in self.stats.items()
        }
