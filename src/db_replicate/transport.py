"""Replicant tuple transports.

Two formats are supported:

- ``pickle`` (default): lossless, preserves datetimes, decimals and any
  other picklable scalar.  Streams end with an explicit end marker so a
  truncated file is detected instead of silently accepted.  Only read
  dumps you produced yourself -- unpickling runs arbitrary code.
- ``jsonl``: one JSON array ``[type, id, attributes]`` per line.  Portable
  and human-readable, but non-JSON scalars are converted (datetimes become
  ISO strings) and come back as strings.

Writers are dumper listeners; readers are lazy, finite, non-restartable
iterators consumed by ordinary iteration.

Usage:
    from db_replicate.transport import PickleWriter, read_pickle

    with open("out.dump", "wb") as f:
        dumper.listen(PickleWriter(f))
        dumper.dump(user)
        dumper.complete()

    with open("out.dump", "rb") as f:
        for type_name, id, attrs in read_pickle(f):
            ...
"""

import json
import pickle
from typing import IO, Any, Iterator

from pydantic_core import to_jsonable_python

END_MARKER = "__replicant_end__"

FORMATS = ("pickle", "jsonl")


class TransportError(ValueError):
    """Raised for truncated or malformed replicant streams."""

    pass


class PickleWriter:
    """Dumper listener appending pickled ``(type, id, attributes)`` tuples."""

    def __init__(self, stream: IO[bytes]) -> None:
        self._stream = stream
        self._closed = False

    def __call__(self, type_name: str, id: Any, attributes: dict, obj: Any = None) -> None:
        pickle.dump((type_name, id, attributes), self._stream, protocol=pickle.HIGHEST_PROTOCOL)

    def complete(self) -> None:
        """Write the end marker (once) and flush."""
        if self._closed:
            return
        pickle.dump(END_MARKER, self._stream, protocol=pickle.HIGHEST_PROTOCOL)
        self._stream.flush()
        self._closed = True


def read_pickle(stream: IO[bytes]) -> Iterator[tuple[str, Any, dict]]:
    """Yield tuples from a pickle stream until the end marker.

    Raises:
        TransportError: If the stream ends without an end marker or holds
            something other than replicant tuples.
    """
    unpickler = pickle.Unpickler(stream)
    while True:
        try:
            item = unpickler.load()
        except EOFError as e:
            raise TransportError("Replicant stream truncated: missing end marker") from e
        except pickle.UnpicklingError as e:
            raise TransportError(f"Corrupt replicant stream: {e}") from e
        if item == END_MARKER:
            return
        yield _check_tuple(item)


class JsonLinesWriter:
    """Dumper listener writing one JSON array per tuple."""

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream

    def __call__(self, type_name: str, id: Any, attributes: dict, obj: Any = None) -> None:
        line = json.dumps(to_jsonable_python([type_name, id, attributes]))
        self._stream.write(line + "\n")

    def complete(self) -> None:
        self._stream.flush()


def read_json_lines(stream: IO[str]) -> Iterator[tuple[str, Any, dict]]:
    """Yield tuples from a JSON lines stream until EOF; blank lines are skipped."""
    for lineno, line in enumerate(stream, 1):
        if not line.strip():
            continue
        try:
            item = json.loads(line)
        except json.JSONDecodeError as e:
            raise TransportError(f"Invalid JSON on line {lineno}: {e}") from e
        yield _check_tuple(item)


def open_reader(stream: IO, format: str = "pickle") -> Iterator[tuple[str, Any, dict]]:
    """Return the tuple iterator for ``format``."""
    if format == "pickle":
        return read_pickle(stream)
    if format == "jsonl":
        return read_json_lines(stream)
    raise ValueError(f"Unknown replicant format '{format}'. Choose from: {', '.join(FORMATS)}")


def open_writer(stream: IO, format: str = "pickle") -> PickleWriter | JsonLinesWriter:
    """Return the listener that writes ``format`` to ``stream``."""
    if format == "pickle":
        return PickleWriter(stream)
    if format == "jsonl":
        return JsonLinesWriter(stream)
    raise ValueError(f"Unknown replicant format '{format}'. Choose from: {', '.join(FORMATS)}")


def _check_tuple(item: Any) -> tuple[str, Any, dict]:
    if (
        not isinstance(item, (list, tuple))
        or len(item) != 3
        or not isinstance(item[0], str)
        or not isinstance(item[2], dict)
    ):
        raise TransportError(f"Not a replicant tuple: {item!r}")
    return item[0], item[1], item[2]
