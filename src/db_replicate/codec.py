"""Symbolic cross-record references embedded in attribute values.

A dumped attribute value may point at another record instead of carrying a
plain scalar.  The loader rewrites these values to the target store's ids
once the referenced record has been loaded.  Pure data transformation --
no I/O, no state.

References are plain dicts so they survive every transport (pickle and
JSON lines alike):

    {"__replicant__": "id",  "type": "User",  "id": 7}
    {"__replicant__": "ids", "type": "Label", "ids": [3, 4, 5]}

Usage:
    from db_replicate.codec import encode_single, encode_list, decode, is_reference

    value = encode_single("User", 7)
    is_reference(value)    # RefKind.SINGLE
    decode(value)          # ("User", 7)
"""

from enum import Enum
from typing import Any, Iterable

REF_TAG = "__replicant__"


class RefKind(str, Enum):
    """Shape of a symbolic reference."""

    SINGLE = "id"
    LIST = "ids"


def encode_single(type_name: str, source_id: Any) -> dict:
    """Encode a reference to one record identified by ``(type, source_id)``."""
    return {REF_TAG: RefKind.SINGLE.value, "type": type_name, "id": source_id}


def encode_list(type_name: str, source_ids: Iterable[Any]) -> dict:
    """Encode a reference to a list of records of the same type."""
    return {REF_TAG: RefKind.LIST.value, "type": type_name, "ids": list(source_ids)}


def is_reference(value: Any) -> RefKind | None:
    """Return the reference kind of ``value``, or ``None`` for plain values."""
    if not isinstance(value, dict) or len(value) != 3:
        return None
    tag = value.get(REF_TAG)
    if tag == RefKind.SINGLE.value and "id" in value and "type" in value:
        return RefKind.SINGLE
    if tag == RefKind.LIST.value and isinstance(value.get("ids"), list) and "type" in value:
        return RefKind.LIST
    return None


def decode(value: Any) -> tuple[str, Any]:
    """Decode a reference into ``(type, id)`` or ``(type, [ids])``.

    Raises:
        ValueError: If ``value`` is not a symbolic reference.
    """
    kind = is_reference(value)
    if kind is RefKind.SINGLE:
        return value["type"], value["id"]
    if kind is RefKind.LIST:
        return value["type"], list(value["ids"])
    raise ValueError(f"Not a replicant reference: {value!r}")
