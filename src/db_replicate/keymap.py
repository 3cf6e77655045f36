"""Source-to-target identity translation table.

The loader records every ``(type, source_id) -> target_id`` pair it
produces so later tuples can have their references rewritten.  Each entry
is also written under every ancestor type name, so a reference typed at a
base class (``User``) resolves when the dumped record was a subtype
(``Admin``).

Entries are write-once for the lifetime of a load session.
"""

import logging
from typing import Any, Iterable

logger = logging.getLogger(__name__)

_MISSING = object()


class KeyMap:
    """Session-scoped ``(type, source_id) -> target_id`` table.

    Not thread-safe; owned by exactly one ``Loader``.

    Example:
        keymap = KeyMap()
        keymap.put("Admin", 7, 42, aliases=["User"])
        keymap.get("User", 7)    # 42
        keymap.get("User", 8)    # None
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, Any], Any] = {}

    def put(
        self,
        type_name: str,
        source_id: Any,
        target_id: Any,
        aliases: Iterable[str] = (),
    ) -> None:
        """Register ``target_id`` for ``source_id`` under the type and its aliases."""
        for name in (type_name, *aliases):
            key = (name, source_id)
            current = self._entries.get(key, _MISSING)
            if current is _MISSING:
                self._entries[key] = target_id
            elif current != target_id:
                logger.debug(
                    f"keymap: {name}:{source_id} already maps to {current!r}; "
                    f"ignoring {target_id!r}"
                )

    def get(self, type_name: str, source_id: Any) -> Any | None:
        """Return the target id, or ``None`` when the pair was never loaded."""
        return self._entries.get((type_name, source_id))

    def __contains__(self, key: tuple[str, Any]) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
