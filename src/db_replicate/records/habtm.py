"""Many-to-many membership snapshots.

A ``JoinRecord`` is not a persisted type.  It is written after the owner and
every member of the far-side collection, and carries enough to restore the
association on load:

    {
        "id":         <reference to the owner>,
        "class":      "User",
        "ref_class":  "Domain",
        "ref_name":   "domains",
        "collection": <reference list to the members>,
    }

Loading replaces the owner's full membership with the resolved ids.
"""

from typing import Any

from db_replicate.codec import encode_list, encode_single
from db_replicate.records.base import Record, RecordStore, Relation

JOIN_TYPE = "db_replicate.JoinRecord"


class JoinRecord:
    """Snapshot of one many-to-many association of one owner.

    Args:
        owner: The record declaring the association.
        relation_name: Association name on the owner.
        target_type: Far-side type name.
        member_ids: Far-side identities as of the snapshot.
    """

    def __init__(
        self,
        owner: Record,
        relation_name: str,
        target_type: str | None,
        member_ids: list[Any],
    ) -> None:
        self.owner = owner
        self.relation_name = relation_name
        self.target_type = target_type
        self.member_ids = list(member_ids)

    @classmethod
    def capture(cls, owner: Record, relation: Relation, members: list[Record]) -> "JoinRecord":
        return cls(owner, relation.name, relation.target_type, [m.identity() for m in members])

    def type_name(self) -> str:
        return JOIN_TYPE

    def identity(self) -> str:
        return f"{self.owner.type_name()}:{self.relation_name}:{self.owner.identity()}"

    def attributes(self) -> dict:
        owner_type = self.owner.type_name()
        return {
            "id": encode_single(owner_type, self.owner.identity()),
            "class": owner_type,
            "ref_class": self.target_type,
            "ref_name": self.relation_name,
            "collection": encode_list(self.target_type, self.member_ids),
        }

    @classmethod
    def load_replicant(cls, store: RecordStore, attributes: dict) -> tuple[str, "JoinRecord"]:
        """Restore membership from translated join attributes.

        ``attributes["id"]`` and ``attributes["collection"]`` must already
        hold target-side ids.

        Raises:
            LookupError: If the owner cannot be found on the target side.
        """
        owner_type = attributes["class"]
        owner_id = attributes["id"]
        if owner_id is None:
            raise LookupError(f"{owner_type} owner of {attributes['ref_name']} was not loaded")

        owner = store.record_class(owner_type).get(owner_id)
        if owner is None:
            raise LookupError(f"{owner_type}:{owner_id} not found")

        ids = [i for i in attributes["collection"] if i is not None]
        owner.set_collection_membership(attributes["ref_name"], ids)

        join = cls(owner, attributes["ref_name"], attributes["ref_class"], ids)
        return join.identity(), join

    def __repr__(self) -> str:
        return f"<JoinRecord {self.identity()} {self.member_ids!r}>"
