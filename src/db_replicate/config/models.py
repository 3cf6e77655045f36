"""Pydantic models for connection profiles and replication settings."""

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Connection Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from replicate.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"


# ============================================================================
# Replication Models
# ============================================================================


class PolymorphicRelation(BaseModel):
    """Owning relation whose far-side type is stored in a type column."""

    model_config = ConfigDict(frozen=True)

    name: str
    id_field: str
    type_field: str


class TypeConfig(BaseModel):
    """Replication settings declared for one record type.

    Every field defaults to ``None`` meaning "not set at this level"; the
    resolver then keeps walking up the ancestor chain.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool | None = None
    natural_key: tuple[str, ...] | None = None
    attributes: tuple[str, ...] | None = None
    associations: tuple[str, ...] | None = None
    preserve_id: bool | None = None
    polymorphic: tuple[PolymorphicRelation, ...] | None = None


BASELINE = TypeConfig(
    enabled=False,
    natural_key=(),
    attributes=(),
    associations=(),
    preserve_id=False,
    polymorphic=(),
)


class ReplicationConfig(BaseModel):
    """Per-type replication settings keyed by type name."""

    model_config = ConfigDict(frozen=True)

    types: dict[str, TypeConfig] = Field(default_factory=dict)
    baseline: TypeConfig = BASELINE


class DatabaseConfig(BaseModel):
    """Complete configuration from replicate.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    replication: ReplicationConfig = Field(default_factory=ReplicationConfig)


@dataclass(frozen=True)
class ResolvedTypeConfig:
    """Effective settings for a concrete type after inheritance lookup."""

    enabled: bool
    natural_key: tuple[str, ...]
    attributes: tuple[str, ...]
    associations: tuple[str, ...]
    preserve_id: bool
    polymorphic: tuple[PolymorphicRelation, ...]
    primary_key: str = "id"

    def allowed_attributes(self, extra: tuple[str, ...] = ()) -> list[str]:
        """Primary key, natural key, configured and extra attribute names."""
        names = [self.primary_key, *self.natural_key, *self.attributes, *extra]
        return list(dict.fromkeys(names))
