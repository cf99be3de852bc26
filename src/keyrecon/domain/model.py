"""Desired-state values handled by reconciliation.

Entities are immutable: resolution attaches a surrogate id and partitioning
merges attributes by building new values, never by assigning fields.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType


def _frozen_attributes(attributes: Mapping[str, object]) -> Mapping[str, object]:
    return MappingProxyType(dict(attributes))


@dataclass(frozen=True, slots=True, kw_only=True)
class Entity:
    """One record of desired state, identified by its natural key.

    ``surrogate_id`` stays ``None`` until the store has persisted the record;
    only store clients assign it.
    """

    natural_key: str
    surrogate_id: str | None = None
    attributes: Mapping[str, object] = field(default_factory=dict["str", "object"])

    def __post_init__(self) -> None:
        if not self.natural_key or not self.natural_key.strip():
            raise ValueError("Entity natural key must be a non-empty string")
        object.__setattr__(self, "attributes", _frozen_attributes(self.attributes))

    def __hash__(self) -> int:
        return hash((self.natural_key, self.surrogate_id))

    @property
    def is_persisted(self) -> bool:
        return self.surrogate_id is not None

    def with_surrogate_id(self, surrogate_id: str) -> Entity:
        return replace(self, surrogate_id=surrogate_id)

    def merged(self, attributes: Mapping[str, object]) -> Entity:
        """Return a copy whose attributes are overlaid with ``attributes``."""

        return replace(self, attributes={**self.attributes, **attributes})

    def attribute(self, name: str) -> object | None:
        return self.attributes.get(name)
