"""COLLECT stage: collapse desired entities into a working set.

Duplicate natural keys collapse to one entity. The last occurrence supplies
the desired state while the first occurrence fixes the batch position, so the
result is deterministic for a given input order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from keyrecon.domain.model import Entity


@dataclass(slots=True)
class WorkingSet:
    entity_type: str
    entities: dict[str, Entity] = field(default_factory=dict["str", "Entity"])
    positions: tuple[str, ...] = ()

    @property
    def natural_keys(self) -> tuple[str, ...]:
        return tuple(self.entities)

    @property
    def collapsed(self) -> int:
        """Number of inputs folded into an earlier entity with the same key."""

        return len(self.positions) - len(self.entities)

    def __len__(self) -> int:
        return len(self.entities)

    def entity_for(self, natural_key: str) -> Entity:
        return self.entities[natural_key]


def collect_working_set(entity_type: str, desired: Iterable[Entity]) -> WorkingSet:
    entities: dict[str, Entity] = {}
    positions: list[str] = []
    for entity in desired:
        entities[entity.natural_key] = entity
        positions.append(entity.natural_key)
    return WorkingSet(entity_type=entity_type, entities=entities, positions=tuple(positions))
