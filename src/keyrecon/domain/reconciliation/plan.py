"""PARTITION stage: split a resolved working set into updates and creates.

The plan is the contract between read-only resolution and persistence. It is
also what ``ReconciliationDriver.plan`` hands back for dry runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from keyrecon.domain.model import Entity

if TYPE_CHECKING:
    from collections.abc import Mapping

    from keyrecon.domain.errors import AmbiguousMatch

    from .collect import WorkingSet
    from .resolve import KeyResolution


@dataclass(slots=True)
class ReconciliationPlan:
    """Write instructions for one pass, in working-set order."""

    entity_type: str
    updates: list[Entity] = field(default_factory=list["Entity"])
    creates: list[Entity] = field(default_factory=list["Entity"])
    ambiguities: dict[str, AmbiguousMatch] = field(default_factory=dict["str", "AmbiguousMatch"])

    @property
    def is_empty(self) -> bool:
        return not self.updates and not self.creates

    @property
    def update_keys(self) -> frozenset[str]:
        return frozenset(entity.natural_key for entity in self.updates)

    def entity_for(self, natural_key: str) -> Entity | None:
        for entity in (*self.updates, *self.creates):
            if entity.natural_key == natural_key:
                return entity
        return None

    def warnings_for(self, natural_key: str) -> tuple[AmbiguousMatch, ...]:
        ambiguity = self.ambiguities.get(natural_key)
        return (ambiguity,) if ambiguity is not None else ()


def merge_desired_state(desired: Entity, surrogate_id: str) -> Entity:
    """Build the update value: the resolved identity plus the desired attributes."""

    existing = Entity(natural_key=desired.natural_key, surrogate_id=surrogate_id)
    return existing.merged(desired.attributes)


def partition_working_set(
    working_set: WorkingSet,
    resolution: KeyResolution | Mapping[str, str | None],
) -> ReconciliationPlan:
    plan = ReconciliationPlan(entity_type=working_set.entity_type)
    ambiguities = getattr(resolution, "ambiguities", {})
    for natural_key, desired in working_set.entities.items():
        surrogate_id = resolution.get(natural_key)
        if surrogate_id is None:
            # ids are store-assigned; a caller-supplied one is not trusted
            plan.creates.append(replace(desired, surrogate_id=None))
            continue
        plan.updates.append(merge_desired_state(desired, surrogate_id))
        if natural_key in ambiguities:
            plan.ambiguities[natural_key] = ambiguities[natural_key]
    return plan
