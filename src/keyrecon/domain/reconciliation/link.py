"""One-hop parent/child linking on top of the reconciliation driver.

Parents are resolved once for all children. Missing parents are created by a
parent sub-pass before any child is written, so every child can be stamped
with a concrete parent surrogate id. A child is never handed to the store
without one.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from keyrecon.domain.errors import (
    StoreUnavailable,
    StoreUnavailableError,
    UnresolvedParent,
    ValidationRejected,
)
from keyrecon.domain.model import Entity

from .contracts import Created, Failed, Outcome, Updated

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .engine import ReconciliationDriver

log = getLogger(__name__)

type ParentKeyOf = Callable[[Entity], str]


class UnresolvedParentError(RuntimeError):
    """Raised by ``link`` when at least one missing parent could not be created."""

    def __init__(self, failures: Mapping[str, Failed]) -> None:
        self.failures = dict(failures)
        keys = ", ".join(sorted(self.failures))
        super().__init__(f"Could not resolve parents: {keys}")


@dataclass(slots=True)
class ParentLinks:
    """Parent resolution for one batch of children."""

    parent_keys: list[str]
    surrogate_ids: dict[str, str] = field(default_factory=dict["str", "str"])
    failures: dict[str, Failed] = field(default_factory=dict["str", "Failed"])
    created: list[str] = field(default_factory=list["str"])


class RelationshipLinker:
    """Stamp children with the surrogate id of their (possibly new) parent.

    ``parent_ref_field`` names the child attribute holding the parent id, for
    example ``"AccountId"``. ``parent_defaults`` are the attributes given to
    parents that have to be created.
    """

    def __init__(
        self,
        driver: ReconciliationDriver,
        *,
        parent_ref_field: str,
        parent_defaults: Mapping[str, object] | None = None,
    ) -> None:
        self.driver = driver
        self.parent_ref_field = parent_ref_field
        self.parent_defaults = dict(parent_defaults or {})

    def link(
        self,
        children: Sequence[Entity],
        parent_type: str,
        parent_key_of: ParentKeyOf,
    ) -> list[Entity]:
        links = self.resolve_parents(children, parent_type, parent_key_of)
        if links.failures:
            raise UnresolvedParentError(links.failures)
        return [
            self._stamp(child, links.surrogate_ids[parent_key])
            for child, parent_key in zip(children, links.parent_keys, strict=True)
        ]

    def reconcile_children(
        self,
        child_type: str,
        children: Sequence[Entity],
        parent_type: str,
        parent_key_of: ParentKeyOf,
    ) -> list[Outcome]:
        """Link and persist ``children``; unlinkable children fail without being written."""

        if not children:
            return []
        try:
            links = self.resolve_parents(children, parent_type, parent_key_of)
        except StoreUnavailableError as exc:
            log.warning(
                "Parent lookup for %s failed, no %s written: %s", parent_type, child_type, exc
            )
            cause = StoreUnavailable(str(exc))
            return [
                Failed(
                    natural_key=child.natural_key,
                    reason=UnresolvedParent(parent_key=parent_key_of(child), cause=cause),
                )
                for child in children
            ]

        outcomes: list[Outcome | None] = [None] * len(children)
        linked_positions: list[int] = []
        linked: list[Entity] = []
        for position, (child, parent_key) in enumerate(
            zip(children, links.parent_keys, strict=True)
        ):
            failure = links.failures.get(parent_key)
            if failure is not None:
                outcomes[position] = Failed(
                    natural_key=child.natural_key,
                    reason=UnresolvedParent(parent_key=parent_key, cause=_root_cause(failure)),
                )
                continue
            linked_positions.append(position)
            linked.append(self._stamp(child, links.surrogate_ids[parent_key]))

        child_outcomes = self.driver.reconcile(child_type, linked)
        for position, outcome in zip(linked_positions, child_outcomes, strict=True):
            outcomes[position] = outcome
        return [outcome for outcome in outcomes if outcome is not None]

    def resolve_parents(
        self,
        children: Sequence[Entity],
        parent_type: str,
        parent_key_of: ParentKeyOf,
    ) -> ParentLinks:
        """Resolve every distinct parent key, creating the missing parents first."""

        links = ParentLinks(parent_keys=[parent_key_of(child) for child in children])
        for parent_key in links.parent_keys:
            if not parent_key.strip():
                links.failures[parent_key] = Failed(
                    natural_key=parent_key,
                    reason=ValidationRejected(None, "parent key is blank"),
                )
        keys = [key for key in links.parent_keys if key not in links.failures]
        if not keys:
            return links

        resolution = self.driver.resolver.resolve(parent_type, keys)
        links.surrogate_ids.update(resolution.existing())

        missing = resolution.missing()
        if not missing:
            return links

        log.info("Creating %d missing %s parents", len(missing), parent_type)
        parents = [
            Entity(natural_key=parent_key, attributes=self.parent_defaults)
            for parent_key in missing
        ]
        parent_outcomes = self.driver.reconcile(parent_type, parents, resolution=resolution)
        for outcome in parent_outcomes:
            match outcome:
                case Created(natural_key=key, surrogate_id=surrogate_id) | Updated(
                    natural_key=key, surrogate_id=surrogate_id
                ):
                    links.surrogate_ids[key] = surrogate_id
                    if isinstance(outcome, Created):
                        links.created.append(key)
                case Failed(natural_key=key):
                    links.failures[key] = outcome
                case _:
                    raise TypeError(f"Unexpected parent outcome: {outcome!r}")
        return links

    def _stamp(self, child: Entity, parent_id: str) -> Entity:
        return child.merged({self.parent_ref_field: parent_id})


def _root_cause(failure: Failed) -> StoreUnavailable | ValidationRejected:
    reason = failure.reason
    if isinstance(reason, UnresolvedParent):
        return reason.cause
    return reason
