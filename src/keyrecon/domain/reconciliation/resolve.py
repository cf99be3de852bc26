"""RESOLVE stage: map natural keys to existing surrogate ids.

Responsibilities of this stage:
- issue exactly one store lookup per entity type per call, whatever the
  number of keys
- keep the first match per key in store order and flag the rest as ambiguous
- never mutate the store

A lookup failure propagates as ``StoreUnavailableError``; no partial mapping
is ever returned.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from logging import getLogger
from typing import TYPE_CHECKING

from keyrecon.config.reconcile import DEFAULT_KEY_FIELD
from keyrecon.domain.errors import AmbiguousMatch

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from keyrecon.domain.ports.store import StoreClient, StoreRecord

log = getLogger(__name__)


class KeyResolution(Mapping[str, str | None]):
    """Read-only ``natural_key -> surrogate_id | None`` mapping for one entity type."""

    __slots__ = ("_ambiguities", "_surrogate_ids", "entity_type")

    def __init__(
        self,
        entity_type: str,
        surrogate_ids: Mapping[str, str | None] | None = None,
        *,
        ambiguities: Mapping[str, AmbiguousMatch] | None = None,
    ) -> None:
        self.entity_type = entity_type
        self._surrogate_ids: dict[str, str | None] = dict(surrogate_ids or {})
        self._ambiguities: dict[str, AmbiguousMatch] = dict(ambiguities or {})

    def __getitem__(self, natural_key: str) -> str | None:
        return self._surrogate_ids[natural_key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._surrogate_ids)

    def __len__(self) -> int:
        return len(self._surrogate_ids)

    def __repr__(self) -> str:
        return f"KeyResolution({self.entity_type!r}, {self._surrogate_ids!r})"

    @property
    def ambiguities(self) -> Mapping[str, AmbiguousMatch]:
        return self._ambiguities

    def warnings_for(self, natural_key: str) -> tuple[AmbiguousMatch, ...]:
        ambiguity = self._ambiguities.get(natural_key)
        return (ambiguity,) if ambiguity is not None else ()

    def missing(self) -> tuple[str, ...]:
        """Keys without an existing record, in resolution order."""

        return tuple(key for key, value in self._surrogate_ids.items() if value is None)

    def existing(self) -> dict[str, str]:
        return {key: value for key, value in self._surrogate_ids.items() if value is not None}


class KeyResolver:
    """Resolve natural keys against the store using the configured key field."""

    def __init__(self, store: StoreClient, *, key_field: str = DEFAULT_KEY_FIELD) -> None:
        self.store = store
        self.key_field = key_field

    def resolve(self, entity_type: str, natural_keys: Iterable[str]) -> KeyResolution:
        keys = list(dict.fromkeys(natural_keys))
        if not keys:
            return KeyResolution(entity_type)

        records = self.store.find(entity_type, self.key_field, keys)
        candidates = self._candidates_by_key(keys, records)

        surrogate_ids: dict[str, str | None] = {}
        ambiguities: dict[str, AmbiguousMatch] = {}
        for key in keys:
            matches = candidates[key]
            surrogate_ids[key] = matches[0] if matches else None
            if len(matches) > 1:
                ambiguities[key] = AmbiguousMatch(
                    entity_type=entity_type,
                    natural_key=key,
                    surrogate_ids=tuple(matches),
                )
                log.warning(
                    "Ambiguous %s match for %r: %d records, using %s",
                    entity_type,
                    key,
                    len(matches),
                    matches[0],
                )

        log.debug(
            "Resolved %d %s keys: %d existing, %d missing",
            len(keys),
            entity_type,
            sum(1 for value in surrogate_ids.values() if value is not None),
            sum(1 for value in surrogate_ids.values() if value is None),
        )
        return KeyResolution(entity_type, surrogate_ids, ambiguities=ambiguities)

    def _candidates_by_key(
        self,
        keys: Sequence[str],
        records: Sequence[StoreRecord],
    ) -> dict[str, list[str]]:
        candidates: dict[str, list[str]] = {key: [] for key in keys}
        for record in records:
            value = record.value(self.key_field)
            if not isinstance(value, str) or value not in candidates:
                continue
            if record.surrogate_id is None:
                log.debug("Ignoring %s record without surrogate id", value)
                continue
            matches = candidates[value]
            if record.surrogate_id not in matches:
                matches.append(record.surrogate_id)
        return candidates
