"""Core types for the optimist cache."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from optimist.awaitables import Eventual
    from optimist.snapshot import Snapshot

# Identities are assigned by the caller; uniqueness is not enforced here.
ID = str

# A record with any subset of its fields known
Partial = Mapping[str, Any]

_EMPTY: Mapping[ID, Partial] = MappingProxyType({})


def _frozen_map(value: Mapping[ID, Partial] | None) -> Mapping[ID, Partial]:
    if not value:
        return _EMPTY
    return MappingProxyType(dict(value))


@dataclass(frozen=True, slots=True)
class MutationRequest:
    """A batch of operations sent to a reconciler."""

    lookup: frozenset[ID] = frozenset()
    create: Mapping[ID, Partial] = field(default_factory=dict)
    update: Mapping[ID, Partial] = field(default_factory=dict)
    remove: frozenset[ID] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "lookup", frozenset(self.lookup))
        object.__setattr__(self, "create", _frozen_map(self.create))
        object.__setattr__(self, "update", _frozen_map(self.update))
        object.__setattr__(self, "remove", frozenset(self.remove))

    @classmethod
    def for_lookup(cls, ids: Iterable[ID]) -> MutationRequest:
        return cls(lookup=frozenset(ids))

    @classmethod
    def for_create(cls, id: ID, record: Partial) -> MutationRequest:
        return cls(create={id: record})

    @classmethod
    def for_update(cls, id: ID, patch: Partial) -> MutationRequest:
        return cls(update={id: patch})

    @classmethod
    def for_remove(cls, id: ID) -> MutationRequest:
        return cls(remove=frozenset((id,)))

    @property
    def ids(self) -> frozenset[ID]:
        """Every identity this request touches."""
        return self.lookup | set(self.create) | set(self.update) | self.remove

    @property
    def kind(self) -> str:
        """Name of the single operation kind issued, or "batch"."""
        kinds = [
            name
            for name in ("lookup", "create", "update", "remove")
            if getattr(self, name)
        ]
        if len(kinds) == 1:
            return kinds[0]
        return "batch" if kinds else "empty"


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    """Authoritative outcome of a request.

    ``records`` holds complete records that replace whatever the cache
    guessed; ``removed`` lists identities that no longer exist.
    """

    records: Mapping[ID, Partial] = field(default_factory=dict)
    removed: frozenset[ID] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "records", _frozen_map(self.records))
        object.__setattr__(self, "removed", frozenset(self.removed))

    def restricted(self, keep: Callable[[ID], bool]) -> ReconciliationResult:
        """Copy of this result limited to the identities ``keep`` accepts."""
        return ReconciliationResult(
            records={id: rec for id, rec in self.records.items() if keep(id)},
            removed=frozenset(id for id in self.removed if keep(id)),
        )


@dataclass(frozen=True, slots=True)
class OptimisticOutcome:
    """Result of a mutation: adopt ``immediate`` now, await ``eventual`` later."""

    immediate: Snapshot
    request: MutationRequest
    eventual: Eventual[Snapshot]


# Merge of a patch over an existing (possibly absent) partial record
Merge = Callable[[Partial | None, Partial], Partial]

# Duration type alias
Duration = str | int  # "50ms", "5s", "2m" or milliseconds
