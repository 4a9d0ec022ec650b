"""Snapshot - the immutable cache value.

A Snapshot maps identities to partial records. Every operation returns a
new Snapshot; existing ones never change, so they can be shared freely:
- get_by_id(): synchronous read
- insert(), update(), remove(): optimistic successor plus an eventual
  reconciled successor
- apply(): fold an authoritative result back in
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from optimist.awaitables import Eventual
from optimist.reconcile import apply_reconciliation, validate_result
from optimist.reconcilers.base import Reconciler
from optimist.types import (
    ID,
    Merge,
    MutationRequest,
    OptimisticOutcome,
    Partial,
    ReconciliationResult,
)

logger = logging.getLogger(__name__)


def merge_fields(current: Partial | None, patch: Partial) -> Partial:
    """Shallow field union; fields in ``patch`` win."""
    return {**(current or {}), **patch}


def _freeze(record: Any) -> Any:
    """Read-only view of a mapping record; other record types pass through."""
    if isinstance(record, MappingProxyType):
        return record
    if isinstance(record, Mapping):
        return MappingProxyType(dict(record))
    return record


class Snapshot(Mapping[ID, Partial]):
    """Immutable point-in-time view of the cache."""

    __slots__ = ("_records", "_reconciler", "_merge", "_version", "_provenance")

    def __init__(
        self,
        records: Mapping[ID, Partial] | None = None,
        *,
        reconciler: Reconciler,
        merge: Merge = merge_fields,
        version: int = 0,
        provenance: ReconciliationResult | None = None,
    ) -> None:
        self._records: Mapping[ID, Partial] = MappingProxyType(
            {id: _freeze(record) for id, record in (records or {}).items()}
        )
        self._reconciler = reconciler
        self._merge = merge
        self._version = version
        self._provenance = provenance

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, id: ID) -> Partial:
        return self._records[id]

    def __iter__(self) -> Iterator[ID]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"Snapshot(version={self._version}, records={dict(self._records)!r})"

    @property
    def version(self) -> int:
        """Position in the lineage; each derived snapshot is one higher."""
        return self._version

    @property
    def provenance(self) -> ReconciliationResult | None:
        """The result folded in to produce this snapshot, if any."""
        return self._provenance

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_by_id(self, id: ID) -> Partial | None:
        """The stored partial record for ``id``, or None."""
        return self._records.get(id)

    def insert(self, id: ID, record: Partial) -> OptimisticOutcome:
        """Add ``record`` under ``id``, replacing any prior value."""
        immediate = self._derive(assign={id: record})
        return self._outcome(immediate, MutationRequest.for_create(id, record))

    def update(self, id: ID, patch: Partial) -> OptimisticOutcome:
        """Merge ``patch`` over the stored value (or over nothing)."""
        merged = self._merge(self.get_by_id(id), patch)
        immediate = self._derive(assign={id: merged})
        return self._outcome(immediate, MutationRequest.for_update(id, patch))

    def remove(self, id: ID) -> OptimisticOutcome:
        """Drop ``id``. Removing an absent id is not an error."""
        immediate = self._derive(drop=(id,))
        return self._outcome(immediate, MutationRequest.for_remove(id))

    def apply(self, result: ReconciliationResult) -> Snapshot:
        """Fold ``result`` into this snapshot."""
        return apply_reconciliation(self, result)

    def revert_to(self, previous: Snapshot, ids: Iterable[ID]) -> Snapshot:
        """Copy of this snapshot where ``ids`` take their values from ``previous``."""
        ids = list(ids)
        return self._derive(
            assign={id: previous[id] for id in ids if id in previous},
            drop=[id for id in ids if id not in previous],
        )

    async def reconcile(self, request: MutationRequest) -> ReconciliationResult:
        """Send ``request`` to the reconciler with this snapshot as its view."""
        result = await self._reconciler(self, request)
        validate_result(request, result)
        return result

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _derive(
        self,
        *,
        assign: Mapping[ID, Partial] | None = None,
        drop: Iterable[ID] = (),
        provenance: ReconciliationResult | None = None,
    ) -> Snapshot:
        records = dict(self._records)
        if assign:
            records.update(assign)
        for id in drop:
            records.pop(id, None)
        return Snapshot(
            records,
            reconciler=self._reconciler,
            merge=self._merge,
            version=self._version + 1,
            provenance=provenance,
        )

    def _outcome(
        self, immediate: Snapshot, request: MutationRequest
    ) -> OptimisticOutcome:
        logger.debug(
            "Optimistic %s of %s: version %d -> %d",
            request.kind,
            sorted(request.ids),
            self._version,
            immediate.version,
        )

        async def settle() -> Snapshot:
            # Fold back onto the optimistic base captured at issue time
            result = await self.reconcile(request)
            reconciled = immediate.apply(result)
            logger.debug(
                "Reconciled %s of %s: version %d",
                request.kind,
                sorted(request.ids),
                reconciled.version,
            )
            return reconciled

        return OptimisticOutcome(
            immediate=immediate,
            request=request,
            eventual=Eventual(settle),
        )


def create_cache(
    reconciler: Reconciler,
    *,
    merge: Merge = merge_fields,
    initial: Mapping[ID, Partial] | None = None,
) -> Snapshot:
    """Create the root snapshot of a cache.

    Args:
        reconciler: Async function producing authoritative results
        merge: How an update patch combines with the stored partial record
        initial: Records to seed the cache with (default: empty)

    Returns:
        Snapshot at version 0
    """
    if not callable(reconciler):
        raise TypeError(f"reconciler must be callable, got {type(reconciler)}")
    return Snapshot(initial, reconciler=reconciler, merge=merge)


__all__ = ["Snapshot", "create_cache", "merge_fields"]
