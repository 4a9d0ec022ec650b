"""ReactiveCache - stateful binding around a Snapshot.

Holds the current snapshot in a single owned slot and swaps it in two
phases per mutation: once for the optimistic value, once for the
reconciled value. Observers and subscriptions are notified on every swap.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, cast, overload

from optimist.awaitables import LookupAwaitable
from optimist.reconcilers.base import Reconciler
from optimist.snapshot import Snapshot, create_cache, merge_fields
from optimist.types import (
    ID,
    Merge,
    MutationRequest,
    OptimisticOutcome,
    Partial,
    ReconciliationResult,
)

logger = logging.getLogger(__name__)

Observer = Callable[[Snapshot], None]


class Subscription(Sequence[Partial]):
    """A filtered, optionally sorted view over the held snapshot's records.

    Recomputed synchronously every time the cache swaps snapshots.
    """

    __slots__ = ("_cache", "_predicate", "_key", "_on_change", "_items")

    def __init__(
        self,
        cache: ReactiveCache,
        predicate: Callable[[Partial], bool] | None,
        key: Callable[[Partial], Any] | None,
        on_change: Callable[[list[Partial]], None] | None,
    ) -> None:
        self._cache = cache
        self._predicate = predicate
        self._key = key
        self._on_change = on_change
        self._items: list[Partial] = []

    @property
    def items(self) -> list[Partial]:
        return list(self._items)

    @property
    def active(self) -> bool:
        return self in self._cache._subscriptions

    @overload
    def __getitem__(self, index: int) -> Partial: ...

    @overload
    def __getitem__(self, index: slice) -> list[Partial]: ...

    def __getitem__(self, index: int | slice) -> Partial | list[Partial]:
        return self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Partial]:
        return iter(list(self._items))

    def close(self) -> None:
        """Stop recomputing; the last computed items stay readable."""
        if self.active:
            self._cache._subscriptions.remove(self)

    def _recompute(self, snapshot: Snapshot, *, notify: bool = True) -> None:
        items = [
            record
            for record in snapshot.values()
            if self._predicate is None or self._predicate(record)
        ]
        if self._key is not None:
            items.sort(key=self._key)
        self._items = items
        if notify and self._on_change is not None:
            self._on_change(list(items))


@dataclass(slots=True)
class _Claims:
    """Mutations in flight for one id, plus the newest authoritative answer."""

    # sequence -> value held right after that mutation (None when absent)
    optimistic: dict[int, Partial | None] = field(default_factory=dict)
    confirmed_sequence: int = 0
    confirmed: Partial | None = None

    def is_newest(self, sequence: int) -> bool:
        """Whether no other claim, in flight or answered, was issued later."""
        newest = max(self.optimistic, default=0)
        return sequence > newest and sequence > self.confirmed_sequence


class ReactiveCache:
    """Optimistic cache bound to a reconciler.

    Usage:
        cache = ReactiveCache(reconciler)
        board = cache.subscribe(lambda task: task.get("status") == "done")
        await cache.update("42", {"status": "done"})
        record = await cache.get_by_id("42")
    """

    def __init__(
        self,
        reconciler: Reconciler,
        *,
        merge: Merge = merge_fields,
        initial: Mapping[ID, Partial] | None = None,
    ) -> None:
        self._snapshot = create_cache(reconciler, merge=merge, initial=initial)
        self._observers: list[Observer] = []
        self._subscriptions: list[Subscription] = []
        self._sequence = 0
        # id -> mutations in flight for it, keyed by issue sequence
        self._claims: dict[ID, _Claims] = {}

    @property
    def snapshot(self) -> Snapshot:
        """The currently held snapshot (immutable)."""
        return self._snapshot

    def is_pending(self, id: ID) -> bool:
        """Whether a mutation touching ``id`` is still awaiting reconciliation."""
        return id in self._claims

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_by_id(self, id: ID) -> LookupAwaitable[Partial]:
        """Held value for ``id`` now, plus an awaitable authoritative fetch."""

        async def fetch() -> Partial | None:
            request = MutationRequest.for_lookup((id,))
            result = await self._snapshot.reconcile(request)
            return result.records.get(id)

        return LookupAwaitable(self._snapshot.get_by_id(id), fetch)

    def subscribe(
        self,
        predicate: Callable[[Partial], bool] | None = None,
        *,
        key: Callable[[Partial], Any] | None = None,
        on_change: Callable[[list[Partial]], None] | None = None,
    ) -> Subscription:
        """Derived view of the records matching ``predicate``.

        Args:
            predicate: Filter over records (default: every record)
            key: Sort key applied after filtering
            on_change: Called with the new items after each recompute

        Returns:
            Subscription, already computed against the held snapshot
        """
        subscription = Subscription(self, predicate, key, on_change)
        subscription._recompute(self._snapshot, notify=False)
        self._subscriptions.append(subscription)
        return subscription

    def observe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer`` with each newly held snapshot. Returns an unsubscriber."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def insert(self, id: ID, record: Partial) -> Snapshot:
        """Insert ``record`` and wait for the reconciled snapshot."""
        return await self._mutate(self._snapshot.insert(id, record))

    async def update(self, id: ID, patch: Partial) -> Snapshot:
        """Merge ``patch`` into ``id`` and wait for the reconciled snapshot."""
        return await self._mutate(self._snapshot.update(id, patch))

    async def remove(self, id: ID) -> Snapshot:
        """Remove ``id`` and wait for the reconciled snapshot."""
        return await self._mutate(self._snapshot.remove(id))

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    async def _mutate(self, outcome: OptimisticOutcome) -> Snapshot:
        previous = self._snapshot
        request = outcome.request
        sequence = self._claim(outcome.immediate, request.ids)
        try:
            self._swap(outcome.immediate)
            reconciled = await outcome.eventual
        except BaseException as e:
            # Includes cancellation
            logger.warning(
                "Reconciliation of %s %s failed, reverting: %s",
                request.kind,
                sorted(request.ids),
                repr(e),
            )
            self._revert(previous, request.ids, sequence)
            raise

        result = cast(ReconciliationResult, reconciled.provenance)
        return self._settle(result, request.ids, sequence)

    def _claim(self, immediate: Snapshot, ids: Iterable[ID]) -> int:
        self._sequence += 1
        for id in ids:
            claims = self._claims.setdefault(id, _Claims())
            claims.optimistic[self._sequence] = immediate.get_by_id(id)
        return self._sequence

    def _release(self, id: ID, sequence: int) -> _Claims:
        """Drop ``sequence``'s claim on ``id``; forget ids with nothing in flight."""
        claims = self._claims[id]
        del claims.optimistic[sequence]
        if not claims.optimistic:
            del self._claims[id]
        return claims

    def _settle(
        self, result: ReconciliationResult, ids: Iterable[ID], sequence: int
    ) -> Snapshot:
        """Fold ``result`` into the held snapshot, skipping superseded ids."""
        current: set[ID] = set()
        for id in ids:
            claims = self._release(id, sequence)
            if claims.is_newest(sequence):
                current.add(id)
            if sequence > claims.confirmed_sequence:
                claims.confirmed_sequence = sequence
                claims.confirmed = result.records.get(id)

        fresh = result.restricted(current.__contains__)
        stale = (set(result.records) | result.removed) - current
        if stale:
            logger.warning(
                "Discarding stale reconciliation for %s (superseded)",
                sorted(stale),
            )
        self._swap(self._snapshot.apply(fresh))
        return self._snapshot

    def _revert(self, previous: Snapshot, ids: Iterable[ID], sequence: int) -> None:
        """Restore each id this mutation still shows to the best known value.

        That is the newest of: the optimistic value of an older mutation
        still in flight, an authoritative result that arrived meanwhile, or
        the value held before this mutation.
        """
        records: dict[ID, Partial] = {}
        removed: set[ID] = set()
        for id in ids:
            claims = self._release(id, sequence)
            if not claims.is_newest(sequence):
                continue
            pending = max(claims.optimistic, default=0)
            if pending > claims.confirmed_sequence:
                value = claims.optimistic[pending]
            elif claims.confirmed_sequence:
                value = claims.confirmed
            else:
                value = previous.get_by_id(id)
            if value is None:
                removed.add(id)
            else:
                records[id] = value
        if records or removed:
            restore = ReconciliationResult(records=records, removed=frozenset(removed))
            self._swap(self._snapshot.apply(restore))

    def _swap(self, snapshot: Snapshot) -> None:
        logger.debug(
            "Swapping snapshot version %d -> %d",
            self._snapshot.version,
            snapshot.version,
        )
        self._snapshot = snapshot
        for subscription in list(self._subscriptions):
            subscription._recompute(snapshot)
        for observer in list(self._observers):
            observer(snapshot)


__all__ = ["ReactiveCache", "Subscription"]
