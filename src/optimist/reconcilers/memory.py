"""In-memory reconciler: an authoritative store living in the process."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from optimist.duration import to_seconds
from optimist.errors import ErrorKind, ReconciliationError
from optimist.types import ID, Duration, MutationRequest, Partial, ReconciliationResult

if TYPE_CHECKING:
    from optimist.snapshot import Snapshot

Fill = Callable[[ID, Partial], Partial]


def _fill_id(id: ID, record: Partial) -> Partial:
    """Default server-side completion: stamp the identity onto the record."""
    return {**record, "id": id}


class MemoryReconciler:
    """Async in-memory reconciler with optional simulated latency."""

    def __init__(
        self,
        *,
        latency: Duration | None = None,
        initial: Mapping[ID, Partial] | None = None,
        fill: Fill | None = None,
    ) -> None:
        self._records: dict[ID, dict[str, Any]] = {
            id: dict(record) for id, record in (initial or {}).items()
        }
        self._latency = to_seconds(latency) if latency is not None else 0.0
        self._fill = fill or _fill_id
        self._lock = asyncio.Lock()
        self.calls: list[MutationRequest] = []

    @property
    def records(self) -> dict[ID, dict[str, Any]]:
        """Copy of the authoritative records."""
        return {id: dict(record) for id, record in self._records.items()}

    def seed(self, records: Mapping[ID, Partial]) -> None:
        """Store ``records`` as authoritative without going through a request."""
        for id, record in records.items():
            self._records[id] = dict(record)

    def clear(self) -> None:
        self._records.clear()
        self.calls.clear()

    async def __call__(
        self, view: Snapshot, request: MutationRequest
    ) -> ReconciliationResult:
        """Apply ``request`` to the store and report the authoritative outcome."""
        self.calls.append(request)
        if self._latency:
            await asyncio.sleep(self._latency)
        async with self._lock:
            return self._apply(request)

    def _apply(self, request: MutationRequest) -> ReconciliationResult:
        # Check everything first so a rejected batch changes nothing
        for id in request.create:
            if id in self._records:
                raise ReconciliationError(
                    ErrorKind.CONFLICT, request, f"{id!r} already exists"
                )
        for id in request.update:
            if id not in self._records and id not in request.create:
                raise ReconciliationError(
                    ErrorKind.NOT_FOUND, request, f"{id!r} does not exist"
                )

        for id, record in request.create.items():
            self._records[id] = dict(self._fill(id, record))
        for id, patch in request.update.items():
            self._records[id] = {**self._records[id], **patch}
        for id in request.remove:
            self._records.pop(id, None)

        records: dict[ID, Partial] = {}
        removed = set(request.remove)
        for id in (*request.create, *request.update, *request.lookup):
            if id in self._records:
                records[id] = dict(self._records[id])
            elif id in request.lookup:
                removed.add(id)

        return ReconciliationResult(records=records, removed=frozenset(removed))
