"""Reconciliation contract."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from optimist.types import MutationRequest, ReconciliationResult

if TYPE_CHECKING:
    from optimist.snapshot import Snapshot


@runtime_checkable
class Reconciler(Protocol):
    """Turns a request into an authoritative result.

    Implementations must resolve (never hang), return complete records for
    every created or updated id, list every removed id in ``removed`` and
    answer every looked-up id through either ``records`` or ``removed``.
    Failures are reported by raising ``ReconciliationError``.
    """

    async def __call__(
        self, view: Snapshot, request: MutationRequest
    ) -> ReconciliationResult:
        """Reconcile ``request`` given the caller's current ``view``."""
        ...
