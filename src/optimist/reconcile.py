"""Fold-back of reconciliation results and reconciler wrappers."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from optimist.duration import to_seconds
from optimist.errors import ErrorKind, ReconciliationError
from optimist.types import Duration, MutationRequest, ReconciliationResult

if TYPE_CHECKING:
    from optimist.reconcilers.base import Reconciler
    from optimist.snapshot import Snapshot

logger = logging.getLogger(__name__)


def apply_reconciliation(snapshot: Snapshot, result: ReconciliationResult) -> Snapshot:
    """Fold an authoritative result into ``snapshot``.

    Records in the result replace stored partials outright; they are never
    merged with the optimistic guess. Removed ids are dropped. The input
    snapshot is left untouched.
    """
    return snapshot._derive(
        assign=result.records,
        drop=result.removed,
        provenance=result,
    )


def validate_result(request: MutationRequest, result: ReconciliationResult) -> None:
    """Check that ``result`` answers everything ``request`` asked for.

    Raises:
        ReconciliationError: with kind INVALID when an affected id is missing.
    """
    missing: list[str] = []
    for id in (*request.create, *request.update):
        if id not in result.records:
            missing.append(f"record for {id!r}")
    for id in request.remove:
        if id not in result.removed:
            missing.append(f"removal of {id!r}")
    for id in request.lookup:
        if id not in result.records and id not in result.removed:
            missing.append(f"answer for {id!r}")

    if missing:
        raise ReconciliationError(
            ErrorKind.INVALID,
            request,
            "reconciler omitted " + ", ".join(sorted(missing)),
        )


def with_timeout(reconciler: Reconciler, timeout: Duration) -> Reconciler:
    """Wrap ``reconciler`` so calls slower than ``timeout`` fail as UNAVAILABLE."""
    seconds = to_seconds(timeout)

    async def reconcile(
        view: Snapshot, request: MutationRequest
    ) -> ReconciliationResult:
        try:
            return await asyncio.wait_for(reconciler(view, request), seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Reconciliation of %s request timed out after %.3fs",
                request.kind,
                seconds,
            )
            raise ReconciliationError(
                ErrorKind.UNAVAILABLE,
                request,
                f"timed out after {seconds:g}s",
            ) from None

    return reconcile


__all__ = ["apply_reconciliation", "validate_result", "with_timeout"]
