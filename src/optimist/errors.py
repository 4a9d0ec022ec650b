"""Reconciliation error taxonomy."""

from __future__ import annotations

from enum import Enum

from optimist.types import MutationRequest


class ErrorKind(str, Enum):
    """Why a reconciliation could not complete."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    INVALID = "invalid"


class ReconciliationError(Exception):
    """Raised when a reconciler cannot produce an authoritative result.

    Carries the originating request so callers can tell which mutation
    failed. The cache never retries on its own.
    """

    def __init__(
        self,
        kind: ErrorKind,
        request: MutationRequest,
        message: str | None = None,
    ) -> None:
        self.kind = ErrorKind(kind)
        self.request = request
        self.message = message or self.kind.value.replace("_", " ")
        super().__init__(f"{self.kind.value} ({request.kind}): {self.message}")

    @property
    def ids(self) -> frozenset[str]:
        """Identities touched by the failed request."""
        return self.request.ids
