"""optimist - Optimistic, reconciling client-side cache for Python."""

from contextlib import suppress

# Awaitables
from optimist.awaitables import Eventual, LookupAwaitable

# Reactive binding
from optimist.binding import ReactiveCache, Subscription

# Duration parsing
from optimist.duration import parse_duration

# Errors
from optimist.errors import ErrorKind, ReconciliationError

# Fold-back and reconciler wrappers
from optimist.reconcile import apply_reconciliation, validate_result, with_timeout

# Reconcilers
from optimist.reconcilers import MemoryReconciler, Reconciler

# Snapshot API
from optimist.snapshot import Snapshot, create_cache, merge_fields

# Core types
from optimist.types import (
    ID,
    Duration,
    Merge,
    MutationRequest,
    OptimisticOutcome,
    Partial,
    ReconciliationResult,
)

# Optional reconciler imports - only available when dependencies are installed
with suppress(ImportError):
    from optimist.reconcilers import HttpReconciler

with suppress(ImportError):
    from optimist.reconcilers import RedisReconciler

__version__ = "0.1.0"

__all__ = [
    "ID",
    "Duration",
    "ErrorKind",
    "Eventual",
    "HttpReconciler",
    "LookupAwaitable",
    "MemoryReconciler",
    "Merge",
    "MutationRequest",
    "OptimisticOutcome",
    "Partial",
    "ReactiveCache",
    "ReconciliationError",
    "ReconciliationResult",
    "Reconciler",
    "RedisReconciler",
    "Snapshot",
    "Subscription",
    "apply_reconciliation",
    "create_cache",
    "merge_fields",
    "parse_duration",
    "validate_result",
    "with_timeout",
]
