"""Reconcilers: sources of authoritative truth for the cache."""

from contextlib import suppress

from optimist.reconcilers.base import Reconciler
from optimist.reconcilers.memory import MemoryReconciler

# Optional reconcilers - only available when dependencies are installed
with suppress(ImportError):
    from optimist.reconcilers.http import HttpReconciler

with suppress(ImportError):
    from optimist.reconcilers.redis import RedisReconciler

__all__ = [
    "HttpReconciler",
    "MemoryReconciler",
    "Reconciler",
    "RedisReconciler",
]
