"""Shared pytest fixtures."""

import asyncio

import pytest

from optimist import (
    MemoryReconciler,
    MutationRequest,
    ReactiveCache,
    ReconciliationResult,
    Snapshot,
    create_cache,
)


def fill_new(id: str, record: dict) -> dict:
    """Server-side completion used across tests: id plus a default status."""
    return {"status": "new", **record, "id": id}


class GatedReconciler:
    """Reconciler that applies requests in issue order but holds each response.

    Responses are released by the test, in whatever order it chooses, which
    lets tests control reconciliation completion order.
    """

    def __init__(self, backing: MemoryReconciler) -> None:
        self.backing = backing
        self.gates: list[asyncio.Event] = []

    async def __call__(
        self, view: Snapshot, request: MutationRequest
    ) -> ReconciliationResult:
        gate = asyncio.Event()
        self.gates.append(gate)
        result = await self.backing(view, request)
        await gate.wait()
        return result

    async def wait_for_calls(self, count: int) -> None:
        while len(self.gates) < count:
            await asyncio.sleep(0)

    def release(self, index: int) -> None:
        self.gates[index].set()


async def _drain() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def reconciler() -> MemoryReconciler:
    """Create a fresh MemoryReconciler for each test."""
    return MemoryReconciler(fill=fill_new)


@pytest.fixture
def cache(reconciler: MemoryReconciler) -> Snapshot:
    """Create an empty root snapshot bound to the memory reconciler."""
    return create_cache(reconciler)


@pytest.fixture
def gated() -> GatedReconciler:
    """Create a gated reconciler over a fresh memory store."""
    return GatedReconciler(MemoryReconciler(fill=fill_new))


@pytest.fixture
def drain():
    """Coroutine function that lets every ready task run."""
    return _drain


@pytest.fixture
def reactive(reconciler: MemoryReconciler) -> ReactiveCache:
    """Create a ReactiveCache bound to the memory reconciler."""
    return ReactiveCache(reconciler)
