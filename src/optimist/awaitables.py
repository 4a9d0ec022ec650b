"""Awaitables returned by cache operations."""

from __future__ import annotations

import asyncio
from typing import (
    Any,
    Callable,
    Coroutine,
    Generator,
    Generic,
    TypeVar,
)

T = TypeVar("T")


class Eventual(Generic[T]):
    """A lazily started asynchronous computation.

    Nothing runs until the object is awaited or ``start()`` is called. The
    computation runs at most once; every await observes the same outcome.

    Usage:
        snapshot = await outcome.eventual
        task = outcome.eventual.start()   # schedule without awaiting
    """

    __slots__ = ("_fn", "_future")

    def __init__(self, fn: Callable[[], Coroutine[Any, Any, T]]) -> None:
        self._fn = fn
        self._future: asyncio.Future[T] | None = None

    def start(self) -> asyncio.Future[T]:
        """Schedule the computation on the running loop and return its future."""
        if self._future is None:
            self._future = asyncio.ensure_future(self._fn())
        return self._future

    @property
    def started(self) -> bool:
        return self._future is not None

    def __await__(self) -> Generator[Any, None, T]:
        return self.start().__await__()


class LookupAwaitable(Generic[T]):
    """The held value for an id, plus an awaitable authoritative fetch.

    Usage:
        lookup = cache.get_by_id("42")
        lookup.immediate          # what the cache shows right now
        record = await lookup     # fresh value from the reconciler
        record = await lookup.fetch()
    """

    __slots__ = ("_fetch_fn", "immediate")

    def __init__(
        self,
        immediate: T | None,
        fetch_fn: Callable[[], Coroutine[Any, Any, T | None]],
    ) -> None:
        self.immediate = immediate
        self._fetch_fn = fetch_fn

    def fetch(self) -> Coroutine[Any, Any, T | None]:
        """Issue a lookup, bypassing the optimistic layer."""
        return self._fetch_fn()

    def __await__(self) -> Generator[Any, None, T | None]:
        return self._fetch_fn().__await__()


__all__ = ["Eventual", "LookupAwaitable"]
