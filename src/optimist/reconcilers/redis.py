"""Redis reconciler: authoritative records stored as JSON strings."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from optimist.errors import ErrorKind, ReconciliationError
from optimist.types import ID, MutationRequest, Partial, ReconciliationResult

if TYPE_CHECKING:
    from optimist.snapshot import Snapshot

logger = logging.getLogger(__name__)


def _serialize_record(record: Partial) -> str:
    """Serialize a record to JSON. Raises TypeError on non-JSON values."""
    return json.dumps(dict(record), sort_keys=True)


def _deserialize_record(data: bytes | str) -> dict[str, Any]:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return dict(json.loads(data))


class RedisReconciler:
    """Async reconciler over a ``redis.asyncio.Redis`` client.

    Records must be JSON-serializable; anything else is rejected as INVALID
    rather than coerced. A batch is checked as a whole (encoding, existence
    of created and updated ids) before anything is written, but the writes
    themselves are not one transaction: a concurrent writer can still make a
    later step fail after an earlier one was stored.
    """

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "optimist",
    ) -> None:
        self._client = client
        self._prefix = prefix

    def _record_key(self, id: ID) -> str:
        """Generate full Redis key for a record."""
        return f"{self._prefix}:record:{id}"

    async def __call__(
        self, view: Snapshot, request: MutationRequest
    ) -> ReconciliationResult:
        """Apply ``request`` against Redis and report the authoritative outcome."""
        try:
            await self._check(request)
            return await self._apply(request)
        except WatchError as e:
            raise ReconciliationError(
                ErrorKind.CONFLICT, request, "record changed concurrently"
            ) from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.warning("Redis unavailable during %s: %s", request.kind, e)
            raise ReconciliationError(ErrorKind.UNAVAILABLE, request, str(e)) from e

    async def _check(self, request: MutationRequest) -> None:
        """Reject the whole batch before any write if one step would fail."""
        for id, record in (*request.create.items(), *request.update.items()):
            try:
                _serialize_record(record)
            except (TypeError, ValueError) as e:
                raise ReconciliationError(
                    ErrorKind.INVALID, request, f"{id!r} is not JSON-serializable"
                ) from e

        for id in request.create:
            if await self._client.exists(self._record_key(id)):
                raise ReconciliationError(
                    ErrorKind.CONFLICT, request, f"{id!r} already exists"
                )
        for id in request.update:
            if not await self._client.exists(self._record_key(id)):
                raise ReconciliationError(
                    ErrorKind.NOT_FOUND, request, f"{id!r} does not exist"
                )

    async def _apply(self, request: MutationRequest) -> ReconciliationResult:
        records: dict[ID, Partial] = {}
        removed: set[ID] = set()

        for id, record in request.create.items():
            stored = {**record, "id": id}
            created = await self._client.set(
                self._record_key(id), _serialize_record(stored), nx=True
            )
            if not created:
                raise ReconciliationError(
                    ErrorKind.CONFLICT, request, f"{id!r} already exists"
                )
            records[id] = stored

        for id, patch in request.update.items():
            records[id] = await self._update(request, id, patch)

        if request.remove:
            await self._client.delete(*(self._record_key(id) for id in request.remove))
            removed.update(request.remove)

        if request.lookup:
            ids = sorted(request.lookup)
            values = await self._client.mget([self._record_key(id) for id in ids])
            for id, data in zip(ids, values):
                if data is None:
                    removed.add(id)
                else:
                    records[id] = _deserialize_record(data)

        return ReconciliationResult(records=records, removed=frozenset(removed))

    async def _update(
        self, request: MutationRequest, id: ID, patch: Partial
    ) -> dict[str, Any]:
        key = self._record_key(id)
        async with self._client.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            data = await pipe.get(key)
            if data is None:
                raise ReconciliationError(
                    ErrorKind.NOT_FOUND, request, f"{id!r} does not exist"
                )
            merged = {**_deserialize_record(data), **patch}
            pipe.multi()
            pipe.set(key, _serialize_record(merged))
            await pipe.execute()
        return merged

    async def clear(self) -> None:
        """Delete every record under this prefix."""
        cursor: int = 0
        pattern = f"{self._prefix}:record:*"
        while True:
            result = await self._client.scan(cursor, match=pattern, count=100)
            cursor = result[0]
            keys = result[1]
            if keys:
                await self._client.delete(*keys)
            if cursor == 0:
                break

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()
