"""HTTP reconciler backed by a JSON API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from optimist.duration import to_seconds
from optimist.errors import ErrorKind, ReconciliationError
from optimist.types import Duration, MutationRequest, ReconciliationResult

if TYPE_CHECKING:
    from optimist.snapshot import Snapshot

logger = logging.getLogger(__name__)

_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    422: ErrorKind.INVALID,
}


def encode_request(request: MutationRequest) -> dict[str, Any]:
    """Serialize a request to its JSON body."""
    return {
        "lookup": sorted(request.lookup),
        "create": {id: dict(record) for id, record in request.create.items()},
        "update": {id: dict(patch) for id, patch in request.update.items()},
        "remove": sorted(request.remove),
    }


def decode_result(data: dict[str, Any]) -> ReconciliationResult:
    """Deserialize a JSON response body to a result."""
    return ReconciliationResult(
        records=data.get("records") or {},
        removed=frozenset(data.get("removed") or ()),
    )


class HttpReconciler:
    """Async reconciler that POSTs each request to ``/v1/reconcile``."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: Duration = "30s",
        endpoint: str = "/v1/reconcile",
    ) -> None:
        import httpx

        headers = {"Content-Type": "application/json"}
        if api_key is not None:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=to_seconds(timeout),
        )
        self._endpoint = endpoint

    async def __call__(
        self, view: Snapshot, request: MutationRequest
    ) -> ReconciliationResult:
        """Send ``request`` to the API and decode the authoritative result."""
        import httpx

        try:
            response = await self._client.post(
                self._endpoint, json=encode_request(request)
            )
        except httpx.TransportError as e:
            logger.warning("Reconcile request failed: %s", e)
            raise ReconciliationError(ErrorKind.UNAVAILABLE, request, str(e)) from e

        if not response.is_success:
            try:
                error = response.json().get("error", "Request failed")
            except Exception:
                error = f"HTTP {response.status_code}"
            kind = _STATUS_KINDS.get(response.status_code, ErrorKind.UNAVAILABLE)
            raise ReconciliationError(kind, request, error)

        try:
            body = cast(dict[str, Any], response.json())
        except ValueError as e:
            raise ReconciliationError(
                ErrorKind.INVALID, request, "response is not JSON"
            ) from e
        return decode_result(body)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
