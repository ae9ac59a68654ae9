"""Async REST Deal Store client.

Provides HttpDealStore with retry logic on reads (tenacity, 3 attempts,
exponential backoff 1-10s). The move call is never retried: a failed move is
recovered by the board's full resync, not by repeating the request.

HTTP failures are translated into the store error taxonomy:
    404            -> DealNotFoundError
    400, 409, 422  -> DealValidationError
    5xx, any transport
    failure        -> TransientStoreError
    malformed body -> DealStoreError
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.board.config import get_settings
from src.board.deals.schemas import Deal, Pipeline, Stage
from src.board.deals.store.adapter import (
    DealNotFoundError,
    DealStore,
    DealStoreError,
    DealValidationError,
    TransientStoreError,
)
from src.board.deals.store.field_mapping import (
    deal_from_wire,
    move_to_wire,
    pipeline_from_wire,
    stage_from_wire,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(TransientStoreError),
    reraise=True,
)

_VALIDATION_STATUSES = {400, 409, 422}


def _translate_status(response: httpx.Response, entity_id: str | None) -> None:
    """Raise the store error matching a non-2xx response."""
    if response.is_success:
        return
    detail = response.text[:200]
    code = response.status_code
    if code == 404:
        raise DealNotFoundError(f"Not found: {detail}", entity_id=entity_id)
    if code in _VALIDATION_STATUSES:
        raise DealValidationError(f"Rejected ({code}): {detail}", entity_id=entity_id)
    if code >= 500:
        raise TransientStoreError(f"Server error ({code}): {detail}", entity_id=entity_id)
    raise DealStoreError(f"Unexpected response ({code}): {detail}", entity_id=entity_id)


def _decode(response: httpx.Response, entity_id: str | None) -> Any:
    """Parse a JSON body, unwrapping a ``{"data": ...}`` envelope."""
    try:
        body = response.json()
    except ValueError as exc:
        raise DealStoreError(f"Malformed response body: {exc}", entity_id=entity_id) from exc
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _build(factory: Callable[[dict[str, Any]], T], payload: Any, entity_id: str | None = None) -> T:
    """Map one wire payload to a model; bad payloads become store errors."""
    # pydantic's ValidationError is a ValueError; non-dict payloads fail on .get
    try:
        return factory(payload)
    except (ValueError, AttributeError) as exc:
        logger.warning("http_store.malformed_payload", entity_id=entity_id, error=str(exc))
        raise DealStoreError(f"Malformed payload: {exc}", entity_id=entity_id) from exc


def _build_all(factory: Callable[[dict[str, Any]], T], body: Any) -> list[T]:
    if body is None:
        return []
    if not isinstance(body, list):
        raise DealStoreError(f"Expected a list payload, got {type(body).__name__}")
    return [_build(factory, item, item.get("id") if isinstance(item, dict) else None) for item in body]


class HttpDealStore(DealStore):
    """Deal Store backed by a REST API.

    Uses httpx.AsyncClient with separate timeouts for reads and mutations.

    Args:
        base_url: API root, e.g. ``https://crm.example.com/api/v1``.
        token: Bearer token; omitted from headers when empty.
        timeout_read: Seconds allowed for list calls.
        timeout_mutate: Seconds allowed for the move call.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout_read: float = 10.0,
        timeout_mutate: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._timeout_read = timeout_read
        self._timeout_mutate = timeout_mutate

    @classmethod
    def from_settings(cls) -> HttpDealStore:
        """Build a store from DEAL_STORE_* settings."""
        settings = get_settings()
        return cls(
            base_url=settings.DEAL_STORE_URL,
            token=settings.DEAL_STORE_TOKEN,
            timeout_read=settings.DEAL_STORE_TIMEOUT_READ,
            timeout_mutate=settings.DEAL_STORE_TIMEOUT_MUTATE,
        )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(headers=self._headers, timeout=timeout)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            async with self._client(self._timeout_read) as client:
                response = await client.get(f"{self._base_url}{path}", params=params)
        except httpx.TransportError as exc:
            logger.warning("http_store.read_failed", path=path, error=str(exc))
            raise TransientStoreError(f"GET {path} failed: {exc}") from exc
        _translate_status(response, None)
        return _decode(response, None)

    @_read_retry
    async def list_pipelines(self) -> list[Pipeline]:
        body = await self._get("/pipelines")
        return _build_all(pipeline_from_wire, body)

    @_read_retry
    async def list_deals(self, pipeline_id: str) -> list[Deal]:
        body = await self._get("/deals", params={"pipelineId": pipeline_id})
        deals = _build_all(deal_from_wire, body)
        logger.debug("http_store.deals_listed", pipeline_id=pipeline_id, count=len(deals))
        return deals

    @_read_retry
    async def list_stages(self, pipeline_id: str) -> list[Stage]:
        body = await self._get(f"/pipelines/{pipeline_id}/stages")
        stages = _build_all(stage_from_wire, body)
        return sorted(stages, key=lambda s: s.display_order)

    async def move_deal_to_stage(self, deal_id: str, stage_id: str) -> Deal:
        path = f"/deals/{deal_id}/move"
        try:
            async with self._client(self._timeout_mutate) as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    json=move_to_wire(stage_id),
                )
        except httpx.TransportError as exc:
            logger.warning("http_store.move_failed", deal_id=deal_id, error=str(exc))
            raise TransientStoreError(f"POST {path} failed: {exc}", entity_id=deal_id) from exc

        _translate_status(response, deal_id)
        deal = _build(deal_from_wire, _decode(response, deal_id), deal_id)
        logger.info("http_store.deal_moved", deal_id=deal_id, stage_id=stage_id)
        return deal
