"""Generic REST resource handler over httpx."""

from __future__ import annotations

from typing import Any, Mapping

import httpx
import structlog

from groundplan.core.errors import FatalProviderError, TransientProviderError
from groundplan.graph.schema import ResourceTypeSchema
from groundplan.handlers.base import HandlerContext, HandlerResult

logger = structlog.get_logger()


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429) or status_code >= 500


class RestResourceHandler:
    """
    Manages resources exposed as a REST collection.

    ``POST {collection}`` creates, ``GET|PUT|DELETE {collection}/{id}`` read,
    update and destroy. The response body becomes the resource's outputs and
    ``id_field`` of the create response is its external id. Retries are left
    to the executor; this handler only classifies failures.
    """

    def __init__(
        self,
        type_name: str,
        base_url: str,
        collection: str,
        *,
        schema: ResourceTypeSchema | None = None,
        id_field: str = "id",
        timeout: float = 30.0,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._type_name = type_name
        self._base_url = base_url.rstrip("/")
        self._collection = "/" + collection.strip("/")
        self._schema = schema or ResourceTypeSchema(name=type_name, allow_extra=True)
        self._id_field = id_field
        self._timeout = timeout
        self._headers = dict(headers or {})
        self._transport = transport

    @property
    def type_name(self) -> str:
        return self._type_name

    @property
    def schema(self) -> ResourceTypeSchema:
        return self._schema

    def _request_headers(self, method: str, ctx: HandlerContext) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self._headers}
        if ctx.run_id and ctx.resource:
            # stable across retries of the same operation
            headers["Idempotency-Key"] = f"{ctx.run_id}:{ctx.resource}:{method.lower()}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        ctx: HandlerContext,
        *,
        json: Mapping[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> dict[str, Any] | None:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method,
                    url,
                    json=dict(json) if json is not None else None,
                    headers=self._request_headers(method, ctx),
                )
        except httpx.UnsupportedProtocol as exc:
            raise FatalProviderError(f"{method} {url}: {exc}") from exc
        except httpx.TransportError as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise TransientProviderError(f"{method} {url}: {exc}") from exc

        if allow_missing and response.status_code == 404:
            return None
        if is_retryable_status(response.status_code):
            logger.warning(
                "http_retryable_error", status=response.status_code, method=method, url=url
            )
            raise TransientProviderError(
                f"{method} {url}: HTTP {response.status_code}: {response.text}",
                {"status": response.status_code},
            )
        if response.is_error:
            logger.error(
                "http_permanent_error", status=response.status_code, method=method, url=url
            )
            raise FatalProviderError(
                f"{method} {url}: HTTP {response.status_code}: {response.text}",
                {"status": response.status_code},
            )
        return response.json() if response.content else {}

    def _result(self, external_id: str, body: Mapping[str, Any] | None) -> HandlerResult:
        outputs = dict(body or {})
        outputs.setdefault("id", external_id)
        return HandlerResult(external_id=external_id, outputs=outputs)

    async def create(self, attributes: Mapping[str, Any], ctx: HandlerContext) -> HandlerResult:
        body = await self._request("POST", self._collection, ctx, json=attributes) or {}
        if self._id_field not in body:
            raise FatalProviderError(
                f"create response for {ctx.resource} has no '{self._id_field}' field"
            )
        return self._result(str(body[self._id_field]), body)

    async def read(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> HandlerResult | None:
        body = await self._request(
            "GET", f"{self._collection}/{external_id}", ctx, allow_missing=True
        )
        if body is None:
            return None
        observed = {key: body[key] for key in attributes if key in body}
        result = self._result(external_id, body)
        return HandlerResult(
            external_id=result.external_id, outputs=result.outputs, attributes=observed
        )

    async def update(
        self,
        external_id: str,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
        ctx: HandlerContext,
    ) -> HandlerResult:
        body = await self._request("PUT", f"{self._collection}/{external_id}", ctx, json=after)
        return self._result(external_id, body)

    async def destroy(
        self, external_id: str, attributes: Mapping[str, Any], ctx: HandlerContext
    ) -> None:
        await self._request(
            "DELETE", f"{self._collection}/{external_id}", ctx, allow_missing=True
        )
