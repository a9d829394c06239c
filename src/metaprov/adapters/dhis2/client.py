"""HTTP client for the DHIS2 metadata and data-store APIs."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING, Any, TypeAlias

import httpx
from pydantic import ValidationError

from metaprov.adapters.http_resilience import ResilientClient, build_limiter
from metaprov.domain.errors import RemoteFatalError, RemoteStatusError, RemoteTransportError

from .schema import IDENTIFYING_FIELDS, MetadataObject, WebMessage

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from aiolimiter import AsyncLimiter

    from metaprov.config.dhis2 import DHIS2Config
    from metaprov.config.http_resilience import ResilienceConfig

ClientFactory: TypeAlias = "Callable[[ResilienceConfig, AsyncLimiter | None], ResilientClient]"

log = getLogger(__name__)


class DHIS2ResponseError(RemoteFatalError):
    """Raised when DHIS2 answers successfully but with an unexpected payload."""


def _describe_failure(response: httpx.Response) -> tuple[str, object]:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase, response.text
    if isinstance(body, dict):
        try:
            return WebMessage.model_validate(body).describe(), body
        except ValidationError:
            pass
    return response.reason_phrase, body


def _raise_for_status(response: httpx.Response, description: str) -> None:
    if response.is_success:
        return
    detail, body = _describe_failure(response)
    raise RemoteStatusError(
        f"{description} failed with HTTP {response.status_code}: {detail}",
        status_code=response.status_code,
        body=body,
    )


def _default_client(config: ResilienceConfig, limiter: AsyncLimiter | None) -> ResilientClient:
    return ResilientClient(config, limiter=limiter)


class DHIS2Client:
    """Blocking facade over the async resilient client.

    Every public call runs its own event loop through ``asyncio.run`` so the
    reconciliation engine stays synchronous. One rate limiter is shared by every call
    made through this client. Non-success responses raise ``RemoteStatusError``;
    failures without a response raise ``RemoteTransportError``.
    """

    def __init__(
        self,
        *,
        config: DHIS2Config,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._config = config
        self._resilience = config.resilience
        self._client_factory = client_factory or _default_client
        self._limiter = build_limiter(config.resilience)

    # Metadata ---------------------------------------------------------

    def get_object(self, collection: str, object_id: str) -> MetadataObject:
        body = self._call(
            "GET",
            f"{collection}/{object_id}",
            description=f"GET {collection}/{object_id}",
            params={"fields": IDENTIFYING_FIELDS},
        )
        return self._parse_object(body, collection)

    def search(self, collection: str, field: str, value: str) -> list[MetadataObject]:
        body = self._call(
            "GET",
            collection,
            description=f"search {collection} by {field}",
            params={
                "filter": f"{field}:eq:{value}",
                "fields": IDENTIFYING_FIELDS,
                "paging": "false",
            },
        )
        if not isinstance(body, dict) or not isinstance(body.get(collection), list):
            raise DHIS2ResponseError(f"Unexpected search response for {collection}")
        return [self._parse_object(item, collection) for item in body[collection]]

    def create(self, collection: str, payload: Mapping[str, Any]) -> str:
        body = self._call(
            "POST",
            collection,
            description=f"POST {collection}",
            json=dict(payload),
        )
        uid: str | None = None
        if isinstance(body, dict):
            try:
                message = WebMessage.model_validate(body)
            except ValidationError as exc:
                raise DHIS2ResponseError(f"Unexpected create response for {collection}") from exc
            if message.response is not None:
                uid = message.response.uid
        uid = uid or payload.get("id")
        if not uid:
            raise DHIS2ResponseError(f"DHIS2 did not report an id for the new {collection}")
        log.debug("Created %s %s", collection, uid)
        return str(uid)

    # Data store -------------------------------------------------------

    def datastore_get(self, namespace: str, key: str) -> object | None:
        try:
            return self._call(
                "GET", f"dataStore/{namespace}/{key}", description=f"read {namespace}/{key}"
            )
        except RemoteStatusError as exc:
            if exc.status_code == 404:
                return None
            raise

    def datastore_put(self, namespace: str, key: str, value: object) -> None:
        path = f"dataStore/{namespace}/{key}"
        try:
            self._call("PUT", path, description=f"update {namespace}/{key}", json=value)
        except RemoteStatusError as exc:
            if exc.status_code != 404:
                raise
            self._call("POST", path, description=f"create {namespace}/{key}", json=value)

    def datastore_delete(self, namespace: str, key: str) -> bool:
        try:
            self._call(
                "DELETE",
                f"dataStore/{namespace}/{key}",
                description=f"delete {namespace}/{key}",
            )
        except RemoteStatusError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    # Plumbing ---------------------------------------------------------

    def _call(
        self,
        method: str,
        path: str,
        *,
        description: str,
        params: Mapping[str, str] | None = None,
        json: object = None,
    ) -> object:
        return asyncio.run(
            self._call_async(method, path, description=description, params=params, json=json)
        )

    async def _call_async(
        self,
        method: str,
        path: str,
        *,
        description: str,
        params: Mapping[str, str] | None,
        json: object,
    ) -> object:
        async with self._client_factory(self._resilience, self._limiter) as client:
            try:
                if json is None:
                    response = await client.request(method, path, params=params)
                else:
                    response = await client.request(method, path, params=params, json=json)
            except httpx.TransportError as exc:
                raise RemoteTransportError(f"{description}: {exc}") from exc

        _raise_for_status(response, description)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise DHIS2ResponseError(f"{description}: response is not JSON") from exc

    @staticmethod
    def _parse_object(payload: object, collection: str) -> MetadataObject:
        try:
            return MetadataObject.model_validate(payload)
        except ValidationError as exc:
            raise DHIS2ResponseError(f"Unexpected {collection} object in response") from exc
