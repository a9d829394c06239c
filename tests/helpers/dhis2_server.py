"""A tiny DHIS2 Web API served through ``httpx.MockTransport``."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from metaprov.adapters.http_resilience import ResilientClient
from metaprov.config import DHIS2Config, RateLimit, ResilienceConfig, RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable

    from aiolimiter import AsyncLimiter

    from metaprov.adapters.dhis2.client import ClientFactory

BASE_URL = "https://dhis.example.org"
API_ROOT = f"{BASE_URL}/api/"

_UNIQUE_FIELDS = ("name", "code", "shortName")


def make_config(*, retries: int = 0, ratelimit: RateLimit | None = None) -> DHIS2Config:
    return DHIS2Config(
        base_url=BASE_URL,
        resilience=ResilienceConfig(
            name="dhis2",
            base_url=API_ROOT,
            timeout_seconds=5.0,
            retry=RetryPolicy(total=retries, backoff_factor=0.0, backoff_jitter=0.0),
            ratelimit=ratelimit,
            default_headers={
                "Authorization": "ApiToken d2pat_test",
                "Accept": "application/json",
            },
        ),
    )


def client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
    limiters: list[AsyncLimiter | None] | None = None,
) -> ClientFactory:
    """Client factory serving ``handler``; ``limiters`` collects each limiter handed in."""

    def factory(resilience: ResilienceConfig, limiter: AsyncLimiter | None) -> ResilientClient:
        if limiters is not None:
            limiters.append(limiter)
        return ResilientClient(
            resilience, transport=httpx.MockTransport(handler), limiter=limiter
        )

    return factory


def _web_message(status: int, message: str, **extra: Any) -> httpx.Response:
    body = {
        "httpStatus": httpx.codes.get_reason_phrase(status),
        "httpStatusCode": status,
        "status": "OK" if status < 400 else "ERROR",
        "message": message,
        **extra,
    }
    return httpx.Response(status, json=body)


@dataclass
class FakeDHIS2Server:
    """Metadata collections and a data store kept in dicts.

    Only the subset of the Web API the provisioning engine talks to is served: get by
    id, exact-match ``filter`` searches, metadata creation and data-store CRUD.
    """

    collections: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    datastore: dict[tuple[str, str], object] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def add(self, collection: str, obj: dict[str, Any]) -> None:
        self.collections.setdefault(collection, {})[obj["id"]] = obj

    def created(self, collection: str) -> list[dict[str, Any]]:
        bodies: list[dict[str, Any]] = []
        for request in self.requests:
            if request.method == "POST" and request.url.path == f"/api/{collection}":
                bodies.append(json.loads(request.content))
        return bodies

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api/").strip("/")
        parts = path.split("/")
        if parts[0] == "dataStore" and len(parts) == 3:
            return self._datastore(request, parts[1], parts[2])
        if len(parts) == 1 and request.method == "GET":
            return self._search(request, parts[0])
        if len(parts) == 1 and request.method == "POST":
            return self._create(request, parts[0])
        if len(parts) == 2 and request.method == "GET":
            return self._get(parts[0], parts[1])
        return _web_message(405, f"{request.method} {path} is not supported")

    def _get(self, collection: str, object_id: str) -> httpx.Response:
        obj = self.collections.get(collection, {}).get(object_id)
        if obj is None:
            return _web_message(404, f"Object not found: {object_id}")
        return httpx.Response(200, json=obj)

    def _search(self, request: httpx.Request, collection: str) -> httpx.Response:
        field_name, _, value = request.url.params.get("filter", "").partition(":eq:")
        matches = [
            obj
            for obj in self.collections.get(collection, {}).values()
            if obj.get(field_name) == value
        ]
        return httpx.Response(200, json={collection: matches})

    def _create(self, request: httpx.Request, collection: str) -> httpx.Response:
        payload = json.loads(request.content)
        existing = self.collections.get(collection, {}).values()
        for unique_field in _UNIQUE_FIELDS:
            value = payload.get(unique_field)
            if value and any(obj.get(unique_field) == value for obj in existing):
                return _web_message(
                    409,
                    "One or more errors occurred",
                    response={
                        "responseType": "ObjectReport",
                        "errorReports": [
                            {
                                "message": f"Property `{unique_field}` with value `{value}` "
                                "must be unique",
                                "errorCode": "E5003",
                            }
                        ],
                    },
                )
        self.add(collection, payload)
        return _web_message(
            201,
            "Created",
            response={"responseType": "ObjectReport", "uid": payload["id"]},
        )

    def _datastore(self, request: httpx.Request, namespace: str, key: str) -> httpx.Response:
        slot = (namespace, key)
        if request.method == "GET":
            if slot not in self.datastore:
                return _web_message(404, f"Key '{key}' not found in namespace '{namespace}'")
            return httpx.Response(200, json=self.datastore[slot])
        if request.method == "PUT":
            if slot not in self.datastore:
                return _web_message(404, f"Key '{key}' not found in namespace '{namespace}'")
            self.datastore[slot] = json.loads(request.content)
            return _web_message(200, "Key updated")
        if request.method == "POST":
            if slot in self.datastore:
                return _web_message(409, f"Key '{key}' already exists in namespace")
            self.datastore[slot] = json.loads(request.content)
            return _web_message(201, "Key created")
        if request.method == "DELETE":
            if self.datastore.pop(slot, None) is None:
                return _web_message(404, f"Key '{key}' not found in namespace '{namespace}'")
            return _web_message(200, "Key deleted")
        return _web_message(405, f"{request.method} is not supported on the data store")
