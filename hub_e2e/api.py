# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Inspection API: the server-side view used to verify and inject data.

``InspectionApi`` is the protocol the sequencer depends on.
``AppEngineApi`` implements it over HTTP with ``httpx``::

    api = AppEngineApi.from_env()
    names = await api.list_interfaces()
    await api.inject_individual(SERVER_DATASTREAM.name, "/integer_endpoint", Value.integer(1))
    await api.aclose()

Request layout (relative to ``{url}/v1/{realm}/devices/{device_id}``):

===========================  ==========  ====================================
Operation                    Method      Path
===========================  ==========  ====================================
``list_interfaces``          GET         ``/interfaces``
``get_aggregate``            GET         ``/interfaces/{interface}{path}``
``get_individual_values``    GET         ``/interfaces/{interface}``
``get_property_set``         GET         ``/interfaces/{interface}``
``inject_object``            POST        ``/interfaces/{interface}{path}``
``inject_individual``        POST        ``/interfaces/{interface}{path}``
``inject_unset``             DELETE      ``/interfaces/{interface}{path}``
===========================  ==========  ====================================

Bodies are wrapped in ``{"data": ...}`` and values use the text encodings of
:mod:`hub_e2e.codec`.  Non-2xx responses raise ``httpx.HTTPStatusError``.

Logger: ``hub_e2e.api``; every request is logged at DEBUG level.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

from hub_e2e.codec import value_from_json, value_to_json
from hub_e2e.config import ApiConfig
from hub_e2e.errors import AssertionFailure, SchemaError, UnknownFieldError
from hub_e2e.interfaces import ENDPOINT_KINDS, Data, endpoint_path
from hub_e2e.values import Aggregate, Value

__all__ = ["AppEngineApi", "InspectionApi"]

_logger = logging.getLogger("hub_e2e.api")

# Metadata the API adds to stored objects; not part of the record.
_OBJECT_METADATA_KEYS: frozenset[str] = frozenset({"timestamp", "reception_timestamp"})


class InspectionApi(Protocol):
    """Control-plane view of the device used for verification and injection."""

    async def list_interfaces(self) -> list[str]:
        """Return the interface names the device introspection exposes."""
        ...

    async def get_aggregate(self, interface: str, path: str) -> Data:
        """Return the most recent object published at *path*."""
        ...

    async def get_individual_values(self, interface: str) -> dict[str, Value]:
        """Return the latest value per endpoint path of an individual datastream."""
        ...

    async def get_property_set(self, interface: str) -> dict[str, Value]:
        """Return the currently set properties, keyed by endpoint path."""
        ...

    async def inject_object(self, interface: str, path: str, data: Aggregate) -> None:
        """Push an aggregate object to the device."""
        ...

    async def inject_individual(self, interface: str, path: str, value: Value) -> None:
        """Push one individual value to the device."""
        ...

    async def inject_unset(self, interface: str, path: str) -> None:
        """Retract a server-owned property on the device."""
        ...

    async def aclose(self) -> None:
        """Release connections."""
        ...


def _endpoint_values(data: Any, *, wrapped: bool) -> dict[str, Value]:
    """Decode ``{endpoint: value}`` (or ``{endpoint: {"value": ...}}``) into path-keyed values."""
    if not isinstance(data, Mapping):
        raise SchemaError(f"expected a JSON object of endpoints, got {type(data).__name__}")
    values: dict[str, Value] = {}
    for endpoint, raw in data.items():
        kind = ENDPOINT_KINDS.get(endpoint)
        if kind is None:
            raise UnknownFieldError(f"unknown endpoint {endpoint!r}")
        if wrapped:
            if not isinstance(raw, Mapping) or "value" not in raw:
                raise SchemaError("expected a sample with a 'value' key", endpoint=endpoint_path(endpoint))
            raw = raw["value"]
        try:
            values[endpoint_path(endpoint)] = value_from_json(kind, raw)
        except SchemaError as e:
            raise e.at_endpoint(endpoint_path(endpoint)) from None
    return values


class AppEngineApi:
    """HTTP implementation of :class:`InspectionApi`."""

    def __init__(self, config: ApiConfig, *, client: httpx.AsyncClient | None = None) -> None:
        """Initialize with connection settings.

        Args:
            config: API location and credentials.
            client: Optional pre-built client (e.g. with a mock transport);
                a client passed in is not closed by :meth:`aclose`.

        """
        self._config = config
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=config.timeout)
        self._headers = {"Authorization": f"Bearer {config.token}"}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AppEngineApi:
        """Build from ``HUB_E2E_*`` environment variables (see :class:`ApiConfig`)."""
        return cls(ApiConfig.from_env(environ))

    async def _request(self, method: str, suffix: str, *, body: Any = None) -> Any:
        url = f"{self._config.device_url}{suffix}"
        json_body = None if body is None else {"data": body}
        response = await self._client.request(method, url, headers=self._headers, json=json_body)
        _logger.debug(
            "%s %s -> %d",
            method,
            url,
            response.status_code,
            extra={"http_method": method, "url": url, "status": response.status_code},
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def _get_data(self, suffix: str) -> Any:
        body = await self._request("GET", suffix)
        if not isinstance(body, Mapping) or "data" not in body:
            raise SchemaError(f"response to GET {suffix} has no 'data' member")
        return body["data"]

    async def list_interfaces(self) -> list[str]:
        """Return the interface names the device introspection exposes."""
        data = await self._get_data("/interfaces")
        if not isinstance(data, list) or not all(isinstance(name, str) for name in data):
            raise SchemaError("interface list is not a list of strings", actual=data)
        return list(data)

    async def get_aggregate(self, interface: str, path: str) -> Data:
        """Return the most recent object published at *path*.

        Raises:
            AssertionFailure: If nothing was published yet.
            SchemaError: If the stored object does not match the record.

        """
        data = await self._get_data(f"/interfaces/{interface}{path}")
        if isinstance(data, Mapping):
            data = [data]
        if not isinstance(data, list):
            raise SchemaError(f"expected a list of objects, got {type(data).__name__}")
        if not data:
            raise AssertionFailure("missing data from publish", endpoint=path)
        if not isinstance(data[-1], Mapping):
            raise SchemaError(f"expected an object, got {type(data[-1]).__name__}", endpoint=path)
        latest = {k: v for k, v in data[-1].items() if k not in _OBJECT_METADATA_KEYS}
        return Data.from_json(latest)

    async def get_individual_values(self, interface: str) -> dict[str, Value]:
        """Return the latest value per endpoint path of an individual datastream."""
        data = await self._get_data(f"/interfaces/{interface}")
        return _endpoint_values(data, wrapped=True)

    async def get_property_set(self, interface: str) -> dict[str, Value]:
        """Return the currently set properties, keyed by endpoint path."""
        data = await self._get_data(f"/interfaces/{interface}")
        return _endpoint_values(data, wrapped=False)

    async def inject_object(self, interface: str, path: str, data: Aggregate) -> None:
        """Push an aggregate object to the device."""
        body = {endpoint: value_to_json(value) for endpoint, value in data.items()}
        await self._request("POST", f"/interfaces/{interface}{path}", body=body)

    async def inject_individual(self, interface: str, path: str, value: Value) -> None:
        """Push one individual value to the device."""
        await self._request("POST", f"/interfaces/{interface}{path}", body=value_to_json(value))

    async def inject_unset(self, interface: str, path: str) -> None:
        """Retract a server-owned property on the device."""
        await self._request("DELETE", f"/interfaces/{interface}{path}")

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
