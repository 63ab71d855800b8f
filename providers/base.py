"""
HTTP plumbing shared by every partner gateway.

Transport failures, timeouts, 429 and 5xx answers become ProviderUnavailable;
any other answer is handed back normalized (snake_case keys, ``data``
envelope flattened) for the gateway to interpret.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from errors import ProviderUnavailable
from utils.case import normalize_provider_payload

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class ProviderResponse:
    status_code: int
    data: dict[str, Any]
    raw: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class ProviderOutcome:
    """Canonical answer of a gateway call; nothing provider-specific leaks past this."""

    success: bool
    reference: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


class ProviderClient:
    name = "provider"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> ProviderResponse:
        merged = {**self._headers(), **(headers or {})}
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json, headers=merged)
        except httpx.HTTPError as e:
            logger.warning("%s %s %s failed: %r", self.name, method, path, e)
            raise ProviderUnavailable(
                f"{self.name} service is unreachable, please retry",
                details={"provider": self.name},
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text[:500]}

        if response.status_code in RETRYABLE_STATUS:
            logger.warning("%s %s %s answered %s: %s", self.name, method, path, response.status_code, body)
            raise ProviderUnavailable(
                f"{self.name} service is temporarily unavailable",
                details={"provider": self.name, "provider_status": response.status_code},
            )
        return ProviderResponse(
            status_code=response.status_code,
            data=normalize_provider_payload(body),
            raw=body,
        )

    async def _post(self, path: str, payload: dict[str, Any], **kwargs) -> ProviderResponse:
        return await self._request("POST", path, json=payload, **kwargs)

    async def _get(self, path: str, **kwargs) -> ProviderResponse:
        return await self._request("GET", path, **kwargs)
