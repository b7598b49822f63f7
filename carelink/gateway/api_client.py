"""
Shared HTTP plumbing for the remote directory / data-store API.

Both collaborators live behind the same base URL and the same
``api_key`` header, so the request/response handling is kept here.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from carelink import settings

logger = logging.getLogger("gateway.api_client")


class ApiError(Exception):
    """
    A remote call that did not produce a usable response.

    ``status_code`` is the HTTP status for non-success responses and
    None when the request never completed (DNS, refused, timeout...).
    """

    def __init__(self, message: str, status_code: int | None = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None


class ApiClient:
    """Thin async wrapper over httpx for the remote API."""

    def __init__(
        self,
        base_url: str = settings.API_BASE_URL,
        api_key: str = settings.API_KEY,
        timeout: float = settings.HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["api_key"] = self._api_key
        return headers

    async def request_json(
        self, method: str, path: str, json: Any = None
    ) -> Any:
        """
        Perform one request and return the decoded JSON body.

        Raises ApiError for a missing base URL, transport failures,
        non-2xx responses and undecodable bodies.
        """
        if not self.configured:
            raise ApiError("API_BASE_URL not configured")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, json=json, headers=self._headers()
                )
        except httpx.HTTPError as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if not response.is_success:
            raise ApiError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=response.text,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(
                f"{method} {path} returned invalid JSON",
                status_code=response.status_code,
                detail=response.text,
            ) from exc
