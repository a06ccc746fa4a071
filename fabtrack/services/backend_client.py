from __future__ import annotations

import logging
from typing import Any

import httpx


LOGGER = logging.getLogger("fabtrack.backend")
DEFAULT_TIMEOUT_SECONDS = 10.0
_MESSAGE_KEYS = ("message", "detail", "error", "title")


class BackendError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendUnauthorized(BackendError):
    pass


class BackendUnavailable(BackendError):
    pass


def extract_error_message(response: httpx.Response) -> str | None:
    """Pull a human readable message out of an error body, if it has one."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, str):
        return payload.strip() or None
    if not isinstance(payload, dict):
        return None
    for key in _MESSAGE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    errors = payload.get("errors")
    if isinstance(errors, dict):
        for messages in errors.values():
            if isinstance(messages, list) and messages:
                return str(messages[0])
    return None


class BackendClient:
    """JSON-over-HTTP access to the FabTrack backend for one bearer token."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(self, method: str, path: str, payload: Any = None) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            LOGGER.warning("Backend timeout method=%s path=%s", method, path)
            raise BackendUnavailable("Request timed out") from exc
        except httpx.HTTPError as exc:
            LOGGER.warning("Backend unreachable method=%s path=%s error=%s", method, path, exc)
            raise BackendUnavailable("Could not reach the FabTrack server.") from exc

        status = response.status_code
        if status == 401:
            LOGGER.info("Backend rejected token method=%s path=%s", method, path)
            raise BackendUnauthorized(extract_error_message(response) or "Unauthorized", status)
        if status >= 400:
            message = extract_error_message(response) or f"Request failed with status {status}"
            LOGGER.warning("Backend error method=%s path=%s status=%s message=%s", method, path, status, message)
            raise BackendError(message, status)

        if not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError("Unexpected response from server.", status) from exc

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, payload: Any = None) -> Any:
        return await self.request("POST", path, payload)

    async def put(self, path: str, payload: Any = None) -> Any:
        return await self.request("PUT", path, payload)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
