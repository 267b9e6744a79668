"""Telegram Bot API transport.

Thin async wrapper over the three Bot API operations the ingestion adapter
needs: ``getUpdates``, ``getFile`` and downloading a file.  Every request
carries the client's timeout.  All failures are raised as
:class:`~gallerysync.core.errors.TransportError` (or its subclass
:class:`TelegramApiError` when the API answered with ``ok: false``).

The bot token is part of every URL, so URLs are never logged or put into
exception messages.

Usage::

    async with TelegramClient(token, timeout=10.0) as telegram:
        updates = await telegram.get_updates(offset=None)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from gallerysync.core.errors import TransportError

logger = logging.getLogger(__name__)


class TelegramApiError(TransportError):
    """The Bot API answered ``ok: false``.

    Attributes:
        error_code: The API's error code (HTTP-like, e.g. 400, 401, 429).
    """

    def __init__(self, message: str, error_code: int | None = None, retry_after: float | None = None):
        super().__init__(message, retry_after=retry_after)
        self.error_code = error_code


class TelegramClient:
    """Async Bot API client with bounded per-request timeouts.

    Args:
        token: Bot API token.
        api_base: Base URL of the Bot API.
        timeout: Seconds allowed for each request.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "TelegramClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _method_url(self, method: str) -> str:
        return f"{self._api_base}/bot{self._token}/{method}"

    def file_url(self, file_path: str) -> str:
        """Download URL for a ``file_path`` returned by ``getFile``.

        The URL embeds the bot token and must not be published.
        """
        return f"{self._api_base}/file/bot{self._token}/{file_path}"

    async def call(self, method: str, **params: Any) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises:
            TelegramApiError: The API answered ``ok: false`` (incl. rate limits).
            TransportError: Network failure, timeout or malformed response.
        """
        payload = {key: value for key, value in params.items() if value is not None}
        try:
            response = await self._client.post(self._method_url(method), json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {type(e).__name__}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                f"{method} returned a malformed response (HTTP {response.status_code})"
            ) from e

        if not isinstance(body, dict) or "ok" not in body:
            raise TransportError(f"{method} returned an unexpected payload")

        if not body["ok"]:
            parameters = body.get("parameters") or {}
            error_code = body.get("error_code", response.status_code)
            raise TelegramApiError(
                f"{method} failed with {error_code}: {body.get('description', 'no description')}",
                error_code=error_code,
                retry_after=parameters.get("retry_after"),
            )

        return body.get("result")

    async def get_updates(
        self,
        offset: int | None = None,
        limit: int = 100,
        allowed_updates: tuple[str, ...] = ("channel_post", "message"),
    ) -> list[dict[str, Any]]:
        """Fetch pending updates after ``offset`` (short poll).

        Passing an offset also confirms every update below it to Telegram.
        """
        result = await self.call(
            "getUpdates",
            offset=offset,
            limit=limit,
            timeout=0,
            allowed_updates=list(allowed_updates),
        )
        if not isinstance(result, list):
            raise TransportError("getUpdates returned a non-list result")
        return result

    async def get_file(self, file_id: str) -> dict[str, Any]:
        """Resolve a ``file_id`` to file metadata including ``file_path``."""
        result = await self.call("getFile", file_id=file_id)
        if not isinstance(result, dict):
            raise TransportError("getFile returned a non-object result")
        return result

    async def download(self, file_path: str, max_bytes: int) -> bytes:
        """Download a file, refusing bodies larger than ``max_bytes``.

        Raises:
            TelegramApiError: Non-200 answer from the file endpoint.
            TransportError: Network failure, timeout or oversized body.
        """
        try:
            async with self._client.stream("GET", self.file_url(file_path)) as response:
                if response.status_code != 200:
                    raise TelegramApiError(
                        f"File download failed with HTTP {response.status_code}",
                        error_code=response.status_code,
                    )
                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > max_bytes:
                        raise TelegramApiError(
                            f"File exceeds {max_bytes} bytes", error_code=413
                        )
                    chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise TransportError("File download timed out") from e
        except httpx.HTTPError as e:
            raise TransportError(f"File download failed: {type(e).__name__}") from e

        return b"".join(chunks)
