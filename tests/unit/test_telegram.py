"""Tests for gallerysync.ingestion.telegram — the Bot API transport.

Tests cover:
- Successful calls returning ``result``.
- Mapping of timeouts, network failures, rate limits and malformed answers
  to TransportError.
- Streaming downloads with a size limit.
"""

from __future__ import annotations

import httpx
import pytest

from gallerysync.core.errors import TransportError
from gallerysync.ingestion.telegram import TelegramApiError, TelegramClient

TOKEN = "123456:TEST-TOKEN"


class TestCall:
    @pytest.mark.asyncio
    async def test_get_updates_returns_result(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.post_photo(1)
        updates = await telegram_client.get_updates()
        assert [update["update_id"] for update in updates] == [1000]
        assert fake_telegram.offsets == [None]

    @pytest.mark.asyncio
    async def test_offset_is_sent(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.post_photo(1)
        fake_telegram.post_photo(2)
        updates = await telegram_client.get_updates(offset=1001)
        assert [update["update_id"] for update in updates] == [1001]
        assert fake_telegram.offsets == [1001]

    @pytest.mark.asyncio
    async def test_timeout(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.fail_with = "timeout"
        with pytest.raises(TransportError, match="timed out"):
            await telegram_client.get_updates()

    @pytest.mark.asyncio
    async def test_network_error(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.fail_with = "network"
        with pytest.raises(TransportError, match="ConnectError"):
            await telegram_client.get_updates()

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.fail_with = "rate_limit"
        with pytest.raises(TelegramApiError) as excinfo:
            await telegram_client.get_updates()
        assert excinfo.value.error_code == 429
        assert excinfo.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_malformed_response(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.fail_with = "malformed"
        with pytest.raises(TransportError, match="malformed"):
            await telegram_client.get_updates()

    @pytest.mark.asyncio
    async def test_token_not_in_error_messages(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.fail_with = "network"
        with pytest.raises(TransportError) as excinfo:
            await telegram_client.get_updates()
        assert TOKEN not in str(excinfo.value)


class TestDownload:
    @pytest.mark.asyncio
    async def test_download(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.post_photo(5)
        info = await telegram_client.get_file("photo-5")
        data = await telegram_client.download(info["file_path"], max_bytes=1024)
        assert data == fake_telegram.files["photo-5"]

    @pytest.mark.asyncio
    async def test_missing_file(self, telegram_client: TelegramClient):
        with pytest.raises(TelegramApiError) as excinfo:
            await telegram_client.download("photos/nope.jpg", max_bytes=1024)
        assert excinfo.value.error_code == 404

    @pytest.mark.asyncio
    async def test_oversized_file(self, fake_telegram, telegram_client: TelegramClient):
        fake_telegram.post_photo(6)
        with pytest.raises(TelegramApiError) as excinfo:
            await telegram_client.download("photos/photo-6.jpg", max_bytes=10)
        assert excinfo.value.error_code == 413

    @pytest.mark.asyncio
    async def test_context_manager_closes_client(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True, "result": []}))
        async with TelegramClient(TOKEN, transport=transport) as client:
            assert await client.get_updates() == []
        with pytest.raises(RuntimeError):
            await client.get_updates()
