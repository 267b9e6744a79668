"""Shared pytest fixtures for gallerysync tests."""

from __future__ import annotations

import json
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from gallerysync.api.main import create_app
from gallerysync.core.config import GallerySyncConfig
from gallerysync.core.content_store import ContentStore
from gallerysync.core.dedup import Deduplicator
from gallerysync.core.moderation import ModerationService
from gallerysync.ingestion.media import MediaMirror
from gallerysync.ingestion.sync import ChannelSync
from gallerysync.ingestion.telegram import TelegramClient

TEST_TOKEN = "123456:TEST-TOKEN"
TEST_CHANNEL = "@ogbongouserartupload"
BASE_URL = "http://testserver"

# Smallest data that still looks like a JPEG to a human reader.
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 128 + b"\xff\xd9"


class FakeTelegramAPI:
    """In-memory Bot API served through ``httpx.MockTransport``.

    ``getUpdates`` honours the ``offset`` parameter like Telegram does
    (returns updates with ``update_id >= offset``).  ``fail_with`` makes the
    next calls fail: ``"timeout"``, ``"network"``, ``"rate_limit"`` or
    ``"malformed"``.
    """

    def __init__(self, channel: str = TEST_CHANNEL):
        self.channel_username = channel.lstrip("@")
        self.updates: list[dict] = []
        self.files: dict[str, bytes] = {}
        self.unavailable_files: set[str] = set()
        self.fail_with: str | None = None
        self.calls: list[str] = []
        self.offsets: list[int | None] = []
        self._next_update_id = 1000
        self._date = 1_700_000_000

    # -- update builders -------------------------------------------------

    def _post(self, message_id: int, caption: str | None, media_group_id: str | None, chat: dict | None, date: int | None) -> dict:
        self._date += 60
        post = {
            "message_id": message_id,
            "chat": chat or {"id": -100123, "type": "channel", "username": self.channel_username},
            "date": date if date is not None else self._date,
        }
        if caption is not None:
            post["caption"] = caption
        if media_group_id is not None:
            post["media_group_id"] = media_group_id
        return post

    def _push(self, post: dict) -> dict:
        update = {"update_id": self._next_update_id, "channel_post": post}
        self._next_update_id += 1
        self.updates.append(update)
        return update

    def post_photo(
        self,
        message_id: int,
        caption: str | None = None,
        media_group_id: str | None = None,
        chat: dict | None = None,
        date: int | None = None,
    ) -> dict:
        post = self._post(message_id, caption, media_group_id, chat, date)
        file_id = f"photo-{message_id}"
        post["photo"] = [
            {"file_id": f"{file_id}-small", "file_unique_id": f"u-{message_id}-s", "width": 90, "height": 90},
            {"file_id": file_id, "file_unique_id": f"u-{message_id}", "width": 1280, "height": 1280},
        ]
        self.files[file_id] = JPEG_BYTES
        return self._push(post)

    def post_document(
        self,
        message_id: int,
        mime_type: str = "image/png",
        caption: str | None = None,
        file_name: str = "art.png",
    ) -> dict:
        post = self._post(message_id, caption, None, None, None)
        file_id = f"doc-{message_id}"
        post["document"] = {
            "file_id": file_id,
            "file_unique_id": f"u-{message_id}",
            "file_name": file_name,
            "mime_type": mime_type,
        }
        self.files[file_id] = JPEG_BYTES
        return self._push(post)

    def post_text(self, message_id: int, text: str = "hello") -> dict:
        post = self._post(message_id, None, None, None, None)
        post["text"] = text
        return self._push(post)

    # -- transport -------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if self.fail_with == "timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        if self.fail_with == "network":
            raise httpx.ConnectError("connection refused", request=request)
        if self.fail_with == "rate_limit":
            return httpx.Response(
                429,
                json={
                    "ok": False,
                    "error_code": 429,
                    "description": "Too Many Requests: retry after 30",
                    "parameters": {"retry_after": 30},
                },
            )
        if self.fail_with == "malformed":
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        if path.startswith("/file/"):
            file_path = path.split("/", 3)[3]
            file_id = Path(file_path).stem
            self.calls.append("download")
            if file_id not in self.files:
                return httpx.Response(404, text="Not Found")
            return httpx.Response(200, content=self.files[file_id])

        method = path.rsplit("/", 1)[-1]
        self.calls.append(method)
        params = json.loads(request.content or b"{}")

        if method == "getUpdates":
            offset = params.get("offset")
            self.offsets.append(offset)
            result = [u for u in self.updates if offset is None or u["update_id"] >= offset]
            return httpx.Response(200, json={"ok": True, "result": result})

        if method == "getFile":
            file_id = params["file_id"]
            if file_id in self.unavailable_files:
                return httpx.Response(
                    400,
                    json={"ok": False, "error_code": 400, "description": "Bad Request: file is too big"},
                )
            return httpx.Response(
                200,
                json={"ok": True, "result": {"file_id": file_id, "file_path": f"photos/{file_id}.jpg"}},
            )

        return httpx.Response(404, json={"ok": False, "error_code": 404, "description": "Not Found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> GallerySyncConfig:
    """Configuration with temporary storage and channel sync disabled."""
    return GallerySyncConfig(
        _env_file=None,
        telegram_bot_token=None,
        telegram_channel=TEST_CHANNEL,
        database_path=temp_dir / "data" / "gallery.db",
        uploads_dir=temp_dir / "uploads",
        media_dir=temp_dir / "media",
        public_base_url=BASE_URL,
        auto_sync=False,
    )


@pytest.fixture
def sync_config(test_config: GallerySyncConfig) -> GallerySyncConfig:
    """Same as ``test_config`` but with a bot token (sync enabled, not scheduled)."""
    return test_config.model_copy(update={"telegram_bot_token": TEST_TOKEN})


@pytest.fixture
def store(test_config: GallerySyncConfig) -> ContentStore:
    return ContentStore(test_config.database_path)


@pytest.fixture
def moderation(store: ContentStore) -> ModerationService:
    return ModerationService(store, BASE_URL)


@pytest.fixture
def dedup(store: ContentStore) -> Deduplicator:
    return Deduplicator(store)


@pytest.fixture
def fake_telegram() -> FakeTelegramAPI:
    return FakeTelegramAPI()


@pytest.fixture
def telegram_client(fake_telegram: FakeTelegramAPI) -> TelegramClient:
    return TelegramClient(TEST_TOKEN, timeout=1.0, transport=fake_telegram.transport)


@pytest.fixture
def channel_sync(
    telegram_client: TelegramClient,
    dedup: Deduplicator,
    test_config: GallerySyncConfig,
) -> ChannelSync:
    mirror = MediaMirror(telegram_client, test_config.media_dir, BASE_URL, max_bytes=1024 * 1024)
    return ChannelSync(
        telegram_client,
        dedup,
        mirror,
        channel=TEST_CHANNEL,
        cycle_timeout=5.0,
    )


@pytest.fixture
def sample_file_refs() -> list[dict]:
    return [
        {"filename": "a1.jpg", "original_filename": "first.jpg", "content_type": "image/jpeg", "size": 10},
        {"filename": "b2.png", "original_filename": "second.png", "content_type": "image/png", "size": 20},
    ]


@pytest.fixture
def test_client(test_config: GallerySyncConfig) -> Generator[TestClient, None, None]:
    """TestClient for an app without channel sync."""
    with TestClient(create_app(test_config)) as client:
        yield client


@pytest.fixture
def sync_client(
    sync_config: GallerySyncConfig,
    fake_telegram: FakeTelegramAPI,
) -> Generator[TestClient, None, None]:
    """TestClient for an app whose Bot API is ``fake_telegram``."""
    app = create_app(sync_config, telegram_transport=fake_telegram.transport)
    with TestClient(app) as client:
        yield client
