"""Configuration management for gallerysync.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the GALLERYSYNC_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (GALLERYSYNC_* prefix)
2. .env file in the project root
3. Default values defined in GallerySyncConfig

Example .env file:
    GALLERYSYNC_TELEGRAM_BOT_TOKEN=123456:ABC-DEF
    GALLERYSYNC_TELEGRAM_CHANNEL=@ogbongouserartupload
    GALLERYSYNC_POLL_INTERVAL_SECONDS=300
    GALLERYSYNC_PUBLIC_BASE_URL=https://gallery.example.org

Channel Sync
------------
The Telegram ingestion adapter is only started when ``telegram_bot_token`` is
set.  Without a token the submission and moderation flow still works and the
admin endpoints for manual sync remain available.

Usage Example
-------------
    from gallerysync.core.config import GallerySyncConfig

    cfg = GallerySyncConfig()
    print(cfg.database_path)
    print(cfg.sync_enabled)

There is no module-level instance: importing this module has no side effects.
The application factory and the CLI entry point each build their own
configuration, and building one creates the data directories.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GallerySyncConfig(BaseSettings):
    """Main configuration for gallerysync.

    Attributes
    ----------
    Channel Settings:
        telegram_bot_token : str | None
            Bot API token.  ``None`` disables channel ingestion.
        telegram_channel : str | None
            Channel username (``@name``) or numeric chat id to ingest from.
            ``None`` accepts posts from any chat the bot sees.
        telegram_api_base : str
            Base URL of the Bot API.
        telegram_webhook_secret : str | None
            Expected ``X-Telegram-Bot-Api-Secret-Token`` header on pushes.

    Sync Timing:
        auto_sync : bool
            Start the periodic polling task with the server.  When off, sync
            only runs via the admin trigger or webhook pushes.
        poll_interval_seconds : float
            Delay between polling cycles.
        request_timeout_seconds : float
            Timeout applied to every outbound Bot API call.
        cycle_timeout_seconds : float
            Upper bound on a whole ingestion cycle.

    Storage:
        database_path : Path
            SQLite database file.
        uploads_dir : Path
            Directory for submitted artwork files.
        media_dir : Path
            Directory for media mirrored from the channel.

    Public URLs and Limits:
        public_base_url : str
            Base URL used to build absolute media references.
        max_upload_bytes : int
            Per-file size limit for submissions.
        max_files_per_submission : int
            Maximum number of images in one submission.
        max_media_bytes : int
            Size limit for mirrored channel media.
        external_artist_name : str
            Display name for channel posts without an author signature.

    Server:
        server_host, server_port, log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="GALLERYSYNC_",
        case_sensitive=False,
    )

    # Channel settings
    telegram_bot_token: str | None = Field(
        default=None,
        description="Telegram Bot API token (unset disables channel sync)",
    )
    telegram_channel: str | None = Field(
        default=None,
        description="Channel username (@name) or chat id to ingest from",
    )
    telegram_api_base: str = Field(
        default="https://api.telegram.org",
        description="Base URL of the Telegram Bot API",
    )
    telegram_webhook_secret: str | None = Field(
        default=None,
        description="Secret token expected on webhook pushes",
    )

    # Sync timing
    auto_sync: bool = Field(
        default=True,
        description="Poll the channel periodically while the server runs",
    )
    poll_interval_seconds: float = Field(
        default=300.0,
        description="Seconds between polling cycles",
        ge=1.0,
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for each outbound Bot API call",
        gt=0.0,
        le=120.0,
    )
    cycle_timeout_seconds: float = Field(
        default=60.0,
        description="Upper bound on one ingestion cycle",
        gt=0.0,
    )

    # Storage
    database_path: Path = Field(
        default=Path("data/gallery.db"),
        description="SQLite database file",
    )
    uploads_dir: Path = Field(
        default=Path("uploads/submissions"),
        description="Directory for submitted artwork",
    )
    media_dir: Path = Field(
        default=Path("media"),
        description="Directory for media mirrored from the channel",
    )

    # Public URLs and limits
    public_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL used to build absolute media references",
    )
    max_upload_bytes: int = Field(
        default=5 * 1024 * 1024,
        description="Per-file size limit for submissions",
        ge=1,
    )
    max_files_per_submission: int = Field(default=5, ge=1, le=20)
    max_media_bytes: int = Field(
        default=20 * 1024 * 1024,
        description="Size limit for media mirrored from the channel",
        ge=1,
    )
    external_artist_name: str = Field(
        default="Community Artist",
        description="Artist name for channel posts without a signature",
    )

    # Server settings
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3000, ge=1024, le=65535)
    log_level: str = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        self.media_dir.mkdir(parents=True, exist_ok=True)

    @property
    def sync_enabled(self) -> bool:
        """Whether channel ingestion can run (a bot token is configured)."""
        return bool(self.telegram_bot_token)
