"""Telegram channel ingestion.

- **items**: Canonical content items and normalization of raw updates
- **telegram**: Bot API client (httpx)
- **media**: Mirroring of channel media behind public URLs
- **sync**: Polling cycles, push ingestion and scheduling
"""
