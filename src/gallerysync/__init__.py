"""gallerysync - moderated community art gallery fed by uploads and a Telegram channel."""

__version__ = "0.1.0"
