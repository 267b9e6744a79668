"""Core components of gallerysync.

- **config**: Configuration management using Pydantic Settings
- **errors**: Error taxonomy mapped to HTTP status codes by the API
- **content_store**: SQLite store for submissions and gallery items
- **uploads**: Validation and storage of submitted files
- **moderation**: Submission state machine (pending → approved | rejected)
- **dedup**: Idempotent admission of channel items
- **gallery**: Merged, ordered gallery feed and statistics
"""
