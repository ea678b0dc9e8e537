"""Runtime configuration read from environment variables."""
import os
from dataclasses import dataclass, field
from typing import Optional


def _int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back on bad values."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """Table names, cache and auth settings for the sync layer."""
    aws_region: str = field(
        default_factory=lambda: os.environ.get('AWS_REGION', 'us-east-1')
    )
    events_table: str = field(
        default_factory=lambda: os.environ.get('EVENTS_TABLE', 'events')
    )
    attendees_table: str = field(
        default_factory=lambda: os.environ.get('ATTENDEES_TABLE', 'event_attendees')
    )
    bookmarks_table: str = field(
        default_factory=lambda: os.environ.get('BOOKMARKS_TABLE', 'event_bookmarks')
    )
    feedback_table: str = field(
        default_factory=lambda: os.environ.get('FEEDBACK_TABLE', 'event_feedback')
    )
    users_table: str = field(
        default_factory=lambda: os.environ.get('USERS_TABLE', 'users')
    )
    attendees_event_index: str = field(
        default_factory=lambda: os.environ.get('ATTENDEES_EVENT_INDEX', 'event-index')
    )
    cache_ttl_seconds: int = field(
        default_factory=lambda: _int('CACHE_TTL_SECONDS', 300)
    )
    placeholder_image: str = field(
        default_factory=lambda: os.environ.get(
            'PLACEHOLDER_IMAGE', 'assets/images/event-placeholder.png'
        )
    )
    cognito_client_id: Optional[str] = field(
        default_factory=lambda: os.environ.get('COGNITO_CLIENT_ID') or None
    )
    stream_poll_seconds: int = field(
        default_factory=lambda: _int('STREAM_POLL_SECONDS', 5)
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get('LOG_LEVEL', 'INFO')
    )


def load_settings() -> Settings:
    """Build a Settings snapshot from the current environment."""
    return Settings()
