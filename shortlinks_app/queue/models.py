"""
Data models for event channel messages.

Messages are JSON-encoded with camelCase keys on the wire; Python code uses
the snake_case attribute names.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueName(str, Enum):
    """Named channels on the event transport"""
    URL_CLICKS = "url_clicks"
    URL_ANALYTICS = "url_analytics"
    USER_ACTIVITIES = "user_activities"


class Event(BaseModel):
    """
    Base class for all channel messages.

    ``event_id`` lets consumers drop duplicates from at-least-once delivery.
    """
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ClickEvent(Event):
    """
    Published on ``url_clicks`` every time a short URL redirects.

    Denormalized so consumers never need a synchronous store lookup.
    """
    short_code: str = Field(..., description="The short code that was accessed")
    url_id: str
    owner_id: str
    original_url: str

    # Request metadata, forwarded raw
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referrer: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "shortCode": "aB3xY9",
                "urlId": "5b0c8f0e-6a55-4cf4-9a87-2f0f5a3f4d0e",
                "ownerId": "user-42",
                "originalUrl": "https://example.com",
                "userAgent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0",
                "ipAddress": "192.168.1.1",
                "referrer": "https://twitter.com",
                "timestamp": "2025-10-29T10:30:00Z",
            }
        }
    )


class URLAnalyticsEvent(Event):
    """Lifecycle event published on ``url_analytics``"""
    url_id: str
    owner_id: str
    action: Literal["created", "updated", "deleted", "viewed"]
    metadata: Optional[Dict[str, Any]] = None


class UserActivityEvent(Event):
    """Audit-style activity event published on ``user_activities``"""
    owner_id: str
    action: str
    resource: str
    resource_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


EVENT_TYPES = {
    QueueName.URL_CLICKS: ClickEvent,
    QueueName.URL_ANALYTICS: URLAnalyticsEvent,
    QueueName.USER_ACTIVITIES: UserActivityEvent,
}


class QueueMessage(BaseModel):
    """A message as handed out by a transport, before acknowledgment"""
    message_id: str
    payload: str
    enqueued_at: float = 0.0

    def decode(self, queue_name: str) -> Event:
        """Parse payload into the event type registered for the channel"""
        event_type = EVENT_TYPES.get(QueueName(queue_name), Event)
        return event_type.model_validate_json(self.payload)
