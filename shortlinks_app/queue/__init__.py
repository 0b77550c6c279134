"""
Event channel module for URL shortener.
Implements Strategy Pattern for flexible transport backends.
"""

from .models import (
    ClickEvent,
    Event,
    QueueMessage,
    QueueName,
    URLAnalyticsEvent,
    UserActivityEvent,
)
from .strategies import QueueStrategy, RedisStreamQueue, InMemoryQueue
from .scheduling import AsyncioScheduler, ScheduledCall, Scheduler
from .channel import ConnectionState, EventChannel
from .factory import QueueBackend, QueueFactory

__all__ = [
    "AsyncioScheduler",
    "ClickEvent",
    "ConnectionState",
    "Event",
    "EventChannel",
    "InMemoryQueue",
    "QueueBackend",
    "QueueFactory",
    "QueueMessage",
    "QueueName",
    "QueueStrategy",
    "RedisStreamQueue",
    "ScheduledCall",
    "Scheduler",
    "URLAnalyticsEvent",
    "UserActivityEvent",
]
