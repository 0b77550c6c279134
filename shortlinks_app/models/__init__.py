"""
Database models for the URL shortener.

Note: Raw click events are not stored here. They travel over the event channel
and are written to separate hit storage by the worker.
"""

from .url import ShortUrl

__all__ = ["ShortUrl"]
