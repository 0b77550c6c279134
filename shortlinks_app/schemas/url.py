import math
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, HttpUrl, Field, TypeAdapter, computed_field, ConfigDict, field_validator

from shortlinks_app.config import settings

_http_url = TypeAdapter(HttpUrl)


def check_original_url(value: str) -> str:
    """
    Require a non-empty absolute http(s) URL.

    The string is returned unchanged: HttpUrl would normalize it (trailing
    slash etc.) and redirects must return exactly what was stored.

    Raises:
        ValueError: If the URL is empty or not absolute
    """
    if not value or not value.strip():
        raise ValueError("original_url must not be empty")
    try:
        _http_url.validate_python(value)
    except ValueError:
        raise ValueError("original_url must be an absolute http(s) URL") from None
    return value


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class URLCreate(BaseModel):
    original_url: str = Field(..., description="The original URL to be shortened")
    custom_short_code: Optional[str] = Field(
        None, min_length=3, max_length=10, description="Optional caller-chosen short code"
    )
    expires_at: Optional[datetime] = Field(None, description="When the short URL stops redirecting")

    @field_validator("original_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return check_original_url(value)


class URLUpdate(BaseModel):
    """Partial update; only fields that were sent are applied."""
    original_url: Optional[str] = None
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None

    @field_validator("original_url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        return check_original_url(value) if value is not None else None

    def changes(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if "original_url" in data and data["original_url"] is None:
            # original_url is NOT NULL; an explicit null means "leave it"
            del data["original_url"]
        if "is_active" in data and data["is_active"] is None:
            del data["is_active"]
        if "expires_at" in data:
            data["expires_at"] = as_utc(data["expires_at"])
        return data


class ClickMetadata(BaseModel):
    """Raw request metadata forwarded on click events"""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referrer: Optional[str] = None


class NewShortUrl(BaseModel):
    """Insert candidate handed to the store"""
    original_url: str
    short_code: str
    owner_id: str
    expires_at: Optional[datetime] = None


class ShortUrlRecord(BaseModel):
    """
    Detached snapshot of a ShortUrl row.

    This is what the store returns and what the cache serializes, so both
    read paths hand the service the same type.
    """
    id: str
    original_url: str
    short_code: str
    owner_id: str
    clicks: int = 0
    is_active: bool = True
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) > self.expires_at

    @computed_field
    @property
    def short_url(self) -> str:
        return f"{settings.base_url}/{self.short_code}"


class URLResponse(BaseModel):
    """Create response: the fields a caller needs right after shortening"""
    id: str
    original_url: str
    short_code: str
    short_url: str
    clicks: int
    expires_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class URLAnalytics(ShortUrlRecord):
    """Analytics view of one URL (record plus derived short_url)"""


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit))


class URLPage(BaseModel):
    rows: List[ShortUrlRecord]
    pagination: Pagination
