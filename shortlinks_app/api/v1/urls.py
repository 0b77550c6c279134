from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from shortlinks_app.schemas.url import (
    ShortUrlRecord,
    URLAnalytics,
    URLCreate,
    URLPage,
    URLResponse,
    URLUpdate,
)
from shortlinks_app.services.url_service import URLService
from shortlinks_app.dependencies import get_current_owner, get_url_service

router = APIRouter(prefix="/urls", tags=["urls"])


@router.post("/", response_model=URLResponse, status_code=status.HTTP_201_CREATED)
async def create_short_url(
    url_data: URLCreate,
    owner_id: str = Depends(get_current_owner),
    url_service: URLService = Depends(get_url_service)
):
    """Create a new short URL"""
    record = await url_service.create_short_url(
        url_data.original_url,
        owner_id,
        custom_short_code=url_data.custom_short_code,
        expires_at=url_data.expires_at,
    )
    return URLResponse.model_validate(record.model_dump())


@router.get("/", response_model=URLPage)
async def list_urls(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    is_active: Optional[bool] = Query(None),
    owner_id: str = Depends(get_current_owner),
    url_service: URLService = Depends(get_url_service)
):
    """List the caller's URLs, newest first"""
    return await url_service.list_urls(owner_id, page=page, limit=limit, is_active=is_active)


@router.get("/{url_id}", response_model=ShortUrlRecord)
async def get_url_info(
    url_id: str,
    owner_id: str = Depends(get_current_owner),
    url_service: URLService = Depends(get_url_service)
):
    return await url_service.get_url(url_id, owner_id)


@router.get("/{url_id}/analytics", response_model=URLAnalytics)
async def get_url_analytics(
    url_id: str,
    owner_id: str = Depends(get_current_owner),
    url_service: URLService = Depends(get_url_service)
):
    return await url_service.get_url_analytics(url_id, owner_id)


@router.put("/{url_id}", response_model=ShortUrlRecord)
async def update_url(
    url_id: str,
    patch: URLUpdate,
    owner_id: str = Depends(get_current_owner),
    url_service: URLService = Depends(get_url_service)
):
    return await url_service.update_url(url_id, owner_id, patch)


@router.delete("/{url_id}")
async def delete_url(
    url_id: str,
    owner_id: str = Depends(get_current_owner),
    url_service: URLService = Depends(get_url_service)
):
    """Hard delete; the short code is released"""
    record = await url_service.delete_url(url_id, owner_id)
    return {"message": "URL deleted successfully", "id": record.id}
