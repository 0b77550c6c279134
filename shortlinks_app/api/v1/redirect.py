from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from shortlinks_app.schemas.url import ClickMetadata
from shortlinks_app.services.url_service import URLService
from shortlinks_app.dependencies import get_url_service

router = APIRouter(tags=["redirect"])


@router.get("/{short_code}")
async def redirect_to_original_url(
    short_code: str,
    request: Request,
    url_service: URLService = Depends(get_url_service)
):
    """
    Redirect to the original URL.

    The click is counted in the store before responding; the cached counter
    and the click event are handed off and never delay the redirect.
    302 rather than 301 so browsers don't cache the redirect and skip counting.
    """
    original_url = await url_service.resolve_redirect(
        short_code,
        ClickMetadata(
            user_agent=request.headers.get("user-agent"),
            ip_address=request.client.host if request.client else None,
            referrer=request.headers.get("referer"),
        ),
    )
    return RedirectResponse(url=original_url, status_code=status.HTTP_302_FOUND)
