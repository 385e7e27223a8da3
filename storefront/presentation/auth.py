import hmac
from fastapi import HTTPException, Request, status

from storefront.config import settings


def require_admin(request: Request) -> None:
    """Shared-secret admin cookie gate in front of every admin route"""
    cookie = request.cookies.get(settings.ADMIN_COOKIE_NAME)
    if not settings.ADMIN_SECRET or not cookie or not hmac.compare_digest(cookie, settings.ADMIN_SECRET):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin authorization required")
