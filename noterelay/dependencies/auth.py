"""
Authentication dependencies for FastAPI.

The management surface is protected by a single static admin token.
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from noterelay.config import settings


# Security scheme
security = HTTPBearer(auto_error=False)


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(security)
) -> str:
    """
    Dependency that requires the admin bearer token.

    Returns the token if valid, raises 401 otherwise.

    Usage:
        @router.get("/admin")
        async def admin_route(_: str = Depends(require_admin)):
            ...
    """
    token = credentials.credentials if credentials else ""

    if not token or not hmac.compare_digest(token.encode(), settings.ADMIN_TOKEN.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token
