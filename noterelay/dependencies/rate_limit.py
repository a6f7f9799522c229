"""
Rate limit dependency for FastAPI routes.
"""
from fastapi import Request, HTTPException, Depends
from noterelay.services.rate_limiter import RateLimiter, rate_limiter


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


async def check_rate_limit(request: Request, limiter: RateLimiter = Depends(get_rate_limiter)):
    """
    Check rate limit for the calling client address.

    Raises 429 if limit exceeded.
    """
    client_id = request.client.host if request.client else "unknown"
    allowed, retry_after = await limiter.is_allowed(client_id)

    if not allowed:
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after)}
        )
