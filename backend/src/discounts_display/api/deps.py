"""FastAPI dependencies for database sessions, authentication and shared state."""
import structlog
import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from discounts_display.auth.jwt import jwt_auth
from discounts_display.auth.storefront import StorefrontAuthenticator
from discounts_display.database import get_db  # noqa: F401
from discounts_display.middleware.rate_limit import RateLimiter

logger = structlog.get_logger(__name__)

# HTTP Bearer token security scheme for admin endpoints
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """
    Get the calling operator from the admin JWT.

    Returns:
        dict: Decoded token claims

    Raises:
        HTTPException: If token is invalid, expired, or missing
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials

    try:
        payload = jwt_auth.verify_access_token(token)
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info("user_authenticated", user_id=payload.get("sub"))
    return payload


def get_rate_limiter(request: Request) -> RateLimiter:
    """Rate limiter owned by the running application."""
    return request.app.state.rate_limiter


def get_authenticator(request: Request) -> StorefrontAuthenticator:
    """Storefront authenticator owned by the running application."""
    return request.app.state.storefront_authenticator
