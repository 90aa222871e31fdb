import logging
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from pydantic import BaseModel

from . import config
from .shared.validators import validate_user_id

logger = logging.getLogger(__name__)

security = HTTPBearer()


class CurrentUser(BaseModel):
    """Verified identity supplied by the host auth layer"""

    id: str
    email: Optional[str] = None


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify a bearer JWT issued by the host auth provider.

    Raises:
        HTTPException(401) on a bad signature, expiry, audience or missing secret
    """
    if not config.AUTH_JWT_SECRET:
        logger.error("❌ AUTH_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    try:
        return jose_jwt.decode(
            token,
            config.AUTH_JWT_SECRET,
            algorithms=[config.AUTH_JWT_ALGORITHM],
            audience=config.AUTH_JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


def user_from_token(token: str) -> CurrentUser:
    claims = decode_access_token(token)
    user_id = claims.get("sub")
    if not validate_user_id(user_id):
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return CurrentUser(id=user_id, email=claims.get("email"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Get current user from the bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )
    return user_from_token(credentials.credentials)
