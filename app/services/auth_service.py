import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AuthenticationError(Exception):
    """Exception raised for bad credentials or an unusable token."""
    pass


def authenticate(username: str, password: str) -> str:
    """
    Check the admin credentials and issue an access token.

    Raises:
        AuthenticationError: If the credentials don't match
    """
    settings = get_settings()
    user_ok = secrets.compare_digest(username.encode(), settings.AUTH_USERNAME.encode())
    pass_ok = secrets.compare_digest(password.encode(), settings.AUTH_PASSWORD.encode())
    if not (user_ok and pass_ok):
        logger.warning(f"Failed login attempt for '{username}'")
        raise AuthenticationError("Invalid credentials")
    return create_access_token(username)


def create_access_token(username: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT for username."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.JWT_EXPIRES_HOURS))
    payload = {"sub": username, "iat": now, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT.

    Raises:
        AuthenticationError: If the token is expired or invalid
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid token") from e


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """
    Dependency guarding the product routes.

    Does nothing unless AUTH_REQUIRED is enabled; then a valid bearer
    token is required and its subject is returned.
    """
    if not get_settings().AUTH_REQUIRED:
        return None

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = verify_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload.get("sub")
