"""Authentication and authorization helpers for the API.

Clients authenticate with a bearer JWT. The token's ``permissions``
claim must contain the permission configured as ``API_PERMISSION``.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .core import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    subject: str,
    permissions: Iterable[str] = (),
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject (str): Name of the client the token is issued to.
        permissions (Iterable[str]): Permissions granted to the client.
        expires_delta (timedelta | None): Lifetime, defaults to
            ``ACCESS_TOKEN_EXPIRE_MINUTES``.

    Returns:
        str: Encoded token.
    """
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": subject, "permissions": list(permissions), "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def require_api_permission(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Dependency that returns the authenticated subject of an API request."""

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    settings = get_settings()
    try:
        payload = jwt.decode(
            credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        raise credentials_exception
    subject = payload.get("sub")
    if subject is None:
        raise credentials_exception
    if settings.API_PERMISSION not in (payload.get("permissions") or []):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied",
        )
    return subject
