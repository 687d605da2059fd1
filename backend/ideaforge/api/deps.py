"""
Idea Forge - API Dependencies
=============================

Shared dependencies for FastAPI endpoints.

Tokens are issued elsewhere; this service only verifies the bearer JWT
and exposes its subject.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ideaforge.core.config import settings
from ideaforge.core.generation.services import GenerationServices


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)


# ==========================================================================
# Token Utilities
# ==========================================================================

def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a new access token.

    Args:
        subject: Token subject (user or client id)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "exp": now + expires_delta,
        "iat": now,
        "type": "access",
        "jti": secrets.token_hex(16),
    }

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def subject_from_token(token: str) -> str:
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return subject


# ==========================================================================
# Auth Dependencies
# ==========================================================================

async def get_current_subject(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> str:
    """
    Get the authenticated subject from the bearer token.

    Raises:
        HTTPException: If not authenticated
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return subject_from_token(credentials.credentials)


async def get_stream_subject(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    token: Optional[str] = None,
) -> str:
    """
    Like get_current_subject, but also accepts ``?token=`` since
    EventSource clients cannot set headers.
    """
    if credentials is not None:
        return subject_from_token(credentials.credentials)
    if token:
        return subject_from_token(token)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


# ==========================================================================
# Engine Dependencies
# ==========================================================================

def get_services(request: Request) -> GenerationServices:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> GenerationServices:
    return websocket.app.state.services


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

CurrentSubject = Annotated[str, Depends(get_current_subject)]
StreamSubject = Annotated[str, Depends(get_stream_subject)]
Services = Annotated[GenerationServices, Depends(get_services)]
