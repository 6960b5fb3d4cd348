"""Shared API dependencies."""

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session

from spreadlab.config import settings
from spreadlab.wiring import Runtime

bearer_scheme = HTTPBearer()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_session(runtime: Runtime = Depends(get_runtime)):
    """Dependency that yields a database session."""
    with Session(runtime.engine) as session:
        yield session


def require_token(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
):
    """Validate the static API bearer token."""
    expected = settings.api_token
    if not expected or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing token",
        )
