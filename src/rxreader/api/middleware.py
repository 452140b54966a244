"""Middleware: API key authentication."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from rxreader.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)
_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _presented_keys(
    credentials: HTTPAuthorizationCredentials | None, header_key: str | None
) -> list[str]:
    keys = [header_key] if header_key else []
    if credentials is not None:
        keys.append(credentials.credentials)
    return keys


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    header_key: Annotated[str | None, Depends(_header_scheme)],
) -> None:
    """Check the request against the configured API key.

    If no API key is configured (RXREADER_API_KEY not set), all requests pass.
    Otherwise the key is accepted either as 'Authorization: Bearer <key>' or as
    an 'X-API-Key: <key>' header.
    """
    settings = _get_settings_from_request(request)
    if settings.api_key is None:
        return

    expected = settings.api_key.encode()
    if any(secrets.compare_digest(key.encode(), expected) for key in _presented_keys(credentials, header_key)):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )
