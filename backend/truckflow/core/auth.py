"""Dispatcher-aware auth dependency for API routes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from truckflow.core.config import get_settings
from truckflow.core.logging import logger


security = HTTPBearer(auto_error=False)


@dataclass
class DispatcherContext:
    dispatcher_id: Optional[int]
    authenticated: bool
    actor: str


def _parse_dispatcher_id(value: str | None) -> Optional[int]:
    text = (value or "").strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid dispatcher id '{value}'",
        )


def _parse_dispatcher_tokens(raw: str) -> Dict[str, int]:
    """Parse `token:dispatcher_id` comma-separated values from env."""
    mapping: Dict[str, int] = {}
    if not raw.strip():
        return mapping

    for segment in raw.split(","):
        item = segment.strip()
        if not item:
            continue
        if ":" not in item:
            logger.warning("Ignoring malformed dispatcher token mapping entry", entry=item)
            continue
        token, dispatcher = item.split(":", 1)
        token = token.strip()
        dispatcher = dispatcher.strip()
        if not token or not dispatcher.isdigit():
            logger.warning("Ignoring malformed dispatcher token mapping entry", entry=item)
            continue
        mapping[token] = int(dispatcher)
    return mapping


def get_dispatcher_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    x_dispatcher_id: str | None = Header(default=None, alias="X-Dispatcher-ID"),
) -> DispatcherContext:
    """Resolve the calling dispatcher from a bearer token or header."""
    settings = get_settings()

    if not settings.auth_enabled:
        dispatcher_id = _parse_dispatcher_id(x_dispatcher_id)
        return DispatcherContext(
            dispatcher_id=dispatcher_id,
            authenticated=False,
            actor="anonymous" if dispatcher_id is None else f"dispatcher:{dispatcher_id}",
        )

    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Bearer token required",
        )

    token_map = _parse_dispatcher_tokens(settings.dispatcher_tokens)
    dispatcher_id = token_map.get(credentials.credentials.strip())
    if dispatcher_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid bearer token",
        )

    requested = _parse_dispatcher_id(x_dispatcher_id)
    if requested is not None and requested != dispatcher_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token dispatcher mismatch",
        )

    return DispatcherContext(
        dispatcher_id=dispatcher_id,
        authenticated=True,
        actor=f"dispatcher:{dispatcher_id}",
    )
