"""Owner authentication middleware.

Resolves the owning user of each request and stores it on
request.state.owner_id. Owner tokens are read from OWNER_TOKENS
("token:owner_id" pairs, comma-separated).

Two modes:
  1. Token mode (OWNER_TOKENS set): Authorization: Bearer <token>
  2. Dev mode (OWNER_TOKENS empty): X-Owner-Id header, trusted as-is

Routers enforce presence through get_owner_id (401 when absent).

Exempt paths: /health, /docs, /openapi.json, /redoc, /
"""

from __future__ import annotations

import logging
import secrets

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.config import parse_owner_tokens, settings

logger = logging.getLogger(__name__)

# Paths that don't require authentication
_EXEMPT_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc", "/"})

DEV_OWNER_HEADER = "X-Owner-Id"


class OwnerAuthMiddleware(BaseHTTPMiddleware):
    """Maps a Bearer token (or the dev header) to an owner id."""

    async def dispatch(self, request: Request, call_next):
        request.state.owner_id = None
        tokens = parse_owner_tokens(settings.owner_tokens)

        # Dev mode: no tokens configured → trust the owner header
        if not tokens:
            owner = request.headers.get(DEV_OWNER_HEADER, "").strip()
            request.state.owner_id = owner or None
            return await call_next(request)

        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing authentication. Use Authorization: Bearer <token>"},
            )

        owner = self._resolve_owner(auth_header[7:], tokens)
        if owner is None:
            logger.warning(
                "Invalid owner token from %s on %s",
                request.client.host if request.client else "unknown",
                request.url.path,
            )
            return JSONResponse(status_code=401, content={"detail": "Invalid token."})

        request.state.owner_id = owner
        return await call_next(request)

    @staticmethod
    def _resolve_owner(token: str, tokens: dict[str, str]) -> str | None:
        """Constant-time comparison against every configured token."""
        owner = None
        for candidate, candidate_owner in tokens.items():
            if secrets.compare_digest(token.encode(), candidate.encode()):
                owner = candidate_owner
        return owner


def get_owner_id(request: Request) -> str:
    """FastAPI dependency: the authenticated owner id, else 401."""
    owner = getattr(request.state, "owner_id", None)
    if not owner:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return owner
