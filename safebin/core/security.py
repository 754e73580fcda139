"""Bearer-token guard for the mutating trash endpoints."""

from __future__ import annotations

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def token_matches(presented: str, expected: str) -> bool:
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_api_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """Reject the request unless it carries the configured API token.

    With no ``api_token`` configured every request is refused.
    """

    expected = request.app.state.settings.api_token
    if not expected:
        logger.warning("Refused %s %s: no API token configured", request.method, request.url.path)
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail="API token not configured",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if credentials is None or not token_matches(credentials.credentials, expected):
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
