"""
Bearer-token authentication middleware.

Decodes an optional "Authorization: Bearer <jwt>" header and sets
request.state.user_id to the token's subject. Missing or invalid tokens
leave it None; rejecting anonymous callers is left to route dependencies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from lms_tenancy.auth import decode_access_token
from lms_tenancy.exceptions import AuthenticationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from fastapi import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.user_id = None

        token = _bearer_token(request.headers.get("authorization"))
        if token:
            try:
                request.state.user_id = decode_access_token(token)
            except AuthenticationError as e:
                logger.debug("Ignoring bearer token: %s", e.message)

        return await call_next(request)
