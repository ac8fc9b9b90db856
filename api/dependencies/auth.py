"""
Bearer token authentication for API routes
"""
import logging
from typing import Any, Dict

from fastapi import Depends, HTTPException, Request, status

from app.repositories.user_repository import UserRepository
from app.security import decode_access_token
from .services import get_user_repository

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    repo: UserRepository = Depends(get_user_repository),
) -> Dict[str, Any]:
    """Resolve the user behind `Authorization: Bearer <token>`."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(token.strip())
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    user = await repo.get_by_id(payload["user_id"])
    if user is None:
        logger.warning(f"[AUTH] Token for unknown user {payload['user_id']}")
        raise _unauthorized("Invalid or expired token")
    return user
