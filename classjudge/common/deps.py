"""Shared FastAPI dependencies for authentication and authorization.

Tokens are issued by the platform's auth service; this service only verifies
the bearer JWT and reads the identity claims from it.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from classjudge.core.config import get_settings


logger = logging.getLogger("auth.deps")
security = HTTPBearer(auto_error=True)

STAFF_ROLES = frozenset({"teacher", "admin"})


class CurrentUser(BaseModel):
    """Minimal user identity shared across endpoints."""
    id: int
    email: Optional[str] = None
    role: str = "student"

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    settings = get_settings()
    if not settings.jwt_secret:
        logger.error("JWT_SECRET not configured; rejecting request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials")
    try:
        claims = jwt.decode(credentials.credentials, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials") from exc

    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing subject")

    current = CurrentUser(id=user_id, email=claims.get("email"), role=(claims.get("role") or "student").lower())
    logger.info(
        "auth_resolved user_id=%s role=%s request_id=%s path=%s",
        current.id,
        current.role,
        getattr(request.state, "request_id", None),
        request.url.path,
    )
    return current


def require_staff():
    async def _dep(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not current_user.is_staff:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Teacher or admin role required")
        return current_user

    return _dep
