from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal, TypedDict

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .app_db import USER_ROLES, get_user_by_id
from .config import settings

logger = logging.getLogger(__name__)

TOKEN_COOKIE_NAME = "attendance_token"
bearer_scheme = HTTPBearer(auto_error=False)

Role = Literal["admin", "preparer", "checker"]


class AuthUser(TypedDict):
    id: int
    email: str
    username: str
    role: Role


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def create_access_token(user: AuthUser) -> tuple[str, int]:
    lifetime = timedelta(minutes=settings.jwt_expires_minutes)
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user["id"]),
        "username": user["username"],
        "role": user["role"],
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, int(lifetime.total_seconds())


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Session expired") from exc
    except jwt.PyJWTError as exc:
        raise _unauthorized("Invalid token") from exc


def _token_from_request(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
) -> str:
    # Bearer header wins over the browser cookie.
    if credentials is not None:
        if credentials.scheme.lower() != "bearer":
            raise _unauthorized("Invalid authentication scheme")
        return credentials.credentials

    token = request.cookies.get(TOKEN_COOKIE_NAME)
    if not token:
        raise _unauthorized("Not authenticated")
    return token


def _user_id_from_claims(claims: dict[str, Any]) -> int:
    subject = claims.get("sub")
    if subject is None:
        raise _unauthorized("Token subject missing")
    try:
        return int(str(subject))
    except ValueError as exc:
        raise _unauthorized("Invalid token subject") from exc


def auth_user_from_row(user: dict[str, Any]) -> AuthUser:
    return {
        "id": int(user["id"]),
        "email": str(user.get("email") or ""),
        "username": str(user.get("username") or ""),
        "role": str(user.get("role") or ""),  # type: ignore[typeddict-item]
    }


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthUser:
    claims = decode_access_token(_token_from_request(request, credentials))
    user = get_user_by_id(_user_id_from_claims(claims))

    if not user or not user.get("is_active"):
        raise _unauthorized("User not found or inactive")
    if user.get("role") not in USER_ROLES:
        logger.warning("User %s has unknown role %r", user.get("id"), user.get("role"))
        raise _unauthorized("Invalid user role")

    return auth_user_from_row(user)


def require_roles(*roles: str) -> Callable[..., AuthUser]:
    """Dependency that lets through only users holding one of ``roles``."""

    def _dependency(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user["role"] not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(role.title() for role in roles)} access required",
            )
        return user

    return _dependency


require_admin = require_roles("admin")
