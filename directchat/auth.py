import logging
import uuid
from typing import Optional

import jwt
from fastapi import Request, WebSocket
from fastapi_users.jwt import decode_jwt, generate_jwt

from directchat.core.config import settings
from directchat.services.exceptions import AuthError

logger = logging.getLogger(__name__)

# Tokens are issued by the session service's fastapi-users JWT strategy
TOKEN_AUDIENCE = ["fastapi-users:auth"]
COOKIE_NAME = "fastapiusersauth"


def create_access_token(user_id: uuid.UUID, lifetime_seconds: int = 3600) -> str:
    """Issues a token the way the session service does. Used by tests and tooling."""
    return generate_jwt(
        {"sub": str(user_id), "aud": TOKEN_AUDIENCE},
        settings.SECRET,
        lifetime_seconds,
        algorithm=settings.ALGORITHM,
    )


def read_user_id(token: Optional[str]) -> uuid.UUID:
    if not token:
        raise AuthError()
    try:
        data = decode_jwt(
            token, settings.SECRET, TOKEN_AUDIENCE, algorithms=[settings.ALGORITHM]
        )
        return uuid.UUID(data["sub"])
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.info(f"Rejected session token: {e}")
        raise AuthError("Invalid or expired session.")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def current_user_id(request: Request) -> uuid.UUID:
    """Authenticated user id from a bearer token or the session cookie."""
    token = _bearer_token(request.headers.get("authorization"))
    return read_user_id(token or request.cookies.get(COOKIE_NAME))


async def websocket_user_id(websocket: WebSocket) -> uuid.UUID:
    token = websocket.query_params.get("token") or websocket.cookies.get(COOKIE_NAME)
    return read_user_id(token)
