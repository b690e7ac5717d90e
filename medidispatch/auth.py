"""Bearer-token identity for API callers.

Tokens are issued by the surrounding application's login flow; this service
only verifies them and loads the caller's current role from the database.
"""

import logging
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from medidispatch.config import JWT_ALGORITHM, JWT_EXPIRATION_MINUTES, JWT_SECRET
from medidispatch.database import DatabaseAdapter, get_db
from medidispatch.errors import AuthenticationError, AuthorizationError
from medidispatch.models.user import CurrentUser

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user_id: int, role: str, expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT for a user."""
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=JWT_EXPIRATION_MINUTES))
    payload = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: DatabaseAdapter = Depends(get_db),
) -> CurrentUser:
    """Resolve the caller from the Authorization header.

    The role is always read from the users table; the token's role claim is
    informational only.
    """
    if credentials is None:
        raise AuthenticationError("Access token required")
    return await authenticate_token(credentials.credentials, db)


async def authenticate_token(token: str, db: DatabaseAdapter) -> CurrentUser:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        user_id = int(payload["sub"])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired. Please log in again.") from None
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
        raise AuthenticationError("Could not validate credentials. Please log in again.") from None

    row = await db.fetch_one(
        "SELECT id, role, full_name, email, admin_type, state, district, status FROM users WHERE id = ?",
        (user_id,),
    )
    if row is None:
        raise AuthenticationError("User account no longer exists")

    user = CurrentUser(**dict(row))
    if user.status == "suspended":
        logger.info("Rejected request from suspended user %s", user.id)
        raise AuthorizationError("Your account has been suspended. Please contact support.")
    return user
