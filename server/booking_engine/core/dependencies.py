"""FastAPI dependencies for the datastore, payment gateway and authentication."""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, Request
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from ..gateways import PaymentGateway
from .config import settings
from .database import Database
from .exceptions import AuthenticationError, ValidationError


def get_database(request: Request) -> Database:
    """The datastore handle opened by the application lifespan."""
    return request.app.state.database


async def get_db(database: Database = Depends(get_database)) -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async with database.session_scope() as session:
        yield session


def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        dict: User information from validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError("Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except PyJWTError as e:
        raise AuthenticationError(f"Token validation failed: {e}") from e

    user_id = payload.get("sub")
    if user_id is None:
        raise AuthenticationError("Invalid token payload")

    exp = payload.get("exp")
    if exp and datetime.now(timezone.utc).timestamp() > exp:
        raise AuthenticationError("Token has expired")

    return {
        "user_id": str(user_id),
        "email": payload.get("email"),
        "roles": payload.get("roles", []),
    }


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate the optional idempotency key header.

    Raises:
        ValidationError: If the key is longer than 255 characters
    """
    if not idempotency_key:
        return None

    if len(idempotency_key) > 255:
        raise ValidationError(
            detail="Idempotency key must be between 1 and 255 characters",
            violations=[{"path": "header.Idempotency-Key", "message": "Too long"}],
        )

    return idempotency_key


# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
GATEWAY_DEPENDENCY = Depends(get_payment_gateway)
CURRENT_USER_DEPENDENCY = Depends(get_current_user)
IDEMPOTENCY_KEY_DEPENDENCY = Depends(get_idempotency_key)
