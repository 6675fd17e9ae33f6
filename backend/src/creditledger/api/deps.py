"""FastAPI dependencies for database sessions, authentication and the gateway."""
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.auth.jwt import jwt_auth
from creditledger.database import get_db
from creditledger.exceptions import NotAuthenticated
from creditledger.models.account import Account
from creditledger.services.account_service import AccountService

logger = structlog.get_logger(__name__)

# HTTP Bearer token security scheme; missing credentials are reported as NotAuthenticated
security = HTTPBearer(auto_error=False)

__all__ = ["get_db", "get_current_user", "get_current_account", "get_stripe_adapter"]


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Get current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        dict: Verified token claims (sub, email, role)

    Raises:
        NotAuthenticated: If token is invalid, expired, or missing
    """
    if not credentials:
        raise NotAuthenticated()

    token = credentials.credentials

    try:
        payload = jwt_auth.verify_access_token(token)
    except jwt.ExpiredSignatureError:
        logger.warning("token_expired")
        raise NotAuthenticated("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_token", error=str(e))
        raise NotAuthenticated("Invalid authentication token")

    structlog.contextvars.bind_contextvars(user_id=payload.get("sub"))
    return payload


async def get_current_account(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """
    Get the signed-in user's credit account, creating it on first sign-in.

    Raises:
        NotAuthenticated: If the token lacks a subject or email
    """
    return await AccountService(db).ensure_account(current_user.get("sub"), current_user.get("email"))


def get_stripe_adapter() -> StripeAdapter:
    """Stripe adapter dependency; overridden with a fake in tests."""
    return StripeAdapter()
