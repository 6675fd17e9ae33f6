"""Administrator authorization.

A caller is an administrator when their verified email is on the configured
allow-list, or their token carries one of the configured admin roles.
"""
from functools import wraps
from typing import Any, Callable, Iterable, Optional

import structlog

from creditledger.config import settings
from creditledger.exceptions import NotAuthenticated, NotAuthorized
from creditledger.schemas.admin import normalize_email

logger = structlog.get_logger(__name__)


class AdminPolicy:
    """Decides whether verified token claims belong to an administrator."""

    def __init__(self, admin_emails: Optional[Iterable[str]] = None, admin_roles: Optional[Iterable[str]] = None):
        emails = settings.admin_emails if admin_emails is None else admin_emails
        roles = settings.admin_roles if admin_roles is None else admin_roles
        self.admin_emails = {normalize_email(email) for email in emails if normalize_email(email)}
        self.admin_roles = set(roles)

    def is_admin(self, claims: dict[str, Any]) -> bool:
        email = normalize_email(claims.get("email"))
        if email and email in self.admin_emails:
            return True
        return bool(self.admin_roles & _token_roles(claims))


def _token_roles(claims: dict[str, Any]) -> set[str]:
    roles = set()
    role = claims.get("role")
    if isinstance(role, str):
        roles.add(role)
    if isinstance(claims.get("roles"), (list, tuple)):
        roles.update(str(item) for item in claims["roles"])
    app_metadata = claims.get("app_metadata")
    if isinstance(app_metadata, dict) and isinstance(app_metadata.get("role"), str):
        roles.add(app_metadata["role"])
    return roles


def require_admin(func: Callable) -> Callable:
    """
    Decorator to restrict an endpoint to administrators.

    Usage:
        @router.post("/adjust-credits")
        @require_admin
        async def adjust_credits(..., current_user: dict = Depends(get_current_user)):
            ...

    Raises:
        NotAuthenticated: If no verified user was injected
        NotAuthorized: If the user is not an administrator
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        # Extract current_user from kwargs (injected by get_current_user dependency)
        current_user = kwargs.get("current_user")

        if not current_user:
            logger.error("rbac_missing_current_user", endpoint=func.__name__)
            raise NotAuthenticated()

        if not AdminPolicy().is_admin(current_user):
            logger.warning(
                "rbac_permission_denied",
                user_id=current_user.get("sub"),
                email=current_user.get("email"),
                endpoint=func.__name__,
            )
            raise NotAuthorized()

        logger.info(
            "rbac_access_granted",
            user_id=current_user.get("sub"),
            email=current_user.get("email"),
            endpoint=func.__name__,
        )

        return await func(*args, **kwargs)

    return wrapper
