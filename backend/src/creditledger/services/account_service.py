"""Account service for provisioning and lookups."""
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.exceptions import NotAuthenticated, UserNotFound
from creditledger.models.account import Account
from creditledger.schemas.admin import normalize_email

logger = structlog.get_logger(__name__)


class AccountService:
    """Service layer for account operations.

    Accounts are never given a balance here; new rows start at zero and only
    ``LedgerService.append_entry`` moves them.
    """

    def __init__(self, db: AsyncSession):
        """Initialize account service with database session."""
        self.db = db

    async def get_account(self, account_id: UUID) -> Account | None:
        result = await self.db.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def get_account_by_identity(self, identity_id: str) -> Account | None:
        result = await self.db.execute(select(Account).where(Account.identity_id == identity_id))
        return result.scalar_one_or_none()

    async def get_account_by_email(self, email: str) -> Account | None:
        result = await self.db.execute(select(Account).where(Account.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def require_account_by_email(self, email: str) -> Account:
        """
        Resolve an admin's target account.

        Raises:
            UserNotFound: If no account has this email
        """
        account = await self.get_account_by_email(email)
        if account is None:
            raise UserNotFound(f"No account for {normalize_email(email)}")
        return account

    async def ensure_account(self, identity_id: str, email: Optional[str]) -> Account:
        """
        Get or create the account for a signed-in identity.

        Created on first sign-in with a zero balance. An account created earlier
        from a purchase webhook for the same email is claimed by binding the
        identity id to it.

        Args:
            identity_id: Identity provider subject
            email: Verified email from the token

        Returns:
            The caller's account

        Raises:
            NotAuthenticated: If the token carries no subject or email
        """
        if not identity_id:
            raise NotAuthenticated("Token has no subject")

        account = await self.get_account_by_identity(identity_id)
        if account is not None:
            return account

        normalized = normalize_email(email or "")
        if not normalized:
            raise NotAuthenticated("Token has no email")

        account = await self.get_account_by_email(normalized)
        if account is not None and account.identity_id is None:
            account.identity_id = identity_id
            await self.db.flush()
            await self.db.commit()
            logger.info("account_claimed", account_id=str(account.id), identity_id=identity_id)
            return account
        if account is not None:
            logger.warning(
                "account_email_bound_to_other_identity",
                account_id=str(account.id),
                identity_id=identity_id,
            )
            raise NotAuthenticated("Email is bound to a different identity")

        account = Account(identity_id=identity_id, email=normalized, credit_balance=0, ledger_sequence=0)
        self.db.add(account)
        try:
            await self.db.flush()
            await self.db.commit()
        except IntegrityError:
            # Concurrent first sign-in created it
            await self.db.rollback()
            account = await self.get_account_by_identity(identity_id)
            if account is None:
                raise
            return account

        logger.info("account_created", account_id=str(account.id), identity_id=identity_id)
        return account

    async def resolve_purchase_account(
        self,
        account_id: Optional[str],
        identity_id: Optional[str],
        email: Optional[str],
        stripe_customer_id: Optional[str],
    ) -> Account | None:
        """
        Find or create the account a completed checkout should credit.

        Resolution order: ``account_id`` metadata, identity id (the session's
        client reference), then the customer email, creating an unclaimed
        account for an unknown email. Records the Stripe customer id.

        Returns:
            Account, or None when the session carries nothing to identify a buyer
        """
        account = None
        if account_id:
            try:
                account = await self.get_account(UUID(str(account_id)))
            except ValueError:
                logger.warning("purchase_account_id_invalid", account_id=account_id)
        if account is None and identity_id:
            account = await self.get_account_by_identity(identity_id)
        if account is None and email:
            account = await self.get_account_by_email(email)
        if account is None and email:
            account = Account(email=normalize_email(email), credit_balance=0, ledger_sequence=0)
            self.db.add(account)
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                account = await self.get_account_by_email(email)
            else:
                logger.info("account_created_from_purchase", account_id=str(account.id))

        if account is None:
            return None

        if stripe_customer_id and not account.stripe_customer_id:
            account.stripe_customer_id = stripe_customer_id
            await self.db.flush()

        return account
