"""Refund controller for credit pack purchases and paid unlocks."""
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger import metrics
from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.config import settings
from creditledger.exceptions import (
    AlreadyRefunded,
    InvalidSessionId,
    NoPaymentIntent,
    NotACreditPack,
    NoUnlocksToRefund,
    UserNotFound,
)
from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEventType
from creditledger.schemas.refund import CheckoutRefundResponse, UnlockRefundResponse
from creditledger.services.account_service import AccountService
from creditledger.services.admin_service import truncate_reason
from creditledger.services.ledger_service import AppendResult, LedgerService, commit_with_retry
from creditledger.services.webhook_service import non_negative_int
from creditledger.utils.references import (
    gateway_refund_idempotency_key,
    purchase_refund_reference,
    refund_marker_reference,
    unlock_refund_reference,
)

logger = structlog.get_logger(__name__)

CREDIT_PACK_PURCHASE_TYPE = "credit_pack"


class RefundService:
    """Service layer for administrator refunds.

    Both refund kinds restore credits through the ledger under a reference
    derived from the thing being refunded, so each purchase or unlock can be
    refunded at most once.
    """

    def __init__(self, db: AsyncSession, stripe_adapter: StripeAdapter):
        """Initialize refund service with database session and gateway adapter."""
        self.db = db
        self.stripe = stripe_adapter
        self.ledger = LedgerService(db)
        self.accounts = AccountService(db)

    async def refund_checkout_session(
        self,
        session_id: str,
        reason: Optional[str],
        admin_email: str,
    ) -> CheckoutRefundResponse:
        """
        Refund a credit pack purchase at Stripe and restore its credits.

        The gateway refund carries an idempotency key derived from the session,
        so repeating it after a failed ledger write returns the same refund
        instead of paying out twice. The ledger write is then retried on its
        own; it appends the credit restoration and a zero-delta marker, both
        under fixed references.

        Args:
            session_id: Stripe checkout session id (cs_...)
            reason: Audit reason
            admin_email: Email of the acting administrator

        Returns:
            Refund details with balances before and after

        Raises:
            InvalidSessionId: If the id is not a checkout session id
            SessionNotFound: If Stripe has no such session
            NotACreditPack: If the session did not buy a credit pack
            NoPaymentIntent: If there is no payment to refund
            AlreadyRefunded: If the session was refunded before
            ExternalGatewayError: If Stripe rejects the refund
            PersistenceError: If the ledger write still fails after retries
        """
        session_id = (session_id or "").strip()
        if not session_id.startswith("cs_"):
            raise InvalidSessionId()

        reason = truncate_reason(reason, settings.refund_reason_max_length)
        log = logger.bind(session_id=session_id, admin_email=admin_email)

        session = await self.stripe.retrieve_checkout_session(session_id)
        metadata = session["metadata"]
        if metadata.get("purchase_type") != CREDIT_PACK_PURCHASE_TYPE:
            self._record("credit_pack", "rejected")
            raise NotACreditPack()

        pack = metadata.get("pack")
        credits = self._pack_credits(metadata)
        if credits <= 0:
            self._record("credit_pack", "rejected")
            raise NotACreditPack("Checkout session does not name a known credit pack")

        account = await self._purchasing_account(metadata.get("account_id"), session["client_reference_id"])
        if account is None:
            raise UserNotFound("Checkout session is not linked to a known account")

        payment_intent_id = session["payment_intent"]
        if not payment_intent_id:
            self._record("credit_pack", "rejected")
            raise NoPaymentIntent()

        if await self.ledger.get_entry_by_reference(refund_marker_reference(session_id)) is not None:
            self._record("credit_pack", "duplicate")
            raise AlreadyRefunded()

        refund = await self.stripe.create_refund(
            payment_intent_id,
            idempotency_key=gateway_refund_idempotency_key(session_id),
            metadata={
                "session_id": session_id,
                "account_id": str(account.id),
                "pack": pack or "",
                "credits": str(credits),
                "reason": reason or "",
                "admin_email": admin_email,
            },
        )
        log.info("stripe_refund_created", refund_id=refund["id"], payment_intent_id=payment_intent_id)

        account_id = account.id

        async def write_refund_entries() -> tuple[AppendResult, AppendResult]:
            restored = await self.ledger.append_entry(
                account_id=account_id,
                event_type=LedgerEventType.ADMIN_REFUND_CREDIT_PACK,
                delta=credits,
                reference=purchase_refund_reference(session_id),
                note=f"by:{admin_email}" + (f" reason:{reason}" if reason else ""),
            )
            marker = await self.ledger.append_entry(
                account_id=account_id,
                event_type=LedgerEventType.ADMIN_REFUND_MARKER,
                delta=0,
                reference=refund_marker_reference(session_id),
                note=f"Stripe refund id: {refund['id']}",
            )
            return restored, marker

        restored, marker = await commit_with_retry(
            self.db,
            write_refund_entries,
            attempts=settings.ledger_write_attempts,
        )

        if not marker.applied:
            # A concurrent request recorded the same refund first
            self._record("credit_pack", "duplicate")
            raise AlreadyRefunded()

        self._record("credit_pack", "refunded")
        log.info(
            "credit_pack_refunded",
            account_id=str(account_id),
            refund_id=refund["id"],
            credits_restored=credits,
            credits_after=restored.balance_after,
        )

        return CheckoutRefundResponse(
            refund_id=refund["id"],
            payment_intent=payment_intent_id,
            session_id=session_id,
            pack=pack,
            credits_restored=credits,
            credits_before=restored.balance_before,
            credits_after=restored.balance_after,
        )

    async def refund_last_unlock(
        self,
        email: str,
        reason: Optional[str],
        admin_email: str,
    ) -> UnlockRefundResponse:
        """
        Return the credit spent on a user's most recent paid unlock.

        The refund entry's reference is derived from the unlock's reference,
        so the same unlock can never be refunded twice. Admin force-unlocks
        are never candidates because they did not spend a credit.

        Raises:
            UserNotFound: If no account has this email
            NoUnlocksToRefund: If the user never paid for an unlock
            AlreadyRefunded: If the most recent unlock was already refunded
        """
        reason = truncate_reason(reason, settings.refund_reason_max_length)
        account = await self.accounts.require_account_by_email(email)

        last_unlock = await self.ledger.get_latest_entry(account.id, LedgerEventType.IN_PERSON_SCAN_COMPLETED)
        if last_unlock is None:
            self._record("unlock", "rejected")
            raise NoUnlocksToRefund()

        result = await self.ledger.append_entry(
            account_id=account.id,
            event_type=LedgerEventType.ADMIN_REFUND,
            delta=-last_unlock.credits_delta,
            reference=unlock_refund_reference(last_unlock.reference),
            note=f"by:{admin_email}" + (f" reason:{reason}" if reason else ""),
        )
        if not result.applied:
            self._record("unlock", "duplicate")
            raise AlreadyRefunded(f"Unlock {last_unlock.reference} was already refunded")

        self._record("unlock", "refunded")
        logger.info(
            "unlock_refunded",
            admin_email=admin_email,
            account_id=str(account.id),
            refunded_reference=last_unlock.reference,
            credits_after=result.balance_after,
        )

        return UnlockRefundResponse(
            user_id=account.id,
            refunded_reference=last_unlock.reference,
            credits_before=result.balance_before,
            credits_after=result.balance_after,
        )

    async def _purchasing_account(self, account_id: Optional[str], identity_id: Optional[str]) -> Optional[Account]:
        """The account a checkout credited; refunds never create accounts."""
        if account_id:
            try:
                account = await self.accounts.get_account(UUID(str(account_id)))
            except ValueError:
                account = None
            if account is not None:
                return account
        if identity_id:
            return await self.accounts.get_account_by_identity(identity_id)
        return None

    @staticmethod
    def _pack_credits(metadata: dict[str, Any]) -> int:
        pack = metadata.get("pack")
        if pack in settings.credit_packs:
            return settings.credit_packs[pack]
        return non_negative_int(metadata.get("credits"))

    @staticmethod
    def _record(kind: str, outcome: str) -> None:
        metrics.refunds_total.labels(kind=kind, outcome=outcome).inc()
