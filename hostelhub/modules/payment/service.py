"""
Payment creation and reconciliation.

Two signals report a finished Paystack payment: the browser is redirected to
the callback route, and Paystack posts a signed webhook. Either may arrive
first, both may arrive, and the webhook may be retried. Both end in the same
unconditional write (payment -> success, subscription -> active), so running
them in any order and any number of times converges on the same rows.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.core.cache import AccessCaches
from hostelhub.core.config import settings
from hostelhub.models import Payment, Subscription
from hostelhub.modules.promo.service import find_usable_promo_code, record_promo_code_usage
from hostelhub.modules.subscription.security_events import log_unauthorized_activation_attempt
from hostelhub.modules.subscription.service import subscription_service
from hostelhub.repository.payment_repository import payment_repository
from hostelhub.repository.subscription_repository import subscription_repository
from hostelhub.schemas.payment_schema import PaymentCreateRequest
from hostelhub.schemas.paystack_schema import PaystackWebhookEvent
from hostelhub.schemas.session_schema import SessionUser
from hostelhub.services.paystack_service import (
    PaymentConfigurationError,
    PaystackError,
    PaystackService,
    paystack_service,
)

logger = logging.getLogger(__name__)


class PaymentRequestError(Exception):
    """Custom exception for rejected payment creation requests."""
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code


class CallbackError(str, enum.Enum):
    NO_REFERENCE = "no_reference"
    VERIFICATION_FAILED = "verification_failed"
    PAYMENT_NOT_FOUND = "payment_not_found"
    PAYMENT_NOT_VERIFIED = "payment_not_verified"
    PAYMENT_FAILED = "payment_failed"
    ACTIVATION_FAILED = "activation_failed"
    CALLBACK_ERROR = "callback_error"


def _base_url() -> str:
    return settings.APP_BASE_URL.rstrip("/")


def success_redirect() -> str:
    return f"{_base_url()}/dashboard?payment=success"


def paywall_redirect(error: CallbackError) -> str:
    return f"{_base_url()}/subscribe?error={error.value}"


# --- Payment lookup strategies ---
# Each returns the payment or None; they are tried in order until one finds it.

PaymentLookup = Callable[[AsyncSession, str, Dict[str, Any]], Awaitable[Optional[Payment]]]


async def lookup_by_provider_ref(db: AsyncSession, reference: str, metadata: Dict[str, Any]) -> Optional[Payment]:
    return await payment_repository.get_by_provider_ref(db, reference)


async def lookup_by_metadata_payment_id(
    db: AsyncSession, reference: str, metadata: Dict[str, Any]
) -> Optional[Payment]:
    # The reference may have been issued after the payment row was written
    payment_id = metadata.get("payment_id")
    if not payment_id:
        return None
    return await payment_repository.get(db, str(payment_id))


async def lookup_by_metadata_subscription_id(
    db: AsyncSession, reference: str, metadata: Dict[str, Any]
) -> Optional[Payment]:
    subscription_id = metadata.get("subscription_id")
    if not subscription_id:
        return None
    return await payment_repository.get_latest_pending_for_subscription(db, str(subscription_id))


CALLBACK_PAYMENT_LOOKUPS: Sequence[PaymentLookup] = (
    lookup_by_provider_ref,
    lookup_by_metadata_payment_id,
    lookup_by_metadata_subscription_id,
)
WEBHOOK_PAYMENT_LOOKUPS: Sequence[PaymentLookup] = (lookup_by_provider_ref,)


async def locate_payment(
    db: AsyncSession,
    reference: str,
    metadata: Dict[str, Any],
    lookups: Sequence[PaymentLookup],
) -> Optional[Payment]:
    for lookup in lookups:
        try:
            payment = await lookup(db, reference, metadata)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Payment lookup %s failed for reference %s: %s", lookup.__name__, reference, e)
            await db.rollback()
            continue
        if payment is not None:
            logger.info("Payment %s located for reference %s via %s", payment.id, reference, lookup.__name__)
            return payment
    return None


# --- Activation paths ---

SessionFactory = Callable[[], AsyncSession]


@dataclass(frozen=True)
class ActivationPath:
    name: str
    session_factory: SessionFactory


class PaymentService:
    def __init__(self, gateway: PaystackService = paystack_service):
        self.gateway = gateway

    async def create_payment(
        self,
        db: AsyncSession,
        request: PaymentCreateRequest,
        user: Optional[SessionUser] = None,
    ) -> Tuple[Payment, str]:
        """Creates a pending payment and the Paystack transaction behind it."""
        if not request.subscription_id or not request.amount or not request.email:
            raise PaymentRequestError("Missing required fields")
        if request.amount <= 0:
            raise PaymentRequestError("Amount must be a positive number of pesewas")

        subscription = await subscription_repository.get(db, request.subscription_id)
        if subscription is None:
            raise PaymentRequestError("Subscription not found", status_code=404)
        if user is not None and subscription.user_id != user.id:
            log_unauthorized_activation_attempt(
                subscription.id, user.id, "Payment requested for a subscription owned by another user"
            )
            raise PaymentRequestError("Subscription does not belong to the current user", status_code=403)

        promo = None
        if request.promo_code:
            promo, promo_error = await find_usable_promo_code(db, request.promo_code)
            if promo_error:
                raise PaymentRequestError(promo_error)

        # Fail before writing anything when the gateway can't be used at all
        self.gateway.require_secret_key()

        payment = await payment_repository.create(
            db,
            subscription_id=subscription.id,
            amount=request.amount,
            phone=request.phone,
            metadata={
                "subscription_id": subscription.id,
                "email": request.email,
                "phone": request.phone,
            },
        )

        gateway_metadata = {"payment_id": payment.id, "subscription_id": subscription.id}
        if promo is not None:
            gateway_metadata["promo_code"] = promo.code
        try:
            transaction = await self.gateway.initialize_payment(
                email=request.email,
                amount=request.amount,
                phone=request.phone,
                metadata=gateway_metadata,
            )
        except PaystackError as e:
            logger.error("Failed to initialize Paystack transaction for payment %s: %s", payment.id, e.detail)
            raise PaymentRequestError(e.detail or "Failed to initialize payment", status_code=500)

        payment = await payment_repository.update_status(db, payment, "pending", provider_ref=transaction.reference)
        logger.info("Payment %s created with reference %s", payment.id, transaction.reference)

        if promo is not None:
            await record_promo_code_usage(
                db,
                promo,
                subscription_id=subscription.id,
                payment_id=payment.id,
                user_id=user.id if user else None,
                amount=request.amount,
            )

        return payment, transaction.authorization_url

    async def activate(
        self,
        subscription_id: str,
        paths: Sequence[ActivationPath],
        caches: Optional[AccessCaches] = None,
    ) -> Optional[Subscription]:
        """Tries each activation path in order and returns the first activated subscription."""
        for path in paths:
            try:
                async with path.session_factory() as session:
                    subscription = await subscription_service.activate_subscription(
                        session, subscription_id, caches=caches
                    )
            except (SQLAlchemyError, OSError) as e:
                logger.warning("Activation of subscription %s via %s path failed: %s", subscription_id, path.name, e)
                continue
            if subscription is not None:
                return subscription
            logger.warning("Subscription %s not activated via %s path", subscription_id, path.name)
        return None

    async def handle_callback(
        self,
        db: AsyncSession,
        reference: Optional[str],
        status: Optional[str],
        paths: Sequence[ActivationPath],
        caches: Optional[AccessCaches] = None,
    ) -> str:
        """Reconciles a browser return from Paystack and gives the URL to send the browser to."""
        if not reference:
            return paywall_redirect(CallbackError.NO_REFERENCE)
        if status and status != "success":
            logger.info("Payment callback for %s reported status %s", reference, status)
            return paywall_redirect(CallbackError.PAYMENT_FAILED)

        try:
            verification = await self.gateway.verify_payment(reference)
        except (PaystackError, PaymentConfigurationError) as e:
            logger.error("Payment verification error for reference %s: %s", reference, e.detail)
            return paywall_redirect(CallbackError.VERIFICATION_FAILED)

        if verification.status != "success":
            logger.info("Payment %s not verified by Paystack (status=%s)", reference, verification.status)
            return paywall_redirect(CallbackError.PAYMENT_NOT_VERIFIED)

        metadata = verification.metadata or {}
        payment = await locate_payment(db, reference, metadata, CALLBACK_PAYMENT_LOOKUPS)
        if payment is None:
            logger.error("Payment record not found for reference %s (metadata=%s)", reference, metadata)
            return paywall_redirect(CallbackError.PAYMENT_NOT_FOUND)

        # Also backfills the reference when the payment was found through metadata
        await payment_repository.update_status(db, payment, "success", provider_ref=reference)

        subscription = await self.activate(payment.subscription_id, paths, caches=caches)
        if subscription is None:
            logger.error(
                "Subscription activation failed: payment=%s subscription=%s reference=%s",
                payment.id,
                payment.subscription_id,
                reference,
            )
            return paywall_redirect(CallbackError.ACTIVATION_FAILED)

        logger.info("Subscription %s activated from callback for reference %s", subscription.id, reference)
        return success_redirect()

    async def handle_webhook_event(
        self,
        db: AsyncSession,
        event: PaystackWebhookEvent,
        paths: Sequence[ActivationPath],
        caches: Optional[AccessCaches] = None,
    ) -> None:
        """
        Applies a verified webhook event. Downstream failures are logged, not
        raised, so the caller can always acknowledge the delivery.
        """
        if event.event == "charge.success":
            await self._handle_charge_success(db, event, paths, caches)
        elif event.event == "charge.failed":
            await self._handle_charge_failed(db, event)
        else:
            logger.info("Acknowledging unhandled Paystack event %s", event.event)

    async def _handle_charge_success(
        self,
        db: AsyncSession,
        event: PaystackWebhookEvent,
        paths: Sequence[ActivationPath],
        caches: Optional[AccessCaches],
    ) -> None:
        reference = event.reference
        if not reference:
            logger.warning("charge.success webhook without a reference")
            return

        # Never trust the webhook body alone
        try:
            verification = await self.gateway.verify_payment(reference)
        except (PaystackError, PaymentConfigurationError) as e:
            logger.error("Webhook payment verification failed for reference %s: %s", reference, e.detail)
            return
        if verification.status != "success":
            logger.warning("Webhook charge.success for %s but Paystack reports %s", reference, verification.status)
            return

        payment = await locate_payment(db, reference, verification.metadata or {}, WEBHOOK_PAYMENT_LOOKUPS)
        if payment is None:
            logger.error("Payment record not found for webhook reference %s", reference)
            return

        try:
            await payment_repository.update_status(db, payment, "success", provider_ref=reference)
        except (SQLAlchemyError, OSError) as e:
            await db.rollback()
            logger.error("Failed to mark payment %s (reference %s) as success: %s", payment.id, reference, e)
            return

        subscription = await self.activate(payment.subscription_id, paths, caches=caches)
        if subscription is None:
            logger.error(
                "Failed to activate subscription from webhook: payment=%s subscription=%s reference=%s",
                payment.id,
                payment.subscription_id,
                reference,
            )
            return
        logger.info("Subscription %s activated via webhook (status=%s)", subscription.id, subscription.status)

    async def _handle_charge_failed(self, db: AsyncSession, event: PaystackWebhookEvent) -> None:
        reference = event.reference
        if not reference:
            logger.warning("charge.failed webhook without a reference")
            return

        payment = await locate_payment(db, reference, {}, WEBHOOK_PAYMENT_LOOKUPS)
        if payment is None:
            logger.warning("charge.failed for unknown reference %s", reference)
            return
        try:
            await payment_repository.update_status(db, payment, "failed", provider_ref=reference)
        except (SQLAlchemyError, OSError) as e:
            await db.rollback()
            logger.error("Failed to mark payment %s (reference %s) as failed: %s", payment.id, reference, e)
            return
        logger.info("Payment %s marked failed (reference %s)", payment.id, reference)


payment_service = PaymentService()
