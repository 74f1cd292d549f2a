import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.core.cache import AccessCaches
from hostelhub.core.database import db_manager, service_db_manager
from hostelhub.core.dependencies import get_access_caches, get_db, get_optional_user, get_service_db
from hostelhub.modules.payment.service import (
    ActivationPath,
    CallbackError,
    PaymentRequestError,
    payment_service,
    paywall_redirect,
)
from hostelhub.schemas.payment_schema import Payment, PaymentCreateRequest, PaymentCreateResponse, WebhookAck
from hostelhub.schemas.paystack_schema import PaystackWebhookEvent
from hostelhub.schemas.session_schema import SessionUser

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "x-paystack-signature"


def get_callback_activation_paths() -> List[ActivationPath]:
    return [
        ActivationPath("elevated", service_db_manager.async_session_maker),
        ActivationPath("ordinary", db_manager.async_session_maker),
    ]


def get_webhook_activation_paths() -> List[ActivationPath]:
    # No user session behind a webhook, so the ordinary path can never see the row
    return [ActivationPath("elevated", service_db_manager.async_session_maker)]


@router.post("/payments/create", response_model=PaymentCreateResponse, response_model_by_alias=True)
async def create_payment(
    body: PaymentCreateRequest,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[SessionUser] = Depends(get_optional_user),
):
    try:
        payment, authorization_url = await payment_service.create_payment(db, body, user=current_user)
    except PaymentRequestError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.detail})
    return PaymentCreateResponse(payment=Payment.model_validate(payment), authorization_url=authorization_url)


@router.get("/payments/callback")
async def payment_callback(
    reference: Optional[str] = None,
    trxref: Optional[str] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_service_db),
    caches: AccessCaches = Depends(get_access_caches),
    paths: List[ActivationPath] = Depends(get_callback_activation_paths),
):
    try:
        target = await payment_service.handle_callback(
            db, reference or trxref, status, paths, caches=caches
        )
    except Exception as e:
        logger.exception("Unexpected error in payment callback for reference %s: %s", reference or trxref, e)
        target = paywall_redirect(CallbackError.CALLBACK_ERROR)
    return RedirectResponse(url=target, status_code=307)


@router.post("/payments/webhook", response_model=WebhookAck)
async def paystack_webhook(
    request: Request,
    db: AsyncSession = Depends(get_service_db),
    caches: AccessCaches = Depends(get_access_caches),
    paths: List[ActivationPath] = Depends(get_webhook_activation_paths),
):
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not payment_service.gateway.verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected Paystack webhook with missing or invalid signature")
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": "Invalid signature"})

    try:
        event = PaystackWebhookEvent.model_validate_json(raw_body)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Malformed webhook body: {e}")

    logger.info("Received Paystack webhook %s", event.event)
    await payment_service.handle_webhook_event(db, event, paths, caches=caches)
    return WebhookAck()
