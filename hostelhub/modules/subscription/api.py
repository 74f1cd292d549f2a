from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.core.cache import AccessCaches
from hostelhub.core.dependencies import get_access_caches, get_admin_status, get_current_user, get_db
from hostelhub.modules.access.entitlement import has_access
from hostelhub.modules.subscription.service import subscription_service
from hostelhub.schemas.payment_schema import Payment, SubscriptionPaymentsResponse
from hostelhub.schemas.session_schema import SessionUser
from hostelhub.schemas.subscription_schema import (
    MySubscriptionResponse,
    Subscription,
    SubscriptionCreate,
    SubscriptionRenew,
    SubscriptionResponse,
)

router = APIRouter()


@router.post("/subscriptions/create", response_model=SubscriptionResponse, status_code=status.HTTP_200_OK)
async def create_subscription(
    body: SubscriptionCreate,
    current_user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = await subscription_service.create_subscription(db, current_user, body.plan_type)
    return SubscriptionResponse(subscription=Subscription.model_validate(subscription))


@router.get("/subscriptions/me", response_model=MySubscriptionResponse)
async def get_my_subscription(
    current_user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    caches: AccessCaches = Depends(get_access_caches),
):
    subscription = await subscription_service.get_active_subscription(db, current_user, caches=caches)
    if subscription is None:
        return MySubscriptionResponse(subscription=None, has_access=False)
    return MySubscriptionResponse(
        subscription=Subscription.model_validate(subscription),
        has_access=has_access(subscription),
    )


@router.post("/subscriptions/{subscription_id}/renew", response_model=SubscriptionResponse)
async def renew_subscription(
    subscription_id: str,
    body: SubscriptionRenew,
    current_user: SessionUser = Depends(get_current_user),
    is_admin: bool = Depends(get_admin_status),
    db: AsyncSession = Depends(get_db),
    caches: AccessCaches = Depends(get_access_caches),
):
    subscription = await subscription_service.renew_subscription(
        db, subscription_id, body.plan_type, renewed_by=current_user, is_admin=is_admin, caches=caches
    )
    return SubscriptionResponse(subscription=Subscription.model_validate(subscription))


@router.get("/subscriptions/{subscription_id}/payments", response_model=SubscriptionPaymentsResponse)
async def get_subscription_payments(
    subscription_id: str,
    current_user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payments = await subscription_service.list_payments(db, current_user, subscription_id)
    return SubscriptionPaymentsResponse(payments=[Payment.model_validate(p) for p in payments])
