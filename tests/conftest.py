import json
import uuid
from contextlib import ExitStack
from datetime import timedelta
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.core.dependencies import get_db, get_service_db
from hostelhub.core.security import create_session_token
from hostelhub.main import access_caches, app
from hostelhub.models import Payment, PromoCode, Subscription
from hostelhub.modules.access.entitlement import utcnow
from hostelhub.modules.payment.service import payment_service
from hostelhub.repository.payment_repository import payment_repository
from hostelhub.repository.promo_code_repository import promo_code_repository
from hostelhub.repository.subscription_repository import subscription_repository
from hostelhub.services.paystack_service import PaystackService

TEST_SECRET_KEY = "sk_test_secret"


@pytest.fixture
def mock_db_session():
    return AsyncMock(spec=AsyncSession)


@pytest.fixture(autouse=True)
def override_get_db(mock_db_session):
    async def _override():
        yield mock_db_session
    app.dependency_overrides[get_db] = _override
    app.dependency_overrides[get_service_db] = _override
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_service_db, None)


@pytest.fixture(autouse=True)
def clear_access_caches():
    access_caches.admin.clear()
    access_caches.subscription.clear()
    yield
    access_caches.admin.clear()
    access_caches.subscription.clear()


@pytest.fixture
def client():
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_auth_headers() -> Callable[..., Dict[str, str]]:
    def _make(user_id: str = "user-1", email: str = "student@example.com", **metadata) -> Dict[str, str]:
        token = create_session_token(user_id, email=email, user_metadata=metadata)
        return {"Authorization": f"Bearer {token}"}
    return _make


class FakeClock:
    """Monotonic clock the tests can move forward by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


class FakeSessionFactory:
    """Stands in for an async_sessionmaker in activation paths."""

    def __init__(self, session, fail_with: Optional[Exception] = None):
        self.session = session
        self.fail_with = fail_with
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self

    async def __aenter__(self):
        if self.fail_with is not None:
            raise self.fail_with
        return self.session

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeStore:
    """In-memory stand-in for the subscription, payment and promo repositories."""

    def __init__(self):
        self.subscriptions: Dict[str, Subscription] = {}
        self.payments: Dict[str, Payment] = {}
        self.promo_codes: Dict[str, PromoCode] = {}
        self.promo_usages: List[dict] = []

    # --- seeding helpers ---

    def add_subscription(self, id: str = "sub-1", user_id: str = "user-1", status: str = "pending",
                         plan_type: str = "monthly", expires_in: Optional[timedelta] = timedelta(days=30),
                         created_offset: timedelta = timedelta(0)) -> Subscription:
        now = utcnow()
        subscription = Subscription(
            id=id,
            user_id=user_id,
            plan_type=plan_type,
            status=status,
            expires_at=now + expires_in if expires_in is not None else None,
            email="student@example.com",
            phone=None,
            created_at=now + created_offset,
        )
        self.subscriptions[id] = subscription
        return subscription

    def add_payment(self, id: str = "pay-1", subscription_id: str = "sub-1", provider_ref: Optional[str] = None,
                    status: str = "pending", amount: int = 5000,
                    created_offset: timedelta = timedelta(0)) -> Payment:
        payment = Payment(
            id=id,
            subscription_id=subscription_id,
            amount=amount,
            provider="paystack",
            provider_ref=provider_ref,
            status=status,
            phone=None,
            metadata_json={"subscription_id": subscription_id},
            created_at=utcnow() + created_offset,
        )
        self.payments[id] = payment
        return payment

    def add_promo_code(self, code: str = "WELCOME10", **fields) -> PromoCode:
        values = dict(
            id=str(uuid.uuid4()),
            code=code,
            discount_type="percentage",
            discount_value=10,
            max_uses=None,
            used_count=0,
            is_active=True,
            valid_from=utcnow() - timedelta(days=1),
            valid_until=None,
        )
        values.update(fields)
        promo = PromoCode(**values)
        self.promo_codes[code] = promo
        return promo

    # --- subscription repository ---

    async def create_subscription(self, db, *, user_id, plan_type, expires_at, email=None, phone=None):
        subscription = Subscription(
            id=str(uuid.uuid4()), user_id=user_id, plan_type=plan_type, status="pending",
            expires_at=expires_at, email=email, phone=phone, created_at=utcnow(),
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    async def get_subscription(self, db, subscription_id):
        return self.subscriptions.get(subscription_id)

    async def get_latest_active(self, db, user_id):
        active = [s for s in self.subscriptions.values() if s.user_id == user_id and s.status == "active"]
        return max(active, key=lambda s: s.created_at, default=None)

    async def get_latest_pending_with_successful_payment(self, db, user_id):
        paid = {p.subscription_id for p in self.payments.values() if p.status == "success"}
        pending = [
            s for s in self.subscriptions.values()
            if s.user_id == user_id and s.status == "pending" and s.id in paid
        ]
        return max(pending, key=lambda s: s.created_at, default=None)

    async def set_active(self, db, subscription_id):
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            return None
        subscription.status = "active"
        return subscription

    async def renew_subscription(self, db, subscription, *, plan_type, expires_at):
        subscription.plan_type = plan_type
        subscription.expires_at = expires_at
        subscription.status = "active"
        return subscription

    # --- payment repository ---

    async def create_payment(self, db, *, subscription_id, amount, phone=None, metadata=None, provider="paystack"):
        payment = Payment(
            id=str(uuid.uuid4()), subscription_id=subscription_id, amount=amount, provider=provider,
            provider_ref=None, status="pending", phone=phone, metadata_json=metadata or {}, created_at=utcnow(),
        )
        self.payments[payment.id] = payment
        return payment

    async def get_payment(self, db, payment_id):
        return self.payments.get(payment_id)

    async def get_by_provider_ref(self, db, provider_ref):
        return next((p for p in self.payments.values() if p.provider_ref == provider_ref), None)

    async def get_latest_pending_for_subscription(self, db, subscription_id):
        pending = [p for p in self.payments.values() if p.subscription_id == subscription_id and p.status == "pending"]
        return max(pending, key=lambda p: p.created_at, default=None)

    async def list_for_subscription(self, db, subscription_id):
        payments = [p for p in self.payments.values() if p.subscription_id == subscription_id]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    async def has_successful_payment(self, db, subscription_id):
        return any(p.subscription_id == subscription_id and p.status == "success" for p in self.payments.values())

    async def update_status(self, db, payment, status, provider_ref=None):
        payment.status = status
        if provider_ref:
            payment.provider_ref = provider_ref
        return payment

    # --- promo code repository ---

    async def get_active_by_code(self, db, code):
        promo = self.promo_codes.get(code.strip().upper())
        if promo is None or not promo.is_active:
            return None
        return promo

    async def record_usage(self, db, **usage):
        self.promo_usages.append(usage)
        promo = next(p for p in self.promo_codes.values() if p.id == usage["promo_code_id"])
        promo.used_count += 1
        return usage


@pytest.fixture
def store():
    store = FakeStore()
    with ExitStack() as stack:
        # ``create`` is a keyword of patch.multiple itself, so it is patched on its own
        stack.enter_context(patch.object(subscription_repository, "create", store.create_subscription))
        stack.enter_context(patch.object(payment_repository, "create", store.create_payment))
        stack.enter_context(patch.multiple(
            subscription_repository,
            get=store.get_subscription,
            get_latest_active=store.get_latest_active,
            get_latest_pending_with_successful_payment=store.get_latest_pending_with_successful_payment,
            set_active=store.set_active,
            renew=store.renew_subscription,
        ))
        stack.enter_context(patch.multiple(
            payment_repository,
            get=store.get_payment,
            get_by_provider_ref=store.get_by_provider_ref,
            get_latest_pending_for_subscription=store.get_latest_pending_for_subscription,
            list_for_subscription=store.list_for_subscription,
            has_successful_payment=store.has_successful_payment,
            update_status=store.update_status,
        ))
        stack.enter_context(patch.multiple(
            promo_code_repository,
            get_active_by_code=store.get_active_by_code,
            record_usage=store.record_usage,
        ))
        yield store


class PaystackStub:
    """Scripted Paystack API behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.verify_responses: Dict[str, httpx.Response] = {}
        self.initialize_response = httpx.Response(
            200,
            json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc123",
                    "access_code": "abc123",
                    "reference": "ref-new",
                },
            },
        )

    def set_verified(self, reference: str, status: str = "success", metadata: Optional[dict] = None,
                     amount: int = 5000) -> None:
        self.verify_responses[reference] = httpx.Response(
            200,
            json={
                "status": True,
                "message": "Verification successful",
                "data": {
                    "amount": amount,
                    "currency": "GHS",
                    "status": status,
                    "reference": reference,
                    "metadata": metadata or {},
                },
            },
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/transaction/initialize":
            return self.initialize_response
        if request.url.path.startswith("/transaction/verify/"):
            reference = request.url.path.rsplit("/", 1)[-1]
            if reference in self.verify_responses:
                return self.verify_responses[reference]
            return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def json_bodies(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests if r.content]


@pytest.fixture
def paystack_stub():
    return PaystackStub()


@pytest.fixture
def gateway(paystack_stub):
    gateway = PaystackService(
        secret_key=TEST_SECRET_KEY,
        base_url="https://api.paystack.test",
        transport=httpx.MockTransport(paystack_stub.handler),
    )
    with patch.object(payment_service, "gateway", gateway):
        yield gateway


@pytest.fixture
def make_session_factory(mock_db_session):
    def _make(fail_with: Optional[Exception] = None) -> FakeSessionFactory:
        return FakeSessionFactory(mock_db_session, fail_with=fail_with)
    return _make
