from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from hostelhub.core.config import settings
from hostelhub.main import access_caches, app
from hostelhub.modules.payment.api import get_callback_activation_paths
from hostelhub.modules.payment.service import ActivationPath, payment_service

BASE = settings.APP_BASE_URL.rstrip("/")
SUCCESS_URL = f"{BASE}/dashboard?payment=success"


def paywall(code: str) -> str:
    return f"{BASE}/subscribe?error={code}"


@pytest.fixture
def activation_factories(make_session_factory):
    factories = {
        "elevated": make_session_factory(),
        "ordinary": make_session_factory(),
    }
    app.dependency_overrides[get_callback_activation_paths] = lambda: [
        ActivationPath(name, factory) for name, factory in factories.items()
    ]
    yield factories
    app.dependency_overrides.pop(get_callback_activation_paths, None)


def callback(client, **params):
    return client.get("/api/payments/callback", params=params, follow_redirects=False)


def test_callback_without_reference_redirects_without_touching_anything(client, store, gateway, paystack_stub,
                                                                        activation_factories):
    subscription = store.add_subscription()
    payment = store.add_payment(provider_ref="ref-123")

    response = callback(client)

    assert response.status_code == 307
    assert response.headers["location"] == paywall("no_reference")
    assert paystack_stub.requests == []
    assert payment.status == "pending"
    assert subscription.status == "pending"
    assert activation_factories["elevated"].calls == 0


def test_callback_with_non_success_status_is_payment_failed(client, store, gateway, paystack_stub,
                                                           activation_factories):
    store.add_subscription()
    store.add_payment(provider_ref="ref-123")

    response = callback(client, reference="ref-123", status="cancelled")

    assert response.headers["location"] == paywall("payment_failed")
    assert paystack_stub.requests == []


def test_callback_activates_payment_found_by_reference(client, store, gateway, paystack_stub,
                                                      activation_factories):
    subscription = store.add_subscription()
    original_expiry = subscription.expires_at
    payment = store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123", metadata={"payment_id": "pay-1", "subscription_id": "sub-1"})

    response = callback(client, trxref="ref-123", reference="ref-123")

    assert response.status_code == 307
    assert response.headers["location"] == SUCCESS_URL
    assert payment.status == "success"
    assert subscription.status == "active"
    assert subscription.expires_at == original_expiry
    assert activation_factories["elevated"].calls == 1
    assert activation_factories["ordinary"].calls == 0


def test_callback_uses_trxref_when_reference_is_missing(client, store, gateway, paystack_stub,
                                                       activation_factories):
    store.add_subscription()
    store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123")

    response = callback(client, trxref="ref-123")

    assert response.headers["location"] == SUCCESS_URL


def test_callback_backfills_reference_when_found_by_metadata_payment_id(client, store, gateway, paystack_stub,
                                                                       activation_factories):
    subscription = store.add_subscription()
    payment = store.add_payment(provider_ref=None)
    paystack_stub.set_verified("ref-late", metadata={"payment_id": "pay-1", "subscription_id": "sub-1"})

    response = callback(client, reference="ref-late")

    assert response.headers["location"] == SUCCESS_URL
    assert payment.provider_ref == "ref-late"
    assert payment.status == "success"
    assert subscription.status == "active"


def test_callback_falls_back_to_newest_pending_payment_of_subscription(client, store, gateway, paystack_stub,
                                                                      activation_factories):
    subscription = store.add_subscription()
    older = store.add_payment(id="pay-old", created_offset=timedelta(minutes=-10))
    newer = store.add_payment(id="pay-new")
    paystack_stub.set_verified("ref-789", metadata={"subscription_id": "sub-1"})

    response = callback(client, reference="ref-789")

    assert response.headers["location"] == SUCCESS_URL
    assert newer.status == "success"
    assert newer.provider_ref == "ref-789"
    assert older.status == "pending"
    assert subscription.status == "active"


def test_callback_payment_not_found(client, store, gateway, paystack_stub, activation_factories):
    subscription = store.add_subscription()
    paystack_stub.set_verified("ref-unknown", metadata={})

    response = callback(client, reference="ref-unknown")

    assert response.headers["location"] == paywall("payment_not_found")
    assert subscription.status == "pending"
    assert activation_factories["elevated"].calls == 0


def test_callback_payment_not_verified(client, store, gateway, paystack_stub, activation_factories):
    subscription = store.add_subscription()
    payment = store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123", status="abandoned")

    response = callback(client, reference="ref-123")

    assert response.headers["location"] == paywall("payment_not_verified")
    assert payment.status == "pending"
    assert subscription.status == "pending"


def test_callback_verification_failed_when_gateway_errors(client, store, gateway, paystack_stub,
                                                         activation_factories):
    store.add_subscription()
    payment = store.add_payment(provider_ref="ref-123")

    # The stub answers 404 {"status": false} for unknown references
    response = callback(client, reference="ref-123")

    assert response.headers["location"] == paywall("verification_failed")
    assert payment.status == "pending"


def test_callback_falls_back_to_ordinary_path_when_elevated_fails(client, store, gateway, paystack_stub,
                                                                 activation_factories):
    activation_factories["elevated"].fail_with = OperationalError("UPDATE subscriptions", {}, Exception("denied"))
    subscription = store.add_subscription()
    store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123")

    response = callback(client, reference="ref-123")

    assert response.headers["location"] == SUCCESS_URL
    assert activation_factories["elevated"].calls == 1
    assert activation_factories["ordinary"].calls == 1
    assert subscription.status == "active"


def test_callback_activation_failed_on_every_path(client, store, gateway, paystack_stub, activation_factories):
    for factory in activation_factories.values():
        factory.fail_with = OperationalError("UPDATE subscriptions", {}, Exception("denied"))
    subscription = store.add_subscription()
    payment = store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123")

    response = callback(client, reference="ref-123")

    assert response.headers["location"] == paywall("activation_failed")
    assert payment.status == "success"
    assert subscription.status == "pending"


def test_callback_unexpected_error_still_redirects(client, store, gateway, activation_factories):
    with patch.object(payment_service, "handle_callback", side_effect=RuntimeError("boom")):
        response = callback(client, reference="ref-123")

    assert response.status_code == 307
    assert response.headers["location"] == paywall("callback_error")


def test_callback_clears_cached_subscription_of_owner(client, store, gateway, paystack_stub,
                                                     activation_factories):
    store.add_subscription(user_id="user-1")
    store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123")
    access_caches.set_subscription("user-1", object())

    callback(client, reference="ref-123")

    assert access_caches.get_subscription("user-1") is None


def test_callback_falls_back_when_elevated_database_is_unreachable(client, store, gateway, paystack_stub,
                                                                    activation_factories):
    activation_factories["elevated"].fail_with = ConnectionRefusedError(111, "Connect call failed")
    subscription = store.add_subscription()
    store.add_payment(provider_ref="ref-123")
    paystack_stub.set_verified("ref-123")

    response = callback(client, reference="ref-123")

    assert response.headers["location"] == SUCCESS_URL
    assert activation_factories["ordinary"].calls == 1
    assert subscription.status == "active"
