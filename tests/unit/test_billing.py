"""Unit tests for subscription billing."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from fanclub.billing import (
    STATUS_ACTIVE,
    STATUS_CANCELED,
    BasePaymentGateway,
    CreditGateway,
    PaymentError,
    PaymentService,
    PaypalGateway,
    StripeGateway,
    get_active_subscriptions,
)
from fanclub.db.models import Subscription

_RealAsyncClient = httpx.AsyncClient


def _mock_http(handler):
    """Patch httpx.AsyncClient so every client the gateways open uses `handler`."""
    return patch(
        "fanclub.billing.httpx.AsyncClient",
        side_effect=lambda **kwargs: _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs),
    )


@pytest_asyncio.fixture
async def subscription(db_session, make_user):
    fan = await make_user()
    creator = await make_user()
    sub = Subscription(
        sender_user_id=fan.id,
        recipient_user_id=creator.id,
        provider="stripe",
        external_id="sub_123",
        status=STATUS_ACTIVE,
        amount=Decimal("4.99"),
    )
    db_session.add(sub)
    await db_session.flush()
    return sub


class TestPaymentService:
    async def test_cancel_marks_row_canceled(self, db_session, subscription):
        gateway = AsyncMock(spec=BasePaymentGateway)
        gateway.name = "stripe"
        gateway.cancel_subscription.return_value = True
        service = PaymentService({"stripe": gateway})

        assert await service.cancel_subscription(db_session, subscription) is True

        gateway.cancel_subscription.assert_awaited_once_with(subscription)
        assert subscription.status == STATUS_CANCELED
        assert subscription.canceled_at is not None

    async def test_failed_cancel_leaves_row_alone(self, db_session, subscription):
        gateway = AsyncMock(spec=BasePaymentGateway)
        gateway.cancel_subscription.return_value = False
        service = PaymentService({"stripe": gateway})

        assert await service.cancel_subscription(db_session, subscription) is False
        assert subscription.status == STATUS_ACTIVE
        assert subscription.canceled_at is None

    async def test_unknown_provider(self, db_session, subscription):
        subscription.provider = "bitpay"
        with pytest.raises(PaymentError, match="Unsupported payment provider: bitpay"):
            await PaymentService({"stripe": CreditGateway()}).cancel_subscription(db_session, subscription)

    async def test_provider_lookup_is_case_insensitive(self, subscription):
        subscription.provider = "Credit"
        gateway = CreditGateway()
        assert PaymentService({"credit": gateway}).gateway_for(subscription) is gateway

    def test_default_gateways(self):
        service = PaymentService()
        assert set(service.gateways) == {"stripe", "paypal", "credit"}


class TestGateways:
    async def test_credit_always_cancels(self, subscription):
        assert await CreditGateway().cancel_subscription(subscription) is True

    async def test_missing_external_id(self, subscription):
        subscription.external_id = None
        gateway = StripeGateway(secret_key="sk_test", api_base="https://stripe.test")
        assert await gateway.cancel_subscription(subscription) is False

    async def test_stripe_cancel(self, subscription):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "sub_123", "status": "canceled"})

        gateway = StripeGateway(secret_key="sk_test", api_base="https://stripe.test/")
        with _mock_http(handler):
            assert await gateway.cancel_subscription(subscription) is True

        (request,) = seen
        assert request.method == "DELETE"
        assert str(request.url) == "https://stripe.test/v1/subscriptions/sub_123"
        assert request.headers["Authorization"] == "Bearer sk_test"

    async def test_stripe_error_returns_false(self, subscription):
        gateway = StripeGateway(secret_key="sk_test", api_base="https://stripe.test")
        with _mock_http(lambda request: httpx.Response(500, json={"error": {}})):
            assert await gateway.cancel_subscription(subscription) is False

    async def test_paypal_cancel(self, subscription):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path == "/v1/oauth2/token":
                return httpx.Response(200, json={"access_token": "A21AA"})
            assert request.headers["Authorization"] == "Bearer A21AA"
            return httpx.Response(204)

        subscription.provider = "paypal"
        subscription.external_id = "I-BW452GLLEP1G"
        gateway = PaypalGateway(client_id="cid", secret="shh", api_base="https://paypal.test")
        with _mock_http(handler):
            assert await gateway.cancel_subscription(subscription) is True

        assert paths == ["/v1/oauth2/token", "/v1/billing/subscriptions/I-BW452GLLEP1G/cancel"]


class TestActiveSubscriptions:
    async def test_filters_active_for_sender(self, db_session, make_user):
        fan = await make_user()
        creator = await make_user()
        now = datetime.now(timezone.utc)

        def sub(**overrides):
            values = {
                "sender_user_id": fan.id,
                "recipient_user_id": creator.id,
                "provider": "credit",
                "status": STATUS_ACTIVE,
                "expires_at": now + timedelta(days=7),
            }
            values.update(overrides)
            row = Subscription(**values)
            db_session.add(row)
            return row

        open_ended = sub(expires_at=None)
        current = sub()
        sub(status=STATUS_CANCELED)
        sub(expires_at=now - timedelta(days=1))
        sub(sender_user_id=creator.id, recipient_user_id=fan.id)
        await db_session.flush()

        active = await get_active_subscriptions(db_session, fan.id)

        assert list(active) == [open_ended, current]
