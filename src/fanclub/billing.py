"""
Subscription billing with payment gateway abstraction.

Supports Stripe, PayPal, and wallet-funded (credit) subscriptions.
The gateway is selected per subscription by its `provider` column.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

import httpx
import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from fanclub.config import Settings, get_settings
from fanclub.db.models import Subscription

logger = structlog.get_logger()

STATUS_ACTIVE = "completed"
STATUS_CANCELED = "canceled"


class PaymentError(Exception):
    """Raised when a subscription cannot be routed to a gateway."""


class BasePaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    name: str = ""

    @abstractmethod
    async def cancel_subscription(self, subscription: Subscription) -> bool:
        """Stop future charges for a subscription. Returns True on success."""
        ...


class StripeGateway(BasePaymentGateway):
    """Cancel subscriptions through the Stripe REST API."""

    name = "stripe"

    def __init__(self, secret_key: str, api_base: str, timeout: float = 10.0) -> None:
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def cancel_subscription(self, subscription: Subscription) -> bool:
        """Cancel via DELETE /v1/subscriptions/{id}."""
        if not subscription.external_id:
            logger.warning("subscription_missing_external_id", subscription_id=subscription.id, provider=self.name)
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.delete(
                    f"{self.api_base}/v1/subscriptions/{subscription.external_id}",
                    headers={"Authorization": f"Bearer {self.secret_key}"},
                )
                response.raise_for_status()
                status = response.json().get("status")
        except httpx.HTTPError:
            logger.exception("subscription_cancel_request_failed", subscription_id=subscription.id, provider=self.name)
            return False
        return status == "canceled"


class PaypalGateway(BasePaymentGateway):
    """Cancel subscriptions through the PayPal billing API."""

    name = "paypal"

    def __init__(self, client_id: str, secret: str, api_base: str, timeout: float = 10.0) -> None:
        self.client_id = client_id
        self.secret = secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            f"{self.api_base}/v1/oauth2/token",
            auth=(self.client_id, self.secret),
            data={"grant_type": "client_credentials"},
        )
        response.raise_for_status()
        return response.json()["access_token"]

    async def cancel_subscription(self, subscription: Subscription) -> bool:
        """Cancel via POST /v1/billing/subscriptions/{id}/cancel (204 on success)."""
        if not subscription.external_id:
            logger.warning("subscription_missing_external_id", subscription_id=subscription.id, provider=self.name)
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                token = await self._access_token(client)
                response = await client.post(
                    f"{self.api_base}/v1/billing/subscriptions/{subscription.external_id}/cancel",
                    headers={"Authorization": f"Bearer {token}"},
                    json={"reason": "Account deleted"},
                )
                response.raise_for_status()
        except httpx.HTTPError:
            logger.exception("subscription_cancel_request_failed", subscription_id=subscription.id, provider=self.name)
            return False
        return response.status_code == 204


class CreditGateway(BasePaymentGateway):
    """Wallet-funded subscriptions are renewed by us, so cancelling is local only."""

    name = "credit"

    async def cancel_subscription(self, subscription: Subscription) -> bool:
        return True


def _create_gateways(settings: Settings) -> dict[str, BasePaymentGateway]:
    """Create every configured gateway keyed by provider name."""
    gateways: list[BasePaymentGateway] = [
        StripeGateway(
            secret_key=settings.stripe_secret_key,
            api_base=settings.stripe_api_base,
            timeout=settings.billing_timeout_seconds,
        ),
        PaypalGateway(
            client_id=settings.paypal_client_id,
            secret=settings.paypal_secret,
            api_base=settings.paypal_api_base,
            timeout=settings.billing_timeout_seconds,
        ),
        CreditGateway(),
    ]
    return {gateway.name: gateway for gateway in gateways}


class PaymentService:
    """Routes subscription operations to the gateway that owns them."""

    def __init__(self, gateways: Mapping[str, BasePaymentGateway] | None = None) -> None:
        self.gateways = dict(gateways) if gateways is not None else _create_gateways(get_settings())

    def gateway_for(self, subscription: Subscription) -> BasePaymentGateway:
        gateway = self.gateways.get((subscription.provider or "").lower())
        if gateway is None:
            msg = f"Unsupported payment provider: {subscription.provider}"
            raise PaymentError(msg)
        return gateway

    async def cancel_subscription(self, db: AsyncSession, subscription: Subscription) -> bool:
        """
        Cancel a subscription at its gateway and mark it canceled locally.

        Returns the gateway's result; the row is only updated on success.

        Raises:
            PaymentError: If the subscription's provider has no gateway.
        """
        gateway = self.gateway_for(subscription)
        cancelled = await gateway.cancel_subscription(subscription)
        if not cancelled:
            return False

        subscription.status = STATUS_CANCELED
        subscription.canceled_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("subscription_canceled", subscription_id=subscription.id, provider=gateway.name)
        return True


async def get_active_subscriptions(db: AsyncSession, user_id: int) -> Sequence[Subscription]:
    """Subscriptions the user is currently paying for."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(Subscription)
        .where(Subscription.sender_user_id == user_id)
        .where(Subscription.status == STATUS_ACTIVE)
        .where(or_(Subscription.expires_at.is_(None), Subscription.expires_at > now))
        .order_by(Subscription.id)
    )
    return result.scalars().all()


# Module-level singleton
_payment_service: PaymentService | None = None


def get_payment_service() -> PaymentService:
    """Get or create the payment service singleton."""
    global _payment_service  # noqa: PLW0603
    if _payment_service is None:
        _payment_service = PaymentService()
    return _payment_service


def reset_payment_service() -> None:
    """Reset the payment service singleton (for testing)."""
    global _payment_service  # noqa: PLW0603
    _payment_service = None
