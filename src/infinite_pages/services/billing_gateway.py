"""
Billing Gateway - Abstract interface for the payment provider
Covers subscriptions, one-off payments and Connect payouts to creators
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any
from datetime import datetime
import logging

import stripe

from ..exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


class BillingGateway(ABC):
    """Abstract base class for payment providers"""

    @abstractmethod
    def create_customer(self, email: str, name: Optional[str] = None, metadata: Optional[Dict] = None) -> Dict[str, Any]:
        """Create a customer in the payment provider"""
        pass

    @abstractmethod
    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Create a hosted subscription checkout"""
        pass

    @abstractmethod
    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        """Create a self-service billing portal session"""
        pass

    @abstractmethod
    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str = "usd",
        customer_id: Optional[str] = None,
        metadata: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Create a one-off payment"""
        pass

    @abstractmethod
    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Fetch subscription state"""
        pass

    @abstractmethod
    def create_transfer(
        self,
        amount_cents: int,
        destination: str,
        metadata: Optional[Dict] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Move funds to a connected account"""
        pass

    @abstractmethod
    def create_connect_account(
        self,
        email: str,
        country: str = "US",
        business_type: str = "individual",
        metadata: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Create a connected account for a creator"""
        pass

    @abstractmethod
    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        """Create an onboarding link for a connected account"""
        pass

    @abstractmethod
    def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        """Fetch connected account capabilities"""
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str, secret: Optional[str] = None) -> bool:
        """Verify webhook signature"""
        pass


def _timestamp_to_datetime(value: Optional[int]) -> Optional[datetime]:
    return datetime.utcfromtimestamp(value) if value else None


class StripeGateway(BillingGateway):
    """Stripe payment gateway"""

    def __init__(self, api_key: str, webhook_secret: Optional[str] = None, connect_webhook_secret: Optional[str] = None):
        """
        Initialize Stripe gateway

        Args:
            api_key: Stripe API key (test or live)
            webhook_secret: Stripe webhook signing secret
            connect_webhook_secret: Signing secret for Connect events, if different
        """
        self.stripe = stripe
        self.stripe.api_key = api_key
        self.webhook_secret = webhook_secret
        self.connect_webhook_secret = connect_webhook_secret or webhook_secret
        self.is_test = api_key.startswith("sk_test_")

    def _fail(self, action: str, error: Exception):
        logger.error(f"Stripe {action} failed: {error}")
        raise PaymentProviderError(
            f"Payment provider error during {action}",
            details={"provider_message": getattr(error, "user_message", None) or str(error)},
        ) from error

    def create_customer(self, email: str, name: Optional[str] = None, metadata: Optional[Dict] = None) -> Dict[str, Any]:
        """Create a Stripe customer"""
        try:
            customer = self.stripe.Customer.create(
                email=email,
                name=name or email,
                metadata=metadata or {}
            )
            return {"customer_id": customer.id, "provider": "stripe"}
        except stripe.StripeError as e:
            self._fail("customer creation", e)

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Create a subscription-mode Checkout Session"""
        try:
            session = self.stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
                subscription_data={"metadata": metadata or {}},
            )
            return {"session_id": session.id, "url": session.url}
        except stripe.StripeError as e:
            self._fail("checkout session creation", e)

    def create_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        """Create a Billing Portal session"""
        try:
            session = self.stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return {"url": session.url}
        except stripe.StripeError as e:
            self._fail("portal session creation", e)

    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str = "usd",
        customer_id: Optional[str] = None,
        metadata: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Create a PaymentIntent"""
        params: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "metadata": metadata or {},
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        try:
            intent = self.stripe.PaymentIntent.create(**params)
            return {
                "payment_intent_id": intent.id,
                "client_secret": intent.client_secret,
                "status": intent.status,
            }
        except stripe.StripeError as e:
            self._fail("payment intent creation", e)

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Retrieve a Stripe subscription"""
        try:
            subscription = self.stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            self._fail("subscription retrieval", e)

        try:
            item_list = list(subscription["items"]["data"])
        except (KeyError, TypeError):
            item_list = []
        first_item = item_list[0] if item_list else None
        # Newer API versions report the billing period on the item
        period_end = getattr(subscription, "current_period_end", None) or (
            getattr(first_item, "current_period_end", None) if first_item is not None else None
        )
        return {
            "subscription_id": subscription.id,
            "status": subscription.status,
            "customer_id": getattr(subscription, "customer", None),
            "current_period_end": _timestamp_to_datetime(period_end),
            "price_id": first_item["price"]["id"] if first_item else None,
            "metadata": dict(getattr(subscription, "metadata", None) or {}),
        }

    def create_transfer(
        self,
        amount_cents: int,
        destination: str,
        metadata: Optional[Dict] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a Connect transfer"""
        try:
            transfer = self.stripe.Transfer.create(
                amount=amount_cents,
                currency="usd",
                destination=destination,
                description=description,
                metadata=metadata or {},
            )
            return {"transfer_id": transfer.id, "amount_cents": amount_cents}
        except stripe.StripeError as e:
            self._fail("transfer", e)

    def create_connect_account(
        self,
        email: str,
        country: str = "US",
        business_type: str = "individual",
        metadata: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Create an Express connected account"""
        try:
            account = self.stripe.Account.create(
                type="express",
                email=email,
                country=country,
                business_type=business_type,
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                metadata=metadata or {},
            )
            return {"account_id": account.id}
        except stripe.StripeError as e:
            self._fail("connect account creation", e)

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        """Create an onboarding AccountLink"""
        try:
            link = self.stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
            return {"url": link.url, "expires_at": _timestamp_to_datetime(link.expires_at)}
        except stripe.StripeError as e:
            self._fail("account link creation", e)

    def retrieve_account(self, account_id: str) -> Dict[str, Any]:
        """Retrieve a connected account"""
        try:
            account = self.stripe.Account.retrieve(account_id)
        except stripe.StripeError as e:
            self._fail("account retrieval", e)

        requirements = getattr(account, "requirements", None)
        currently_due = getattr(requirements, "currently_due", None) if requirements else None
        return {
            "account_id": account.id,
            "charges_enabled": bool(getattr(account, "charges_enabled", False)),
            "payouts_enabled": bool(getattr(account, "payouts_enabled", False)),
            "details_submitted": bool(getattr(account, "details_submitted", False)),
            "requirements": list(currently_due or []),
        }

    def verify_webhook_signature(self, payload: bytes, signature: str, secret: Optional[str] = None) -> bool:
        """Verify Stripe webhook signature"""
        secret = secret or self.webhook_secret
        if not secret:
            logger.error("Stripe webhook secret not configured")
            return False
        try:
            self.stripe.Webhook.construct_event(payload, signature, secret)
            return True
        except stripe.SignatureVerificationError:
            return False
        except ValueError as e:
            logger.warning(f"Stripe webhook payload could not be parsed: {e}")
            return False


def get_billing_gateway(config) -> BillingGateway:
    """
    Factory function for the configured billing gateway

    Raises:
        PaymentProviderError: Stripe is not configured
    """
    if not config.STRIPE_SECRET_KEY:
        raise PaymentProviderError("Payment processing is not configured")
    if not config.STRIPE_WEBHOOK_SECRET and config.ENV in ["staging", "prod"]:
        raise PaymentProviderError("Stripe webhook secret not configured (required for staging/prod)")

    return StripeGateway(
        config.STRIPE_SECRET_KEY,
        webhook_secret=config.STRIPE_WEBHOOK_SECRET,
        connect_webhook_secret=config.STRIPE_CONNECT_WEBHOOK_SECRET,
    )


def get_gateway() -> BillingGateway:
    """FastAPI dependency for the configured gateway"""
    from ..config import config

    return get_billing_gateway(config)
