"""
Stripe integration helpers: plans, checkout, customer portal, invoices and
webhook verification.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from fasterclaw.config import Settings
from fasterclaw.errors import InvalidStateError, UpstreamError

logger = logging.getLogger(__name__)

# Plan id -> display name, instance limit (-1 = unlimited), settings attribute holding the price id
PLANS = {
    "starter": {"name": "Starter", "instance_limit": 2, "price_setting": "stripe_price_id_starter"},
    "pro": {"name": "Pro", "instance_limit": 10, "price_setting": "stripe_price_id_pro"},
    "enterprise": {"name": "Enterprise", "instance_limit": -1, "price_setting": "stripe_price_id_enterprise"},
}
DEFAULT_INSTANCE_LIMIT = 1


def price_id_for_plan(plan: str, settings: Settings) -> str:
    entry = PLANS.get(plan)
    if entry is None:
        raise InvalidStateError(f"Unknown plan: {plan}")
    price_id = getattr(settings, entry["price_setting"], "")
    if not price_id:
        raise InvalidStateError(
            f"Stripe price ID for plan '{plan}' is not configured "
            f"(set {entry['price_setting'].upper()} in environment)"
        )
    return price_id


def plan_for_price(price_id: Optional[str], settings: Settings) -> Optional[str]:
    if not price_id:
        return None
    for plan, entry in PLANS.items():
        if getattr(settings, entry["price_setting"], "") == price_id:
            return plan
    return None


def instance_limit(plan: Optional[str]) -> int:
    if plan in PLANS:
        return PLANS[plan]["instance_limit"]
    return DEFAULT_INSTANCE_LIMIT


def plan_catalog(settings: Settings) -> List[Dict[str, Any]]:
    return [
        {
            "id": plan,
            "name": entry["name"],
            "instanceLimit": entry["instance_limit"],
            "priceId": getattr(settings, entry["price_setting"], "") or None,
        }
        for plan, entry in PLANS.items()
    ]


class WebhookVerificationError(InvalidStateError):
    pass


class StripeBilling:
    """Async facade over ``stripe.StripeClient``.

    The client is built lazily so the app can start without a secret key;
    only billing calls then fail.
    """

    def __init__(self, settings: Settings, client: Optional[stripe.StripeClient] = None):
        self.settings = settings
        self._client = client

    @property
    def client(self) -> stripe.StripeClient:
        if self._client is None:
            if not self.settings.stripe_secret_key:
                raise UpstreamError("STRIPE_SECRET_KEY is not configured", status_code=500)
            self._client = stripe.StripeClient(
                self.settings.stripe_secret_key,
                http_client=stripe.HTTPXClient(),
            )
        return self._client

    async def create_customer(self, user_id: str, email: str, name: Optional[str] = None) -> str:
        params: Dict[str, Any] = {"email": email, "metadata": {"userId": user_id}}
        if name:
            params["name"] = name
        try:
            customer = await self.client.customers.create_async(params=params)
        except stripe.StripeError as e:
            logger.exception("Stripe customer creation failed for user %s", user_id)
            raise UpstreamError("Failed to create Stripe customer", status_code=500) from e
        return customer.id

    async def create_checkout_session(self, customer_id: str, user_id: str, plan: str) -> str:
        """Subscription checkout for ``plan``. Returns the hosted checkout URL."""
        price_id = price_id_for_plan(plan, self.settings)
        frontend = self.settings.frontend_url.rstrip("/")
        try:
            session = await self.client.checkout.sessions.create_async(
                params={
                    "customer": customer_id,
                    "mode": "subscription",
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "success_url": f"{frontend}/dashboard?success=true",
                    "cancel_url": f"{frontend}/pricing?canceled=true",
                    "metadata": {"userId": user_id, "plan": plan},
                    "subscription_data": {"metadata": {"userId": user_id, "plan": plan}},
                }
            )
        except stripe.StripeError as e:
            logger.exception("Stripe checkout session failed for user %s", user_id)
            raise UpstreamError("Failed to create checkout session", status_code=500) from e
        return session.url

    async def create_portal_session(self, customer_id: str) -> str:
        try:
            session = await self.client.billing_portal.sessions.create_async(
                params={
                    "customer": customer_id,
                    "return_url": f"{self.settings.frontend_url.rstrip('/')}/dashboard/billing",
                }
            )
        except stripe.StripeError as e:
            logger.exception("Stripe portal session failed for customer %s", customer_id)
            raise UpstreamError("Failed to create billing portal session", status_code=500) from e
        return session.url

    async def list_invoices(self, customer_id: str, limit: int = 24) -> List[Dict[str, Any]]:
        try:
            invoices = await self.client.invoices.list_async(params={"customer": customer_id, "limit": limit})
        except stripe.StripeError as e:
            logger.exception("Stripe invoice listing failed for customer %s", customer_id)
            raise UpstreamError("Failed to list invoices", status_code=500) from e
        result = []
        for invoice in invoices.data:
            inv = invoice.to_dict()
            result.append({
                "id": inv["id"],
                "number": inv.get("number"),
                "status": inv.get("status"),
                "amountDue": inv.get("amount_due"),
                "amountPaid": inv.get("amount_paid"),
                "currency": inv.get("currency"),
                "created": inv.get("created"),
                "hostedInvoiceUrl": inv.get("hosted_invoice_url"),
                "invoicePdf": inv.get("invoice_pdf"),
            })
        return result

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """The live subscription as a plain dict, nested objects included."""
        try:
            subscription = await self.client.subscriptions.retrieve_async(subscription_id)
        except stripe.StripeError as e:
            logger.exception("Stripe subscription retrieve failed for %s", subscription_id)
            raise UpstreamError("Failed to retrieve subscription", status_code=500) from e
        return subscription.to_dict()

    def verify_webhook(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        """Verify the signature over the raw bytes and return the event as a dict."""
        secret = self.settings.stripe_webhook_secret
        if not secret:
            logger.error("STRIPE_WEBHOOK_SECRET not set; rejecting webhook")
            raise WebhookVerificationError("Webhook secret not configured")
        try:
            stripe.Webhook.construct_event(payload, sig_header, secret)
        except (stripe.SignatureVerificationError, ValueError):
            logger.warning("Stripe webhook signature verification failed")
            raise WebhookVerificationError("Invalid signature") from None
        return json.loads(payload)
