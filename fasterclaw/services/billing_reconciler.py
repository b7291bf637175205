"""
Applies verified Stripe webhook events to the local ``subscriptions`` table.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fasterclaw.config import Settings
from fasterclaw.db.models import Subscription, SubscriptionStatus
from fasterclaw.services.stripe_service import StripeBilling, instance_limit, plan_for_price

logger = logging.getLogger(__name__)


def map_subscription_status(status: Optional[str]) -> str:
    try:
        return SubscriptionStatus((status or "").upper()).value
    except ValueError:
        logger.warning("Unrecognised Stripe subscription status %r", status)
        return SubscriptionStatus.INCOMPLETE.value


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.utcfromtimestamp(value) if value else None


def _first_item(subscription: Any) -> Dict[str, Any]:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def _period(subscription: Any, field: str) -> Optional[datetime]:
    # Newer API versions report periods on the subscription item
    value = subscription.get(field)
    if value is None:
        value = _first_item(subscription).get(field)
    return _timestamp(value)


def _price_id(subscription: Any) -> Optional[str]:
    price = _first_item(subscription).get("price") or {}
    return price.get("id")


def _customer_id(subscription: Any) -> str:
    customer = subscription.get("customer")
    if isinstance(customer, str):
        return customer
    return customer.get("id") if customer else ""


class BillingReconciler:
    def __init__(self, db: AsyncSession, billing: StripeBilling, settings: Settings):
        self.db = db
        self.billing = billing
        self.settings = settings

    async def handle(self, event: Dict[str, Any]) -> None:
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        handler = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
        }.get(event_type)
        if handler is None:
            logger.debug("Ignoring Stripe event %s", event_type)
            return
        logger.info("Handling Stripe event %s (%s)", event_type, event.get("id"))
        await handler(obj)

    async def _set(self, subscription_id: str, **values) -> int:
        result = await self.db.execute(
            update(Subscription)
            .where(Subscription.stripe_subscription_id == subscription_id)
            .values(updated_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def _checkout_completed(self, session: Dict[str, Any]) -> None:
        user_id = (session.get("metadata") or {}).get("userId")
        if not user_id:
            logger.warning("checkout.session.completed %s has no userId metadata", session.get("id"))
            return
        if session.get("mode") != "subscription" or not session.get("subscription"):
            return

        subscription_id = session["subscription"]
        live = await self.billing.retrieve_subscription(subscription_id)
        price_id = _price_id(live)
        plan = (session.get("metadata") or {}).get("plan") or plan_for_price(price_id, self.settings)
        values = dict(
            stripe_customer_id=_customer_id(live) or session.get("customer") or "",
            stripe_price_id=price_id,
            status=map_subscription_status(live.get("status")),
            plan=plan,
            instance_limit=instance_limit(plan),
            current_period_start=_period(live, "current_period_start"),
            current_period_end=_period(live, "current_period_end") or datetime.utcnow(),
            cancel_at_period_end=bool(live.get("cancel_at_period_end")),
        )

        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == subscription_id)
        )
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(user_id=user_id, stripe_subscription_id=subscription_id, **values)
            self.db.add(subscription)
        else:
            for key, value in values.items():
                setattr(subscription, key, value)
        await self.db.commit()
        logger.info("Subscription %s for user %s is %s (%s)", subscription_id, user_id, values["status"], plan)

    async def _subscription_updated(self, live: Dict[str, Any]) -> None:
        values: Dict[str, Any] = dict(
            status=map_subscription_status(live.get("status")),
            current_period_start=_period(live, "current_period_start"),
            cancel_at_period_end=bool(live.get("cancel_at_period_end")),
        )
        period_end = _period(live, "current_period_end")
        if period_end is not None:
            values["current_period_end"] = period_end
        price_id = _price_id(live)
        plan = plan_for_price(price_id, self.settings)
        if plan is not None:
            values.update(plan=plan, stripe_price_id=price_id, instance_limit=instance_limit(plan))
        await self._set(live["id"], **values)

    async def _subscription_deleted(self, live: Dict[str, Any]) -> None:
        await self._set(live["id"], status=SubscriptionStatus.CANCELED.value)

    async def _payment_succeeded(self, invoice: Dict[str, Any]) -> None:
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            return
        live = await self.billing.retrieve_subscription(subscription_id)
        await self._set(subscription_id, status=map_subscription_status(live.get("status")))

    async def _payment_failed(self, invoice: Dict[str, Any]) -> None:
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            return
        await self._set(subscription_id, status=SubscriptionStatus.PAST_DUE.value)
