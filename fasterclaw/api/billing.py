"""
Billing endpoints.

POST /billing/checkout      - Stripe Checkout session for a plan (authenticated)
POST /billing/portal        - Stripe customer portal session (authenticated)
GET  /billing/invoices      - caller's invoices (authenticated)
GET  /billing/subscription  - latest subscription plus the plan catalog (authenticated)
POST /billing/webhook       - Stripe webhook (no auth, verified by signature)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fasterclaw.api.auth import get_current_user
from fasterclaw.api.deps import get_billing
from fasterclaw.config import Settings, get_settings
from fasterclaw.db import Subscription, User, get_db
from fasterclaw.schemas import (
    CheckoutRequest,
    InvoiceResponse,
    SubscriptionStatusResponse,
    UrlResponse,
)
from fasterclaw.services.billing_reconciler import BillingReconciler
from fasterclaw.services.stripe_service import StripeBilling, plan_catalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


async def _customer_id(user: User, billing: StripeBilling, db: AsyncSession) -> str:
    if user.stripe_customer_id:
        return user.stripe_customer_id
    user.stripe_customer_id = await billing.create_customer(user.id, user.email, user.name)
    await db.commit()
    logger.info("Created Stripe customer for user %s", user.id)
    return user.stripe_customer_id


@router.post("/checkout", response_model=UrlResponse)
async def create_checkout(
    body: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db),
):
    customer_id = await _customer_id(current_user, billing, db)
    url = await billing.create_checkout_session(customer_id, current_user.id, body.plan)
    return UrlResponse(url=url)


@router.post("/portal", response_model=UrlResponse)
async def create_portal(
    current_user: User = Depends(get_current_user),
    billing: StripeBilling = Depends(get_billing),
):
    if not current_user.stripe_customer_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No billing account found")
    return UrlResponse(url=await billing.create_portal_session(current_user.stripe_customer_id))


@router.get("/invoices", response_model=List[InvoiceResponse])
async def list_invoices(
    current_user: User = Depends(get_current_user),
    billing: StripeBilling = Depends(get_billing),
):
    if not current_user.stripe_customer_id:
        return []
    return await billing.list_invoices(current_user.stripe_customer_id)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == current_user.id)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return SubscriptionStatusResponse(
        subscription=result.scalar_one_or_none(),
        plans=plan_catalog(settings),
    )


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Signature is checked over the raw request bytes; the body is never re-serialized."""
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header")

    payload = await request.body()
    event = billing.verify_webhook(payload, stripe_signature)
    await BillingReconciler(db, billing, settings).handle(event)
    return {"received": True}
