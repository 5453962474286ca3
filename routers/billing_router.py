"""
Billing Router - API endpoints for trial status and Stripe billing
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Request, Depends, Body
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from config.settings import settings
from crud.user import UserRepository
from database import get_db
from services.billing_service import BillingService
from services.trial_service import TrialService, TenantNotFoundError
from utils.shared_utils import log_endpoint_event

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


def _error(result: dict, default_status: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=result.get("status", default_status),
        content={"error": result.get("error", "Unknown error")},
    )


async def _load_user(db: AsyncSession, current_user: dict):
    return await UserRepository(db).get_user_by_id(int(current_user["user_id"]))


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed. Always returns 200 OK to Stripe to
    prevent retries.
    """
    try:
        webhook_secret = settings.stripe_webhook_secret
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Webhook secret not configured"}
            )

        # Raw body is required for signature verification
        payload = await request.body()

        stripe_signature = request.headers.get("stripe-signature")
        if not stripe_signature:
            logger.error("Missing Stripe-Signature header")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Missing signature header"}
            )

        try:
            event = stripe.Webhook.construct_event(
                payload,
                stripe_signature,
                webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.error(f"Stripe webhook signature verification failed: {e}")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Invalid webhook signature"}
            )
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Invalid payload format"}
            )

        result = await BillingService(db).process_webhook(event)

        return JSONResponse(
            status_code=200,
            content={
                "ok": not result.get("is_error", True),
                "received": True,
                "event_type": event["type"]
            }
        )

    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": str(e)}
        )


@billing_router.get("/config")
async def get_billing_config(db: AsyncSession = Depends(get_db)):
    """Return the Stripe publishable key for the frontend."""
    result = BillingService(db).get_publishable_key()
    if result.get("is_error"):
        return _error(result)
    return {"publishableKey": result["data"]}


@billing_router.get("/products")
async def get_products(db: AsyncSession = Depends(get_db)):
    """List active products with their active prices, straight from Stripe."""
    result = await BillingService(db).list_products_with_prices()
    if result.get("is_error"):
        return _error(result)
    return {"data": result["data"]}


@billing_router.get("/subscription")
async def get_subscription(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Return the tenant's subscription record, or null."""
    try:
        user = await _load_user(db, current_user)
        if user is None:
            return {"subscription": None}
        result = await BillingService(db).get_subscription(user)
        return {"subscription": result["data"]}
    except Exception as e:
        logger.error(f"Error fetching subscription: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch subscription"})


@billing_router.get("/trial")
async def get_trial_status(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Return the tenant's TrialStatus:
    {isTrialActive, daysLeft, trialEndDate, hasSubscription}
    """
    try:
        trial_service = TrialService(db, UserRepository(db))
        status = await trial_service.get_trial_status(int(current_user["user_id"]))
    except TenantNotFoundError:
        log_endpoint_event("/api/billing/trial", current_user["user_id"], "error", {"error": "User not found"})
        return JSONResponse(status_code=404, content={"error": "User not found"})
    except Exception as e:
        logger.error(f"Error fetching trial status: {e}", exc_info=True)
        log_endpoint_event("/api/billing/trial", current_user["user_id"], "error", {"error": str(e)})
        return JSONResponse(status_code=500, content={"error": "Failed to fetch trial status"})

    return status.to_response()


@billing_router.post("/checkout")
async def create_checkout_session(
    request: Request,
    price_id: Optional[str] = Body(default=None, alias="priceId", embed=True),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a Stripe Checkout session for the tenant.

    Returns:
        {"url": <checkout url>}
    """
    if not price_id:
        return JSONResponse(status_code=400, content={"error": "Price ID is required"})

    user = await _load_user(db, current_user)
    if user is None:
        return JSONResponse(status_code=404, content={"error": "User not found"})

    base_url = _base_url(request)
    result = await BillingService(db).create_checkout_session(
        user,
        price_id,
        success_url=f"{base_url}/billing?success=true",
        cancel_url=f"{base_url}/billing?canceled=true",
    )
    if result.get("is_error"):
        log_endpoint_event("/api/billing/checkout", current_user["user_id"], "error", {"error": result.get("error")})
        return _error(result)
    log_endpoint_event("/api/billing/checkout", current_user["user_id"], "success", {"price_id": price_id})
    return {"url": result["data"]}


@billing_router.post("/portal")
async def create_billing_portal_session(
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a Stripe Billing Portal session for the tenant.

    Returns:
        {"url": <portal url>}
    """
    user = await _load_user(db, current_user)
    if user is None:
        return JSONResponse(status_code=404, content={"error": "User not found"})

    result = await BillingService(db).create_billing_portal_session(
        user,
        return_url=f"{_base_url(request)}/billing",
    )
    if result.get("is_error"):
        return _error(result)
    return {"url": result["data"]}
