"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions and Customer Portal Sessions
- Verifying webhook signatures against STRIPE_WEBHOOK_SECRET
- Dispatching verified events to the catalog / subscription sync
- Retrieving checkout sessions for fulfillment
- Backfilling the product catalog from Stripe
"""

import logging

import stripe
from flask import current_app

from app.extensions import db
from app.services.billing_service import (
    get_customer_by_user_id,
    get_user_id_from_stripe_customer,
    save_customer,
    upsert_price,
    upsert_product,
    upsert_subscription,
)
from app.services.errors import CustomerNotFound, SignatureInvalid
from app.services.payloads import SubscriptionPayload, ref_id

logger = logging.getLogger(__name__)


def _configure_stripe():
    """Point the module-level SDK at this app's account (and pinned API version)."""
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    api_version = current_app.config.get("STRIPE_API_VERSION")
    if api_version:
        stripe.api_version = api_version


# ──────────────────────────────────────────────
# Checkout & Portal Sessions
# ──────────────────────────────────────────────

def _create_stripe_customer(user):
    customer = stripe.Customer.create(
        email=user.email,
        name=user.full_name or None,
        metadata={"user_id": str(user.id)},
    )
    save_customer(user.id, customer.id)
    logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
    return customer.id


def create_checkout_session(user, price_id, quantity=1):
    """Create a Stripe Checkout Session for a single price.

    Resolves or creates the user's Stripe customer first. The user ID is
    stamped into the session metadata so fulfillment can find the owner
    without relying on the payer's email.

    Returns the Stripe session object (has .id and .url).
    Raises stripe.StripeError on API failures.
    """
    _configure_stripe()
    app_base_url = current_app.config["APP_BASE_URL"]
    mode = current_app.config.get("CHECKOUT_MODE", "subscription")

    existing = get_customer_by_user_id(user.id)
    if existing:
        stripe_customer_id = existing.stripe_customer_id
    else:
        stripe_customer_id = _create_stripe_customer(user)

    def _create_session(customer_id):
        params = {
            "mode": mode,
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": quantity}],
            "success_url": (
                f"{app_base_url}/checkout/success"
                f"?session_id={{CHECKOUT_SESSION_ID}}"
            ),
            "cancel_url": f"{app_base_url}/pricing?canceled=true",
            "allow_promotion_codes": True,
            "billing_address_collection": "auto",
            "metadata": {"user_id": str(user.id)},
        }
        return stripe.checkout.Session.create(**params)

    try:
        session = _create_session(stripe_customer_id)
    except stripe.InvalidRequestError as e:
        # Stored customer may be from Test mode or another account (e.g. after switching to Live)
        if "No such customer" in str(e) and existing:
            logger.warning(
                f"Stored customer {stripe_customer_id} missing in Stripe, recreating"
            )
            stripe_customer_id = _create_stripe_customer(user)
            session = _create_session(stripe_customer_id)
        else:
            raise

    logger.info(f"Checkout session {session.id} created for user {user.id}")
    return session


def create_portal_session(user):
    """Create a Stripe Customer Portal Session.

    Returns the portal session URL.
    Raises CustomerNotFound if the user has never checked out.
    Raises stripe.StripeError on API failures.
    """
    _configure_stripe()
    app_base_url = current_app.config["APP_BASE_URL"]

    customer = get_customer_by_user_id(user.id)
    if not customer:
        raise CustomerNotFound(user_id=user.id)

    session = stripe.billing_portal.Session.create(
        customer=customer.stripe_customer_id,
        return_url=f"{app_base_url}/dashboard",
    )

    return session.url


def retrieve_checkout_session(session_id):
    """Fetch the authoritative checkout session (line items + customer expanded)."""
    _configure_stripe()
    return stripe.checkout.Session.retrieve(
        session_id, expand=["line_items", "customer"]
    )


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    payload must be the raw request body; a re-serialized body will not
    match the signature.

    Returns the verified Stripe event object.
    Raises SignatureInvalid on a missing or invalid signature.
    """
    if not sig_header:
        raise SignatureInvalid("Missing signature")

    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    try:
        return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise SignatureInvalid(f"Invalid signature: {e}") from e


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    No event-ID bookkeeping is needed: every handler is a full-record
    upsert, so a redelivered event converges to the same rows.

    Returns (success: bool, message: str). On failure the session is
    rolled back and the caller should answer 5xx so Stripe retries.
    """
    event_type = event["type"]
    logger.info(f"Received event: {event_type} ({event['id']})")

    handlers = {
        "product.created": _handle_product_change,
        "product.updated": _handle_product_change,
        "price.created": _handle_price_change,
        "price.updated": _handle_price_change,
        "customer.subscription.created": _handle_subscription_created,
        "customer.subscription.updated": _handle_subscription_change,
        "customer.subscription.deleted": _handle_subscription_change,
    }

    handler = handlers.get(event_type)
    if handler is None:
        logger.info(f"Unhandled event type: {event_type}")
        return True, "ignored"

    try:
        handler(event)
        db.session.commit()
    except Exception as e:
        logger.error(f"Error handling {event_type}: {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    return True, "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_product_change(event):
    upsert_product(event["data"]["object"])


def _handle_price_change(event):
    upsert_price(event["data"]["object"])


def _handle_subscription_created(event):
    sub_data = event["data"]["object"]
    manage_subscription_status_change(
        sub_data["id"], ref_id(sub_data["customer"]), create_action=True
    )


def _handle_subscription_change(event):
    sub_data = event["data"]["object"]
    manage_subscription_status_change(sub_data["id"], ref_id(sub_data["customer"]))


def manage_subscription_status_change(subscription_id, stripe_customer_id,
                                      create_action=False):
    """Sync one subscription from Stripe into the subscriptions table.

    The event payload is only used for the IDs; the subscription itself
    is re-fetched so expanded fields are present and we store Stripe's
    latest view rather than a possibly stale snapshot.

    Raises CustomerNotFound if the customer has no local mapping; nothing
    is written in that case.
    """
    user_id = get_user_id_from_stripe_customer(stripe_customer_id)

    _configure_stripe()
    subscription = stripe.Subscription.retrieve(
        subscription_id, expand=["default_payment_method"]
    )

    payload = SubscriptionPayload.from_stripe(subscription)
    upsert_subscription(payload, user_id)

    logger.info(
        f"Subscription {payload.id} {'created' if create_action else 'updated'} "
        f"successfully (status={payload.status})"
    )
    return payload


# ──────────────────────────────────────────────
# Catalog backfill
# ──────────────────────────────────────────────

def sync_catalog():
    """Upsert every Stripe product and price into the local catalog.

    Used to seed a fresh database before any catalog webhooks arrive.
    Returns (product_count, price_count).
    """
    _configure_stripe()

    products = 0
    for product in stripe.Product.list(limit=100).auto_paging_iter():
        upsert_product(product)
        products += 1

    prices = 0
    for price in stripe.Price.list(limit=100).auto_paging_iter():
        upsert_price(price)
        prices += 1

    db.session.commit()
    return products, prices
