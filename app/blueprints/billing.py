"""Billing blueprint — checkout, portal, post-checkout landing, dashboard.

Routes:
- POST /api/stripe/checkout  — create Checkout Session (JSON, or redirect for form posts)
- POST /api/stripe/portal    — create Customer Portal Session
- GET  /checkout/success     — run fulfillment, then show its status
- GET  /dashboard            — current subscription
- GET  /pricing              — active products and prices
"""

import logging

import stripe
from flask import (
    Blueprint,
    abort,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_required

from app.decorators import api_login_required
from app.extensions import db, limiter
from app.models.catalog import Price
from app.services import subscription_service
from app.services.errors import CustomerNotFound
from app.services.fulfillment_service import fulfill_checkout, get_checkout_session_status
from app.services.stripe_service import create_checkout_session, create_portal_session

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__)


def _wants_json():
    return request.is_json or request.accept_mimetypes.best == "application/json"


# ──────────────────────────────────────────────
# POST /api/stripe/checkout
# ──────────────────────────────────────────────

@billing_bp.route("/api/stripe/checkout", methods=["POST"])
@api_login_required
@limiter.limit("20 per minute")
def checkout():
    """Create a Stripe Checkout Session for one price.

    Accepts {"price_id": ..., "quantity": 1} as JSON or form fields.
    JSON callers get {"session_id", "url"}; form posts are redirected.
    """
    data = request.get_json(silent=True) or request.form
    price_id = (data.get("price_id") or data.get("priceId") or "").strip()

    if not price_id:
        return jsonify({"error": "Price ID is required"}), 400

    try:
        quantity = int(data.get("quantity", 1))
    except (TypeError, ValueError):
        return jsonify({"error": "Quantity must be a whole number"}), 400
    if quantity < 1:
        return jsonify({"error": "Quantity must be at least 1"}), 400

    # Only catalog rows we've mirrored can be checked; unknown IDs go to Stripe.
    price = db.session.get(Price, price_id)
    if price is not None and not price.active:
        return jsonify({"error": "This price is no longer available"}), 400

    try:
        session = create_checkout_session(current_user, price_id, quantity)
    except stripe.StripeError as e:
        logger.error(f"Checkout error: {e}", exc_info=True)
        return jsonify({"error": "Failed to create checkout session"}), 500

    if _wants_json():
        return jsonify({"session_id": session.id, "url": session.url})
    return redirect(session.url, code=303)


# ──────────────────────────────────────────────
# POST /api/stripe/portal
# ──────────────────────────────────────────────

@billing_bp.route("/api/stripe/portal", methods=["POST"])
@api_login_required
@limiter.limit("20 per minute")
def customer_portal():
    """Create a Stripe Customer Portal Session.

    404 if the user has never checked out (no Customer mapping).
    """
    try:
        portal_url = create_portal_session(current_user)
    except CustomerNotFound:
        return jsonify({"error": "No customer found. Please subscribe first."}), 404
    except stripe.StripeError as e:
        logger.error(f"Portal session error: {e}", exc_info=True)
        return jsonify({"error": "Failed to create portal session"}), 500

    if _wants_json():
        return jsonify({"url": portal_url})
    return redirect(portal_url, code=303)


# ──────────────────────────────────────────────
# GET /checkout/success?session_id=cs_...
# ──────────────────────────────────────────────

@billing_bp.route("/checkout/success")
@login_required
def checkout_success():
    """Post-checkout landing page.

    Fulfills synchronously instead of waiting for a webhook; fulfillment
    is idempotent so reloads are harmless. The stored status is re-read
    afterwards and shown only to the session's owner.
    """
    session_id = request.args.get("session_id")
    if not session_id:
        return redirect(url_for("billing.dashboard"), code=303)

    result = fulfill_checkout(session_id)
    status = get_checkout_session_status(session_id)
    if status is not None and status["data"]["user_id"] != current_user.id:
        status = None

    if not result.success:
        logger.warning(f"Fulfillment of {session_id} failed: {result.error}")

    return render_template(
        "billing/success.html",
        session_id=session_id,
        result=result,
        status=status,
        already_fulfilled=result.already_fulfilled,
    )


# ──────────────────────────────────────────────
# GET /dashboard
# ──────────────────────────────────────────────

@billing_bp.route("/dashboard")
@login_required
def dashboard():
    """Show the current subscription and its renewal/trial countdown."""
    subscription = subscription_service.get_user_subscription(current_user.id)
    return render_template(
        "billing/dashboard.html",
        subscription=subscription,
        is_trialing=subscription_service.is_subscription_trialing(subscription),
        is_canceling=subscription_service.is_subscription_canceled(subscription),
        is_past_due=subscription_service.is_subscription_past_due(subscription),
        trial_days=subscription_service.get_trial_days_remaining(subscription),
        renewal_days=subscription_service.get_days_until_renewal(subscription),
    )


# ──────────────────────────────────────────────
# GET /pricing
# ──────────────────────────────────────────────

@billing_bp.route("/pricing")
def pricing():
    """Public pricing page built from the mirrored catalog."""
    if request.args.get("canceled"):
        logger.info("Checkout canceled by user")
    return render_template(
        "billing/pricing.html",
        products=subscription_service.get_active_products(),
        canceled=bool(request.args.get("canceled")),
    )


@billing_bp.route("/api/checkout-sessions/<session_id>")
@api_login_required
def checkout_session_status(session_id):
    """JSON view of a stored checkout session, scoped to its owner."""
    status = get_checkout_session_status(session_id)
    if status is None or status["data"]["user_id"] != current_user.id:
        abort(404)
    return jsonify(status)
