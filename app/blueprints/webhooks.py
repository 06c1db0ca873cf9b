"""Webhooks blueprint — /stripe/webhooks

Stripe pushes catalog and subscription changes here. The route only
authenticates and acknowledges; reconciliation lives in
stripe_service.handle_webhook_event().
"""

import logging

from flask import Blueprint, jsonify, request

from app.services.errors import SignatureInvalid
from app.services.stripe_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Verify, reconcile, acknowledge.

    400 -> missing or bad signature; nothing is dispatched.
    500 -> reconciliation failed; Stripe redelivers later, which is safe
           because every write is a full-record upsert.
    200 -> handled, or an event type we don't act on.
    """
    # Signature covers the exact bytes Stripe sent; never re-serialize.
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        logger.warning("Webhook rejected: no Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    try:
        event = verify_webhook_signature(payload, sig_header)
    except SignatureInvalid as e:
        logger.warning(f"Webhook rejected: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    handled, status = handle_webhook_event(event)
    if not handled:
        logger.error(f"Webhook {event['id']} ({event['type']}) failed: {status}")
        return jsonify({"error": "Webhook processing failed"}), 500

    return jsonify({"received": True, "status": status}), 200
