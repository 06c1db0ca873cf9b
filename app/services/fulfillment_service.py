"""Checkout fulfillment — grant what was bought, exactly once.

fulfill_checkout() is safe to call any number of times for the same
Checkout Session (the success page calls it on every load). The
checkout_sessions row is the ledger:

    no row            -> never fulfilled, nothing claimed
    fulfilled=False   -> claimed (claim_token set) or released after a failure
    fulfilled=True    -> done; every later call short-circuits

Before running any side effect a caller must win a conditional UPDATE on
the row (the claim). Two concurrent callers cannot both win it, so the
business actions run once even without read-after-write guarantees on
the initial "already fulfilled?" read.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import stripe
from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.extensions import db
from app.models.checkout_session import CheckoutSession
from app.models.user import User
from app.services.errors import BillingError, BusinessActionFailed, UserNotFound
from app.services.payloads import CheckoutSessionPayload
from app.services.stripe_service import retrieve_checkout_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FulfillmentResult:
    success: bool
    already_fulfilled: bool = False
    error: Optional[str] = None

    def to_dict(self):
        return asdict(self)


def _now():
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Public API
# ──────────────────────────────────────────────

def fulfill_checkout(session_id):
    """Fulfill a Checkout Session idempotently.

    Returns a FulfillmentResult. Expected failures (unpaid session,
    unknown user, Stripe or database errors) come back as
    success=False with an error message instead of raising.
    """
    logger.info(f"Processing fulfillment for Checkout Session: {session_id}")

    try:
        return _fulfill(session_id)
    except (BillingError, stripe.StripeError, SQLAlchemyError) as e:
        db.session.rollback()
        logger.error(f"Error fulfilling {session_id}: {e}", exc_info=True)
        return FulfillmentResult(success=False, error=str(e))


def get_checkout_session_status(session_id):
    """Return {"fulfilled": bool, "data": dict} for a session, or None if unknown."""
    try:
        row = db.session.get(CheckoutSession, session_id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error fetching checkout session status: {e}")
        return None

    if row is None:
        return None
    return {"fulfilled": bool(row.fulfilled), "data": row.to_dict()}


def resolve_user_id(session):
    """Find the user a checkout session belongs to.

    Prefers the user_id stamped into the session metadata at checkout
    creation, then falls back to the payer's email.
    Raises UserNotFound.
    """
    if session.user_id:
        if db.session.get(User, session.user_id) is not None:
            return session.user_id
        logger.warning(
            f"Session {session.id} metadata names unknown user {session.user_id}"
        )

    user = User.find_by_email(session.customer_email)
    if user is not None:
        return user.id

    raise UserNotFound()


# ──────────────────────────────────────────────
# Steps
# ──────────────────────────────────────────────

def _fulfill(session_id):
    existing = db.session.get(CheckoutSession, session_id)
    if existing is not None and existing.fulfilled:
        logger.info(
            f"Session {session_id} already fulfilled at {existing.fulfilled_at}"
        )
        return FulfillmentResult(success=True, already_fulfilled=True)

    session = CheckoutSessionPayload.from_stripe(
        retrieve_checkout_session(session_id)
    )

    if session.payment_status == "unpaid":
        logger.info(f"Session {session_id} is unpaid, skipping fulfillment")
        return FulfillmentResult(success=False, error="Payment not completed")

    try:
        user_id = resolve_user_id(session)
    except UserNotFound as e:
        logger.error(f"Could not determine user ID for session: {session_id}")
        return FulfillmentResult(success=False, error=str(e))

    token = _claim(session, user_id)
    if token is None:
        return _claim_conflict(session_id)

    fulfillment_data = perform_fulfillment_actions(session, user_id)

    try:
        completed = _mark_fulfilled(session, user_id, token, fulfillment_data)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error recording fulfillment for {session_id}: {e}")
        _release_claim(session_id, token)
        return FulfillmentResult(success=False, error=str(e))

    if not completed:
        logger.error(f"Claim on {session_id} expired before fulfillment was recorded")
        return FulfillmentResult(success=False, error="Fulfillment claim expired")

    logger.info(f"Session {session_id} fulfilled successfully")
    return FulfillmentResult(success=True)


def _claim(session, user_id):
    """Take the fulfillment claim on a session row.

    Inserts a pending row if none exists, then atomically stamps a
    claim token onto it unless it is fulfilled or freshly claimed by
    someone else. Returns the token, or None if the claim was lost.
    """
    now = _now()

    if db.session.get(CheckoutSession, session.id) is None:
        db.session.add(CheckoutSession(
            id=session.id,
            user_id=user_id,
            payment_status=session.payment_status,
            fulfilled=False,
            session_data=session.snapshot(),
        ))
        try:
            db.session.commit()
        except IntegrityError:
            # Another caller inserted the row first; fall through to the claim.
            db.session.rollback()

    ttl = current_app.config.get("FULFILLMENT_CLAIM_TTL_SECONDS", 300)
    stale_before = now - timedelta(seconds=ttl)
    token = str(uuid.uuid4())

    result = db.session.execute(
        update(CheckoutSession)
        .where(
            CheckoutSession.id == session.id,
            CheckoutSession.fulfilled.is_(False),
            or_(
                CheckoutSession.claim_token.is_(None),
                CheckoutSession.claimed_at < stale_before,
            ),
        )
        .values(claim_token=token, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()

    if result.rowcount != 1:
        return None
    return token


def _claim_conflict(session_id):
    row = db.session.get(CheckoutSession, session_id)
    if row is not None and row.fulfilled:
        logger.info(f"Session {session_id} was fulfilled by a concurrent caller")
        return FulfillmentResult(success=True, already_fulfilled=True)

    logger.warning(f"Session {session_id} is being fulfilled by another caller")
    return FulfillmentResult(success=False, error="Fulfillment already in progress")


def _mark_fulfilled(session, user_id, token, fulfillment_data):
    """Flip fulfilled to True, but only while we still hold the claim."""
    result = db.session.execute(
        update(CheckoutSession)
        .where(
            CheckoutSession.id == session.id,
            CheckoutSession.claim_token == token,
        )
        .values(
            user_id=user_id,
            payment_status=session.payment_status,
            fulfilled=True,
            fulfilled_at=_now(),
            fulfillment_data=fulfillment_data,
            session_data=session.snapshot(),
            claim_token=None,
            claimed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def _release_claim(session_id, token):
    """Drop our claim so a retry can start over immediately."""
    try:
        db.session.execute(
            update(CheckoutSession)
            .where(
                CheckoutSession.id == session_id,
                CheckoutSession.claim_token == token,
            )
            .values(claim_token=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
    except SQLAlchemyError as e:
        # The claim still expires after FULFILLMENT_CLAIM_TTL_SECONDS.
        db.session.rollback()
        logger.error(f"Could not release claim on {session_id}: {e}")


# ──────────────────────────────────────────────
# Business actions
# ──────────────────────────────────────────────

def perform_fulfillment_actions(session, user_id):
    """Run the side effects for a paid session.

    Each action is isolated: a failure is recorded under "errors" and
    the remaining actions still run, so the ledger row always gets
    written.

    Returns {"actions_performed": [...], "timestamp": iso8601[, "errors": {...}]}.
    """
    fulfillment_data = {
        "actions_performed": [],
        "timestamp": _now().isoformat(),
    }

    actions = []
    if session.mode == "subscription":
        actions.append(("subscription_activated", _activate_subscription))
    if session.mode == "payment":
        actions.append(("payment_processed", _process_payment))
    actions.append(("confirmation_email_sent", _send_confirmation_email))

    for name, action in actions:
        try:
            if action(session, user_id) is not False:
                fulfillment_data["actions_performed"].append(name)
        except Exception as e:
            failure = BusinessActionFailed(name, e)
            logger.error(f"Fulfillment action for {session.id}: {failure}", exc_info=True)
            fulfillment_data.setdefault("errors", {})[name] = str(failure)

    return fulfillment_data


def _activate_subscription(session, user_id):
    # The subscription row itself arrives through the
    # customer.subscription.* webhooks; nothing to write here.
    logger.info(f"Subscription fulfillment for user {user_id}")


def _process_payment(session, user_id):
    logger.info(
        f"Payment fulfillment for user {user_id}: "
        f"{session.amount_total} {session.currency}"
    )


def _send_confirmation_email(session, user_id):
    """Email the buyer a receipt-style confirmation. Skipped without an address."""
    from app.services.email_service import send_email

    user = db.session.get(User, user_id)
    to = (user.email if user else None) or session.customer_email
    if not to:
        return False

    amount = None
    if session.amount_total is not None:
        amount = f"{session.amount_total / 100:.2f} {(session.currency or '').upper()}"

    return send_email(
        to=to,
        subject="Your purchase is confirmed",
        template="emails/purchase_confirmation.html",
        context={
            "customer_name": (user.full_name if user else None) or "",
            "mode": session.mode,
            "amount": amount,
            "dashboard_url": f"{current_app.config['APP_BASE_URL']}/dashboard",
        },
    )
