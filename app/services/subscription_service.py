"""Read-side helpers for subscriptions and the product catalog.

Used by the dashboard and pricing pages. The predicates accept a
Subscription row or None and never raise.
"""

import logging
import math
from datetime import datetime, timezone

from app.models.billing import Subscription
from app.models.catalog import Price, Product

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")
PAST_DUE_STATUSES = ("past_due", "incomplete")


def get_user_subscription(user_id):
    """Return the user's active or trialing subscription, or None."""
    return (
        Subscription.query
        .filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Subscription.created.desc())
        .first()
    )


def _display_order(product):
    order = (product.metadata_ or {}).get("order")
    try:
        return (0, float(order))
    except (TypeError, ValueError):
        return (1, product.name or "")


def get_active_products():
    """Active products, each paired with its active prices.

    Ordered by metadata["order"]; products without one sort last, by name.
    Returns a list of (Product, [Price, ...]).
    """
    products = Product.query.filter_by(active=True).all()
    prices_by_product = {}
    if products:
        prices = (
            Price.query
            .filter(
                Price.active.is_(True),
                Price.product_id.in_([p.id for p in products]),
            )
            .order_by(Price.unit_amount)
            .all()
        )
        for price in prices:
            prices_by_product.setdefault(price.product_id, []).append(price)

    products.sort(key=_display_order)
    return [(p, prices_by_product.get(p.id, [])) for p in products]


# ── Predicates ──

def is_subscription_active(subscription):
    return subscription is not None and subscription.status in ACTIVE_STATUSES


def is_subscription_trialing(subscription):
    return subscription is not None and subscription.status == "trialing"


def is_subscription_canceled(subscription):
    """True once the subscription is set to end at the close of the period."""
    return subscription is not None and subscription.cancel_at_period_end is True


def is_subscription_past_due(subscription):
    return subscription is not None and subscription.status in PAST_DUE_STATUSES


def _days_until(moment, now=None):
    if moment is None:
        return None
    if moment.tzinfo is None:
        # SQLite drops tzinfo; stored values are always UTC.
        moment = moment.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    days = math.ceil((moment - now).total_seconds() / 86400)
    return max(days, 0)


def get_trial_days_remaining(subscription, now=None):
    """Whole days left in the trial (rounded up), 0 once over, None if no trial."""
    if subscription is None:
        return None
    return _days_until(subscription.trial_end, now)


def get_days_until_renewal(subscription, now=None):
    """Whole days until current_period_end (rounded up), or None."""
    if subscription is None:
        return None
    return _days_until(subscription.current_period_end, now)
