"""Billing service — DB sync helpers.

Responsible for:
- Upserting products, prices and subscriptions from Stripe objects
- Getting or creating Customer records (user <-> Stripe customer)
- Resolving the owning user of a Stripe customer

Every upsert is a full-record replacement keyed by the Stripe ID, so
replaying the same webhook leaves the row unchanged. Writes are flushed,
not committed: the caller owns the transaction.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.billing import Customer, Subscription
from app.models.catalog import Price, Product
from app.services.errors import CustomerNotFound, PersistenceFailed
from app.services.payloads import PricePayload, ProductPayload

logger = logging.getLogger(__name__)


def _replace(model, record):
    """Insert-or-replace a row by primary key."""
    try:
        row = db.session.merge(model(**record))
        db.session.flush()
    except SQLAlchemyError as e:
        logger.error(f"Error upserting {model.__name__} {record.get('id')}: {e}")
        raise PersistenceFailed(
            f"Could not upsert {model.__tablename__} {record.get('id')}"
        ) from e
    return row


def upsert_product(stripe_product):
    """Mirror a Stripe product into the products table."""
    payload = ProductPayload.from_stripe(stripe_product)
    product = _replace(Product, payload.to_record())
    logger.info(f"Product {payload.id} upserted successfully")
    return product


def upsert_price(stripe_price):
    """Mirror a Stripe price into the prices table.

    price.product may arrive as a bare ID or as an expanded product.
    """
    payload = PricePayload.from_stripe(stripe_price)
    price = _replace(Price, payload.to_record())
    logger.info(f"Price {payload.id} upserted successfully")
    return price


def upsert_subscription(payload, user_id):
    """Replace the stored subscription with Stripe's current view."""
    subscription = _replace(Subscription, payload.to_record(user_id))
    return subscription


def get_customer_by_user_id(user_id):
    """Return the Customer mapping for a user, or None."""
    return db.session.get(Customer, user_id)


def get_user_id_from_stripe_customer(stripe_customer_id):
    """Look up the owning user of a Stripe customer.

    Raises CustomerNotFound if no mapping exists.
    """
    customer = None
    if stripe_customer_id:
        customer = Customer.query.filter_by(
            stripe_customer_id=stripe_customer_id
        ).first()
    if customer is None:
        raise CustomerNotFound(stripe_customer_id=stripe_customer_id)
    return customer.id


def save_customer(user_id, stripe_customer_id):
    """Record (or repoint) the Stripe customer for a user.

    Returns the Customer instance (committed).
    """
    customer = db.session.get(Customer, user_id)
    if customer:
        if customer.stripe_customer_id != stripe_customer_id:
            logger.info(
                f"Repointing user {user_id} from {customer.stripe_customer_id} "
                f"to {stripe_customer_id}"
            )
            customer.stripe_customer_id = stripe_customer_id
    else:
        customer = Customer(id=user_id, stripe_customer_id=stripe_customer_id)
        db.session.add(customer)
    db.session.commit()
    return customer
