"""Billing models.

- Customer: links a user to a Stripe customer ID (one-to-one, created
  lazily on first checkout, never deleted here).
- Subscription: mirror of a Stripe subscription, replaced wholesale on
  every customer.subscription.* webhook.

Primary keys are the natural identifiers (user id / Stripe id) so that
db.session.merge() acts as an upsert.
"""

from app.extensions import db


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(
        db.String(36), db.ForeignKey("users.id"), primary_key=True
    )  # same value as users.id
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False, index=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="customer")

    def __repr__(self):
        return f"<Customer stripe={self.stripe_customer_id}>"


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # -- Statuses Stripe may report --
    STATUSES = [
        "trialing",
        "active",
        "past_due",
        "incomplete",
        "incomplete_expired",
        "canceled",
        "unpaid",
        "paused",
    ]

    id = db.Column(db.String(255), primary_key=True)  # e.g. "sub_1Abc..."
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    customer_id = db.Column(db.String(255), nullable=False)  # Stripe customer ID
    status = db.Column(db.String(50), nullable=False)
    price_id = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    cancel_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    created = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_start = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)

    # --- Relationships ---
    user = db.relationship("User", back_populates="subscriptions")
    price = db.relationship(
        "Price",
        primaryjoin="foreign(Subscription.price_id) == Price.id",
        viewonly=True,
    )

    def __repr__(self):
        return f"<Subscription {self.id} ({self.status})>"
