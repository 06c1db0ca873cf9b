"""Checkout session model (fulfillment ledger).

One row per Stripe Checkout Session that has reached fulfillment. The
fulfilled flag flips false -> true at most once; claim_token/claimed_at
hold the in-flight claim of whichever caller is currently fulfilling.
"""

from app.extensions import db


class CheckoutSession(db.Model):
    __tablename__ = "checkout_sessions"

    id = db.Column(db.String(255), primary_key=True)  # e.g. "cs_test_a1B2..."
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True, index=True
    )
    payment_status = db.Column(db.String(50), nullable=True)  # paid | no_payment_required
    fulfilled = db.Column(db.Boolean, nullable=False, default=False)
    fulfilled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    fulfillment_data = db.Column(db.JSON, nullable=True)
    session_data = db.Column(
        db.JSON, nullable=True
    )  # mode, amount_total, currency, customer_email
    claim_token = db.Column(db.String(36), nullable=True)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "payment_status": self.payment_status,
            "fulfilled": self.fulfilled,
            "fulfilled_at": (
                self.fulfilled_at.isoformat() if self.fulfilled_at else None
            ),
            "fulfillment_data": self.fulfillment_data,
            "session_data": self.session_data,
        }

    def __repr__(self):
        state = "fulfilled" if self.fulfilled else "pending"
        return f"<CheckoutSession {self.id} ({state})>"
