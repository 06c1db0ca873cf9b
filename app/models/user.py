"""User model.

The account a Stripe customer and its subscriptions belong to. Emails
are stored lowercased and indexed; checkout fulfillment falls back to
find_by_email() when a session carries no user_id metadata.
"""

import uuid

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from app.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", back_populates="user", uselist=False)
    subscriptions = db.relationship(
        "Subscription", back_populates="user", lazy="dynamic"
    )

    @staticmethod
    def normalize_email(email):
        return (email or "").strip().lower()

    @classmethod
    def find_by_email(cls, email):
        """Case-insensitive lookup by email; None for blank or unknown."""
        email = cls.normalize_email(email)
        if not email:
            return None
        return cls.query.filter_by(email=email).first()

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f"<User {self.email}>"
