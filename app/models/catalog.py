"""Catalog models mirrored from Stripe products and prices."""

from app.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.String(255), primary_key=True)  # e.g. "prod_Abc..."
    active = db.Column(db.Boolean, default=True)
    name = db.Column(db.String(255))
    description = db.Column(db.Text, nullable=True)
    image = db.Column(db.Text, nullable=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)

    # --- Relationships ---
    prices = db.relationship(
        "Price",
        back_populates="product",
        primaryjoin="Product.id == foreign(Price.product_id)",
        lazy="dynamic",
    )

    def __repr__(self):
        return f"<Product {self.id} {self.name!r}>"


class Price(db.Model):
    __tablename__ = "prices"

    TYPES = ["one_time", "recurring"]
    INTERVALS = ["day", "week", "month", "year"]

    id = db.Column(db.String(255), primary_key=True)  # e.g. "price_Abc..."
    # No FK constraint: price events can arrive before their product event.
    product_id = db.Column(db.String(255), nullable=False, index=True)
    active = db.Column(db.Boolean, default=True)
    currency = db.Column(db.String(3))
    type = db.Column(db.String(20))  # one_time | recurring
    unit_amount = db.Column(db.BigInteger, nullable=True)  # minor units
    interval = db.Column(db.String(10), nullable=True)
    interval_count = db.Column(db.Integer, nullable=True)
    trial_period_days = db.Column(db.Integer, nullable=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)

    # --- Relationships ---
    product = db.relationship(
        "Product",
        back_populates="prices",
        primaryjoin="foreign(Price.product_id) == Product.id",
    )

    def __repr__(self):
        return f"<Price {self.id} {self.unit_amount} {self.currency}>"
