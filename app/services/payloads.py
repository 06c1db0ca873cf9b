"""Typed projections of Stripe objects.

Webhook payloads are large, versioned dicts. Each event kind we act on
gets a small pydantic model holding only the fields we store; anything
else Stripe sends is ignored. A payload missing a required field raises
MalformedEvent instead of leaking a half-read dict into the upserts.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from app.services.errors import MalformedEvent

logger = logging.getLogger(__name__)


def to_datetime(ts):
    """Convert a Unix timestamp to an aware UTC datetime.

    None, 0 and anything unparseable map to None rather than raising,
    so a missing cancel_at never turns into 1970-01-01.
    """
    if ts is None or ts == "" or isinstance(ts, bool):
        return None
    if isinstance(ts, datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    try:
        seconds = float(ts)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparseable timestamp {ts!r}")
        return None
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"Ignoring out-of-range timestamp {ts!r}")
        return None


def _plain(obj):
    """Turn a StripeObject into plain dicts; plain dicts pass through."""
    if type(obj) is dict:
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return obj


def ref_id(value):
    """Stripe fields like price.product may be an ID or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", value)


Timestamp = Annotated[Optional[datetime], BeforeValidator(to_datetime)]


class _StripePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_stripe(cls, obj):
        try:
            return cls.model_validate(_plain(obj))
        except ValidationError as e:
            raise MalformedEvent(f"{cls.__name__}: {e}") from e

    @field_validator("metadata", mode="before", check_fields=False)
    @classmethod
    def default_metadata(cls, v):
        return dict(v) if v else {}


class ProductPayload(_StripePayload):
    id: str
    active: bool = True
    name: Optional[str] = None
    description: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("images", mode="before")
    @classmethod
    def default_images(cls, v):
        return list(v) if v else []

    @property
    def image(self):
        return self.images[0] if self.images else None

    def to_record(self):
        return {
            "id": self.id,
            "active": self.active,
            "name": self.name,
            "description": self.description or None,
            "image": self.image,
            "metadata_": self.metadata,
        }


class RecurringPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    interval: Optional[str] = None
    interval_count: Optional[int] = None
    trial_period_days: Optional[int] = None


class PricePayload(_StripePayload):
    id: str
    product_id: str = Field(alias="product")
    active: bool = True
    currency: str
    type: str
    unit_amount: Optional[int] = None
    recurring: Optional[RecurringPayload] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("product_id", mode="before")
    @classmethod
    def resolve_product(cls, v):
        return ref_id(v)

    def to_record(self):
        recurring = self.recurring or RecurringPayload()
        return {
            "id": self.id,
            "product_id": self.product_id,
            "active": self.active,
            "currency": self.currency,
            "type": self.type,
            "unit_amount": self.unit_amount,
            "interval": recurring.interval,
            "interval_count": recurring.interval_count or None,
            "trial_period_days": recurring.trial_period_days or None,
            "metadata_": self.metadata,
        }


class SubscriptionPayload(_StripePayload):
    id: str
    customer_id: str = Field(alias="customer")
    status: str
    price_id: Optional[str] = None
    quantity: int = 1
    cancel_at_period_end: bool = False
    cancel_at: Timestamp = None
    canceled_at: Timestamp = None
    current_period_start: Timestamp = None
    current_period_end: Timestamp = None
    created: Timestamp = None
    ended_at: Timestamp = None
    trial_start: Timestamp = None
    trial_end: Timestamp = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("customer_id", mode="before")
    @classmethod
    def resolve_customer(cls, v):
        return ref_id(v)

    @field_validator("cancel_at_period_end", mode="before")
    @classmethod
    def coerce_cancel_flag(cls, v):
        return bool(v)

    @classmethod
    def from_stripe(cls, obj):
        data = dict(_plain(obj))
        item = _first_item(data)
        if item:
            data.setdefault("price_id", ref_id(item.get("price")))
            data.setdefault("quantity", item.get("quantity") or 1)
            # Newer API versions moved the billing period onto the item.
            for key in ("current_period_start", "current_period_end"):
                if not data.get(key):
                    data[key] = item.get(key)
        if data.get("quantity") is None:
            data["quantity"] = 1
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedEvent(f"{cls.__name__}: {e}") from e

    def to_record(self, user_id):
        return {
            "id": self.id,
            "user_id": user_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "price_id": self.price_id,
            "quantity": self.quantity,
            "cancel_at_period_end": self.cancel_at_period_end,
            "cancel_at": self.cancel_at,
            "canceled_at": self.canceled_at,
            "current_period_start": self.current_period_start,
            "current_period_end": self.current_period_end,
            "created": self.created,
            "ended_at": self.ended_at,
            "trial_start": self.trial_start,
            "trial_end": self.trial_end,
            "metadata_": self.metadata,
        }


def _first_item(data):
    items = data.get("items") or {}
    rows = items.get("data") if isinstance(items, dict) else None
    if rows:
        return rows[0]
    return None


class CheckoutSessionPayload(_StripePayload):
    """The parts of a checkout.Session the fulfillment flow reads."""

    id: str
    mode: Optional[str] = None
    payment_status: str
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj):
        data = dict(_plain(obj))
        if not data.get("customer_email"):
            # Sessions created for an existing customer leave customer_email
            # empty; the payer email then lives on customer_details.
            details = data.get("customer_details") or {}
            data["customer_email"] = details.get("email")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedEvent(f"{cls.__name__}: {e}") from e

    @property
    def user_id(self):
        return self.metadata.get("user_id") or None

    def snapshot(self):
        return {
            "mode": self.mode,
            "amount_total": self.amount_total,
            "currency": self.currency,
            "customer_email": self.customer_email,
        }
