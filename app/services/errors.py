"""Billing exceptions.

Hierarchy:
    BillingError
    ├── SignatureInvalid       - webhook signature missing or wrong (400)
    ├── MalformedEvent         - provider object missing required fields
    ├── UpstreamLookupFailed   - a customer/user could not be resolved
    │   ├── CustomerNotFound
    │   └── UserNotFound
    ├── PersistenceFailed      - a data-store write failed
    └── BusinessActionFailed   - a fulfillment side effect errored

Webhook processing raises these; the fulfillment coordinator catches
them and folds them into a FulfillmentResult.
"""


class BillingError(Exception):
    """Base class for all billing errors."""


class SignatureInvalid(BillingError):
    pass


class MalformedEvent(BillingError):
    pass


class UpstreamLookupFailed(BillingError):
    pass


class CustomerNotFound(UpstreamLookupFailed):
    def __init__(self, stripe_customer_id=None, user_id=None):
        self.stripe_customer_id = stripe_customer_id
        self.user_id = user_id
        if stripe_customer_id:
            msg = f"No customer mapping for Stripe customer {stripe_customer_id}"
        else:
            msg = f"No customer mapping for user {user_id}"
        super().__init__(msg)


class UserNotFound(UpstreamLookupFailed):
    def __init__(self, message="User not found"):
        super().__init__(message)


class PersistenceFailed(BillingError):
    pass


class BusinessActionFailed(BillingError):
    def __init__(self, action, cause):
        self.action = action
        self.cause = cause
        super().__init__(f"{action} failed: {cause}")
