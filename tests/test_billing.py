"""Tests for the billing blueprint.

Covers:
- Checkout API (auth, validation, customer get-or-create, JSON vs redirect)
- Customer portal (auth, 404 without a customer mapping)
- Post-checkout landing page (runs fulfillment, shows status to the owner)
- Dashboard and pricing pages
- End-to-end: checkout -> paid -> fulfill twice
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import stripe

from app.extensions import db
from app.models.billing import Customer, Subscription
from app.models.checkout_session import CheckoutSession

RETRIEVE = "app.services.fulfillment_service.retrieve_checkout_session"


def _paid_session(session_id, metadata, payment_status="paid"):
    return stripe.checkout.Session.construct_from({
        "id": session_id,
        "object": "checkout.session",
        "mode": "subscription",
        "payment_status": payment_status,
        "amount_total": 2900,
        "currency": "usd",
        "customer_email": None,
        "metadata": metadata,
    }, "sk_test_fake")


class TestCheckout:
    """POST /api/stripe/checkout"""

    def test_requires_login(self, client, seed_data):
        resp = client.post("/api/stripe/checkout", json={"price_id": "price_pro_monthly"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Authentication required"

    def test_missing_price_id(self, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])

        resp = client.post("/api/stripe/checkout", json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Price ID is required"

    def test_bad_quantity(self, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])

        resp = client.post(
            "/api/stripe/checkout",
            json={"price_id": "price_pro_monthly", "quantity": 0},
        )
        assert resp.status_code == 400

    def test_inactive_price_rejected(self, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])

        resp = client.post(
            "/api/stripe/checkout", json={"price_id": "price_pro_retired"},
        )
        assert resp.status_code == 400

    @patch("app.services.stripe_service.stripe")
    def test_existing_customer_reused(self, mock_stripe, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_abc", url="https://checkout.stripe.com/c/cs_test_abc",
        )

        resp = client.post(
            "/api/stripe/checkout",
            json={"price_id": "price_pro_monthly", "quantity": 3},
        )

        assert resp.status_code == 200
        assert resp.get_json() == {
            "session_id": "cs_test_abc",
            "url": "https://checkout.stripe.com/c/cs_test_abc",
        }
        mock_stripe.Customer.create.assert_not_called()

        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["customer"] == "cus_sub"
        assert kwargs["line_items"] == [{"price": "price_pro_monthly", "quantity": 3}]
        assert kwargs["metadata"] == {"user_id": seed_data["subscriber_id"]}
        assert "{CHECKOUT_SESSION_ID}" in kwargs["success_url"]

    @patch("app.services.stripe_service.stripe")
    def test_customer_created_on_first_checkout(self, mock_stripe, client, login,
                                                seed_data):
        login(seed_data["newcomer_email"], seed_data["newcomer_password"])
        mock_stripe.Customer.create.return_value = MagicMock(id="cus_new")
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_new", url="https://checkout.stripe.com/c/cs_test_new",
        )

        resp = client.post("/api/stripe/checkout", json={"price_id": "price_basic_monthly"})

        assert resp.status_code == 200
        mock_stripe.Customer.create.assert_called_once()
        assert mock_stripe.Customer.create.call_args.kwargs["email"] == "new@example.com"

        customer = db.session.get(Customer, seed_data["newcomer_id"])
        assert customer.stripe_customer_id == "cus_new"

    @patch("app.services.stripe_service.stripe")
    def test_form_post_redirects(self, mock_stripe, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_abc", url="https://checkout.stripe.com/c/cs_test_abc",
        )

        resp = client.post(
            "/api/stripe/checkout",
            data={"price_id": "price_pro_monthly"},
            follow_redirects=False,
        )

        assert resp.status_code == 303
        assert "checkout.stripe.com" in resp.headers["Location"]

    @patch("app.services.stripe_service.stripe.checkout.Session.create")
    def test_stripe_failure_returns_500(self, mock_create, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])
        mock_create.side_effect = stripe.APIConnectionError("down")

        resp = client.post("/api/stripe/checkout", json={"price_id": "price_pro_monthly"})

        assert resp.status_code == 500
        assert resp.get_json()["error"] == "Failed to create checkout session"


class TestPortal:
    """POST /api/stripe/portal"""

    def test_requires_login(self, client, seed_data):
        resp = client.post("/api/stripe/portal", json={})
        assert resp.status_code == 401

    def test_no_customer_returns_404(self, client, login, seed_data):
        login(seed_data["newcomer_email"], seed_data["newcomer_password"])

        resp = client.post("/api/stripe/portal", json={})
        assert resp.status_code == 404

    @patch("app.services.stripe_service.stripe")
    def test_returns_portal_url(self, mock_stripe, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(
            url="https://billing.stripe.com/p/session_123",
        )

        resp = client.post("/api/stripe/portal", json={})

        assert resp.status_code == 200
        assert resp.get_json()["url"] == "https://billing.stripe.com/p/session_123"
        kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
        assert kwargs["customer"] == "cus_sub"


class TestCheckoutSuccess:
    """GET /checkout/success"""

    def test_requires_login(self, client, seed_data):
        resp = client.get("/checkout/success?session_id=cs_test_123")
        assert resp.status_code == 302
        assert "/auth/login" in resp.headers["Location"]

    def test_missing_session_id_redirects(self, client, login, seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])

        resp = client.get("/checkout/success", follow_redirects=False)
        assert resp.status_code == 303
        assert "/dashboard" in resp.headers["Location"]

    @patch(RETRIEVE)
    def test_failed_fulfillment_still_renders(self, mock_retrieve, client, login,
                                              seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])
        mock_retrieve.return_value = _paid_session(
            "cs_test_123", {"user_id": seed_data["subscriber_id"]}, payment_status="unpaid",
        )

        resp = client.get("/checkout/success?session_id=cs_test_123")

        assert resp.status_code == 200
        assert b"Payment not completed" in resp.data

    @patch(RETRIEVE)
    def test_status_shown_only_to_owner(self, mock_retrieve, client, login, seed_data):
        mock_retrieve.return_value = _paid_session(
            "cs_test_123", {"user_id": seed_data["subscriber_id"]},
        )
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])

        resp = client.get("/checkout/success?session_id=cs_test_123")
        assert resp.status_code == 200
        assert b"Status: fulfilled" in resp.data

        client.get("/auth/logout")
        login(seed_data["newcomer_email"], seed_data["newcomer_password"])

        resp = client.get("/checkout/success?session_id=cs_test_123")
        assert resp.status_code == 200
        assert b"Status:" not in resp.data
        assert mock_retrieve.call_count == 1


class TestDashboardAndPricing:
    """GET /dashboard and GET /pricing"""

    def test_dashboard_without_subscription(self, client, login, seed_data):
        login(seed_data["newcomer_email"], seed_data["newcomer_password"])

        resp = client.get("/dashboard")
        assert resp.status_code == 200
        assert b"No active subscription" in resp.data

    def test_dashboard_with_trial(self, client, login, seed_data):
        db.session.add(Subscription(
            id="sub_trial",
            user_id=seed_data["subscriber_id"],
            customer_id="cus_sub",
            status="trialing",
            price_id="price_pro_monthly",
            quantity=1,
            trial_end=datetime.now(timezone.utc) + timedelta(days=5, hours=1),
            current_period_end=datetime.now(timezone.utc) + timedelta(days=5, hours=1),
        ))
        db.session.commit()
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])

        resp = client.get("/dashboard")

        assert resp.status_code == 200
        assert b"Pro" in resp.data
        assert b"Trial ends in 6 days" in resp.data
        assert b"Manage billing" in resp.data

    def test_pricing_lists_active_catalog(self, client, seed_data):
        resp = client.get("/pricing")

        assert resp.status_code == 200
        body = resp.data.decode()
        assert "Basic" in body and "Pro" in body
        assert "Legacy" not in body
        assert "price_pro_retired" not in body
        assert body.index("Basic") < body.index("Pro")


class TestEndToEnd:
    """Checkout for price P as user U -> paid -> fulfill twice."""

    @patch(RETRIEVE)
    @patch("app.services.stripe_service.stripe")
    def test_checkout_then_fulfill(self, mock_stripe, mock_retrieve, client, login,
                                   seed_data):
        login(seed_data["subscriber_email"], seed_data["subscriber_password"])
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            id="cs_test_e2e", url="https://checkout.stripe.com/c/cs_test_e2e",
        )

        resp = client.post("/api/stripe/checkout", json={"price_id": "price_pro_monthly"})
        assert resp.status_code == 200
        metadata = mock_stripe.checkout.Session.create.call_args.kwargs["metadata"]

        # Stripe marks the session paid; the metadata we set comes back.
        mock_retrieve.return_value = _paid_session("cs_test_e2e", metadata)

        resp = client.get("/checkout/success?session_id=cs_test_e2e")
        assert resp.status_code == 200
        assert b"Your purchase has been activated" in resp.data

        db.session.expire_all()
        row = db.session.get(CheckoutSession, "cs_test_e2e")
        assert row.fulfilled is True
        assert row.user_id == seed_data["subscriber_id"]
        first = row.to_dict()

        resp = client.get("/checkout/success?session_id=cs_test_e2e")
        assert resp.status_code == 200
        assert b"already activated" in resp.data

        db.session.expire_all()
        assert db.session.get(CheckoutSession, "cs_test_e2e").to_dict() == first
        assert mock_retrieve.call_count == 1

        status = client.get("/api/checkout-sessions/cs_test_e2e")
        assert status.status_code == 200
        assert status.get_json()["fulfilled"] is True
