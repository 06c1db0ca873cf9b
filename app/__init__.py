import os
import logging

import click
from flask import Flask, jsonify, redirect, url_for
from flask_login import current_user

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter

# Stripe.js, Checkout and the Customer Portal are the only third parties
# a page ever talks to or posts to.
CONTENT_SECURITY_POLICY = (
    "default-src 'self'; "
    "script-src 'self' https://js.stripe.com; "
    "connect-src 'self' https://api.stripe.com; "
    "frame-src https://js.stripe.com https://hooks.stripe.com; "
    "form-action 'self' https://checkout.stripe.com https://billing.stripe.com; "
    "frame-ancestors 'none';"
)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    config = config_by_name[config_name]
    app = Flask(__name__)
    app.config.from_object(config)

    configure_logging(app)

    try:
        config.validate()
    except RuntimeError as e:
        app.logger.warning(f"Config validation: {e}")

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # Models must be imported before Flask-Migrate autogenerates anything.
    with app.app_context():
        from app import models  # noqa: F401

    register_blueprints(app)
    register_error_handlers(app)
    register_security_headers(app)
    register_cli(app)

    return app


def configure_logging(app):
    """Root logging at LOG_LEVEL; service modules log via getLogger(__name__)."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    if not app.testing:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    logging.getLogger("app").setLevel(level)


def register_blueprints(app):
    from app.blueprints.auth import auth_bp
    from app.blueprints.billing import billing_bp
    from app.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(webhooks_bp)

    # Stripe signs the raw body; it never carries a CSRF token.
    csrf.exempt(webhooks_bp)

    @app.route("/")
    def index():
        """Logged-in users land on their dashboard, everyone else on pricing."""
        if current_user.is_authenticated:
            return redirect(url_for("billing.dashboard"))
        return redirect(url_for("billing.pricing"))


def register_error_handlers(app):
    """Errors come back as {"error": ...} JSON with the matching status."""

    def _json_error(status, message):
        def handler(e):
            return jsonify({"error": message}), status
        return handler

    for status, message in (
        (401, "Authentication required"),
        (403, "Forbidden"),
        (404, "Not found"),
        (429, "Too many requests"),
        (500, "Internal server error"),
    ):
        app.register_error_handler(status, _json_error(status, message))


def register_security_headers(app):

    @app.after_request
    def add_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("create-user")
    @click.option("--email", required=True, help="Login email")
    @click.option("--password", required=True, help="Login password")
    @click.option("--name", "full_name", default=None, help="Display name")
    def create_user(email, password, full_name):
        """Create a user account.

        Usage:
            flask create-user --email jane@example.com --password s3cret
        """
        from app.models.user import User

        if User.find_by_email(email):
            click.echo(f"User already exists: {email}")
            return

        user = User(email=User.normalize_email(email), full_name=full_name)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created user: {user.email} (id: {user.id})")

    @app.cli.command("sync-catalog")
    def sync_catalog_command():
        """Backfill products and prices from Stripe.

        Webhooks keep the catalog current once configured; run this once
        against a fresh database, or after pointing at a new Stripe account.
        """
        import stripe as _stripe

        from app.services.stripe_service import sync_catalog

        if not app.config.get("STRIPE_SECRET_KEY"):
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return

        try:
            products, prices = sync_catalog()
        except _stripe.StripeError as e:
            click.echo(f"ERROR: {e}")
            return

        click.echo(f"Synced {products} products and {prices} prices.")
