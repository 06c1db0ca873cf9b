import os


def _database_url():
    """DATABASE_URL with the legacy "postgres://" scheme rewritten.

    Heroku-style providers still hand out postgres:// URLs, which
    SQLAlchemy 1.4+ refuses.
    """
    url = os.environ.get("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url or None


class Config:
    """Base configuration, read from the environment (.env in development)."""

    # Env vars validate() insists on outside of tests.
    REQUIRED_ENV = (
        "SECRET_KEY",
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "APP_BASE_URL",
    )

    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = _database_url()
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5001")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY")
    # Pin the API version the payload models were written against; None
    # uses the account default.
    STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION") or None

    # "subscription" for recurring prices, "payment" for one-time prices.
    CHECKOUT_MODE = os.environ.get("CHECKOUT_MODE", "subscription")

    # A fulfillment claim older than this may be taken over by another
    # caller; the first one is assumed to have died mid-fulfillment.
    FULFILLMENT_CLAIM_TTL_SECONDS = int(
        os.environ.get("FULFILLMENT_CLAIM_TTL_SECONDS", 300)
    )

    # --- Purchase confirmation email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "Billing")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # falls back to MAIL_USERNAME

    # --- Flask-SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Flask-Limiter ---
    # memory:// is per-process; point at redis:// when running several workers.
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    # --- Cookies / CSRF ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"
    WTF_CSRF_ENABLED = True

    @classmethod
    def validate(cls):
        """Raise RuntimeError naming every required env var that is unset."""
        missing = [name for name in cls.REQUIRED_ENV if not os.environ.get(name)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """In-memory SQLite, fake Stripe keys, no CSRF, no rate limits, no SMTP."""

    REQUIRED_ENV = ()

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SERVER_NAME = "localhost"
    APP_BASE_URL = "http://localhost:5001"

    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_PUBLISHABLE_KEY = "pk_test_fake"
    STRIPE_API_VERSION = None
    CHECKOUT_MODE = "subscription"
    FULFILLMENT_CLAIM_TTL_SECONDS = 300

    MAIL_USERNAME = None
    MAIL_PASSWORD = None

    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class ProdConfig(Config):
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
