import os


class ConfigError(RuntimeError):
    """A required setting is missing. Raised lazily, at first use."""


class Config:
    """Base configuration. Shared across all environments."""

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    # Without DATABASE_URL the app still boots on a throwaway in-memory engine;
    # get_privileged_client() refuses to hand out a store until it is set.
    DATASTORE_URL_CONFIGURED = bool(_db_url)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite://"

    # --- PayPal ---
    PAYPAL_ENV = os.environ.get("PAYPAL_ENV", "sandbox").lower()  # sandbox | live
    PAYPAL_CLIENT_ID = os.environ.get("PAYPAL_CLIENT_ID")
    PAYPAL_CLIENT_SECRET = os.environ.get("PAYPAL_CLIENT_SECRET")
    PAYPAL_WEBHOOK_ID = os.environ.get("PAYPAL_WEBHOOK_ID")
    PAYPAL_HTTP_TIMEOUT = int(os.environ.get("PAYPAL_HTTP_TIMEOUT", 30))

    # --- Donations ---
    ANONYMOUS_DONOR_NAME = os.environ.get("ANONYMOUS_DONOR_NAME", "Anônimo")
    PENDING_DONATION_TTL_MINUTES = int(
        os.environ.get("PENDING_DONATION_TTL_MINUTES", 1440)
    )

    # --- Rate limiting ---
    RATE_LIMIT_CREATE_ORDER = os.environ.get(
        "RATE_LIMIT_CREATE_ORDER", "30 per hour"
    )

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Report required env vars that are missing.

        Handlers re-check what they need at first use and raise ConfigError,
        so the factory only logs the result of this check.
        """
        required = [
            "DATABASE_URL",
            "PAYPAL_CLIENT_ID",
            "PAYPAL_CLIENT_SECRET",
            "PAYPAL_WEBHOOK_ID",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development. Falls back to a SQLite file next to the instance."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = Config._db_url or "sqlite:///donations-dev.db"
    DATASTORE_URL_CONFIGURED = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake PayPal credentials."""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DATASTORE_URL_CONFIGURED = True
    SQLALCHEMY_ENGINE_OPTIONS = {}
    PAYPAL_ENV = "sandbox"
    PAYPAL_CLIENT_ID = "client_test_fake"
    PAYPAL_CLIENT_SECRET = "secret_test_fake"
    PAYPAL_WEBHOOK_ID = "WH-TEST-FAKE"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
