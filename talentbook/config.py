import os


def _database_url():
    """DATABASE_URL with the legacy "postgres://" scheme rewritten.

    Railway/Heroku still hand out postgres:// URLs, which SQLAlchemy 2 rejects.
    """
    url = os.environ.get("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url or None


class Config:
    """Shared settings. Every value can be overridden from the environment."""

    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = _database_url()
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))
    STRIPE_VERIFICATION_PRICE_ID = os.environ.get("STRIPE_VERIFICATION_PRICE_ID")
    # Upper bound for every Stripe API round trip (checkout, verify-session).
    STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS", 10))

    # --- Verification fee ---
    # The only amount/currency pair that marks an email as verified.
    VERIFICATION_AMOUNT = int(os.environ.get("VERIFICATION_AMOUNT", 100))  # €1.00
    VERIFICATION_CURRENCY = os.environ.get("VERIFICATION_CURRENCY", "eur").lower()

    # --- Signup completion ---
    SIGNUP_REDIRECT_DELAY_MS = int(os.environ.get("SIGNUP_REDIRECT_DELAY_MS", 2000))
    ONBOARDING_PATHS = {
        "job_seeker": "/complete-profile-job-seeker",
        "company": "/complete-profile-company",
    }

    # --- Bearer tokens ---
    API_TOKEN_MAX_AGE = int(os.environ.get("API_TOKEN_MAX_AGE", 7 * 24 * 3600))

    # --- Database ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # --- Cookies ---
    # The pending signup lives in the session cookie; keep it off the JS side.
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"
    WTF_CSRF_ENABLED = True

    REQUIRED_ENV = (
        "SECRET_KEY",
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "STRIPE_VERIFICATION_PRICE_ID",
        "APP_BASE_URL",
    )

    @classmethod
    def validate(cls):
        """Raise RuntimeError naming any required env var that is unset."""
        missing = [name for name in cls.REQUIRED_ENV if not os.environ.get(name)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """In-memory SQLite, fake Stripe keys, no CSRF or rate limits."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    APP_BASE_URL = "http://localhost:5000"
    SERVER_NAME = "localhost"

    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_PUBLISHABLE_KEY = "pk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_VERIFICATION_PRICE_ID = "price_verification_test"
    VERIFICATION_AMOUNT = 100
    VERIFICATION_CURRENCY = "eur"

    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    REQUIRED_ENV = ()


class ProdConfig(Config):
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
