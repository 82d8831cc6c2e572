import os

from dotenv import dotenv_values


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class BaseConfig:
    APP_ENV = os.getenv("APP_ENV", "development").lower()

    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    # Database
    _ENV_FALLBACK = dotenv_values(".env")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    RATELIMIT_DEFAULT = None
    # Public submission form has no principal; the limit is per client IP
    PUBLIC_FEEDBACK_RATE_LIMIT = os.getenv("PUBLIC_FEEDBACK_RATE_LIMIT", "10 per minute; 100 per hour")

    # --- Mail ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "true")
    MAIL_USE_SSL = _flag("MAIL_USE_SSL", "false")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "Feedback Hub <no-reply@local.test>")
    MAIL_SUPPRESS_SEND = _flag("MAIL_SUPPRESS_SEND", "false")
    EMAIL_WEBHOOK_SECRET = os.getenv("EMAIL_WEBHOOK_SECRET")

    # Used for absolute links in emails and QR targets
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")
    PRODUCT_NAME = os.getenv("PRODUCT_NAME", "Feedback Hub")

    # --- Stripe (Billing) ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_PRICE_BASIC_MONTHLY = os.getenv("STRIPE_PRICE_BASIC_MONTHLY")
    STRIPE_PRICE_PRO_MONTHLY = os.getenv("STRIPE_PRICE_PRO_MONTHLY")
    ENABLE_STRIPE_TAX = _flag("ENABLE_STRIPE_TAX", "false")

    # Local Subscriber rows are a cache of Stripe state; re-sync when older than this
    SUBSCRIPTION_REFRESH_SECONDS = int(os.getenv("SUBSCRIPTION_REFRESH_SECONDS", "300"))
    TRIAL_DAYS = int(os.getenv("TRIAL_DAYS", "14"))

    # --- Plan limits ---
    AI_BASIC_MONTHLY_QUOTA = int(os.getenv("AI_BASIC_MONTHLY_QUOTA", "10"))

    # --- Teams ---
    INVITATION_VALID_DAYS = int(os.getenv("INVITATION_VALID_DAYS", "7"))

    # --- Third-party APIs ---
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    GOOGLE_TRANSLATE_API_KEY = os.getenv("GOOGLE_TRANSLATE_API_KEY")
    EXTERNAL_HTTP_TIMEOUT = float(os.getenv("EXTERNAL_HTTP_TIMEOUT", "30"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
    MAIL_SUPPRESS_SEND = False


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    MAIL_SUPPRESS_SEND = True
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = _flag("RATELIMIT_ENABLED", "false")


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": ProductionConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
