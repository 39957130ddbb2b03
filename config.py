import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored beside the code as chargeport.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "chargeport.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token
    AUTH_COOKIE_NAME = "chargeport_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

    BCRYPT_ROUNDS = 12

    # Every reservation interval is wall-clock time in this zone
    PLATFORM_TIMEZONE = os.getenv("PLATFORM_TIMEZONE", "UTC")

    # Booking window policy (minutes)
    BOOKING_MIN_DURATION_MINUTES = int(os.getenv("BOOKING_MIN_DURATION_MINUTES", "30"))
    BOOKING_MAX_DURATION_MINUTES = int(os.getenv("BOOKING_MAX_DURATION_MINUTES", "120"))
    BOOKING_ALLOW_PAST = False

    # Retry policy for catalog reads and persistence writes
    DEPENDENCY_RETRY_ATTEMPTS = int(os.getenv("DEPENDENCY_RETRY_ATTEMPTS", "3"))
    DEPENDENCY_RETRY_BACKOFF_SECONDS = float(os.getenv("DEPENDENCY_RETRY_BACKOFF_SECONDS", "0.05"))

    # Payments: "fake" (deterministic) or "stripe"
    PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "fake")
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
    PAYMENT_LOAD_FACTOR = float(os.getenv("PAYMENT_LOAD_FACTOR", "0.85"))  # average share of rated power drawn
    PAYMENT_DECLINED_METHODS = []  # fake provider only
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BOOKING_ALLOW_PAST = True
    DEPENDENCY_RETRY_BACKOFF_SECONDS = 0
    PAYMENT_PROVIDER = "fake"
    PAYMENT_DECLINED_METHODS = ["declined@upi"]
    BCRYPT_ROUNDS = 4
