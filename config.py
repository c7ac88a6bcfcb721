import os
import warnings

import redis
from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))
load_dotenv(os.path.join(basedir, ".env"))


class Config:
    # Shared secret for cron-triggered endpoints (settlement, syncs)
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # Database configuration - built from environment at initialization
    def __init__(self):
        """Initialize configuration with dynamic database URI"""
        self.SQLALCHEMY_DATABASE_URI = self._build_database_uri()

    def _build_database_uri(self):
        """Build database URI from environment variables"""
        database_url = os.environ.get("DATABASE_URL")

        if database_url:
            return database_url

        db_type = os.environ.get("DB_TYPE", "sqlite")

        if db_type.lower() == "postgresql":
            db_host = os.environ.get("DB_HOST") or "localhost"
            db_port = os.environ.get("DB_PORT") or "5432"
            db_name = os.environ.get("DB_NAME") or "nhl_pickem_db"
            db_user = os.environ.get("DB_USER") or "nhl_user"
            db_password = os.environ.get("DB_PASSWORD") or "nhl_password"

            return f"postgresql+psycopg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"
        else:
            # Default to SQLite for development
            return "sqlite:///" + os.path.join(basedir, "app.db")

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # NHL API configuration
    NHL_API_BASE_URL = os.environ.get("NHL_API_BASE_URL") or "https://api-web.nhle.com/v1"
    NHL_TEAM_ID = int(os.environ.get("NHL_TEAM_ID") or 17)  # Detroit Red Wings
    NHL_TEAM_ABBREV = os.environ.get("NHL_TEAM_ABBREV", "DET").upper()
    NHL_REQUEST_TIMEOUT = int(os.environ.get("NHL_REQUEST_TIMEOUT") or 30)
    NHL_MAX_RETRIES = int(os.environ.get("NHL_MAX_RETRIES") or 3)

    # Fetch the play-by-play scoring summary for exact OT/shorthanded goals
    USE_SCORING_SUMMARY = (
        os.environ.get("USE_SCORING_SUMMARY", "True").lower() == "true"
    )

    # Caching configuration
    CACHE_TYPE = os.environ.get("CACHE_TYPE", "RedisCache")
    CACHE_DEFAULT_TIMEOUT = int(os.environ.get("CACHE_DEFAULT_TIMEOUT", 300))  # 5 minutes
    CACHE_REDIS_URL = os.environ.get("CACHE_REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX = "nhl_pickem:"

    # Scheduler configuration
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "True").lower() == "true"
    STATUS_REFRESH_MINUTES = int(os.environ.get("STATUS_REFRESH_MINUTES") or 5)
    SETTLEMENT_INTERVAL_MINUTES = int(os.environ.get("SETTLEMENT_INTERVAL_MINUTES") or 15)

    # Logging configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_TO_CONSOLE = os.environ.get("LOG_TO_CONSOLE", "True").lower() == "true"
    LOG_TO_FILE = os.environ.get("LOG_TO_FILE", "True").lower() == "true"
    LOG_DIR = os.environ.get("LOG_DIR", "logs")

    # Environment detection
    FLASK_ENV = os.environ.get("FLASK_ENV", "development")
    DEBUG = FLASK_ENV == "development"
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration with helpful defaults"""

    DEBUG = True
    SQLALCHEMY_ECHO = os.environ.get("SQLALCHEMY_ECHO", "False").lower() == "true"

    def __init__(self):
        super().__init__()
        # Fallback to SimpleCache if Redis isn't available in development
        try:
            redis_client = redis.Redis.from_url(self.CACHE_REDIS_URL)
            redis_client.ping()
        except redis.exceptions.ConnectionError:
            self.CACHE_TYPE = "SimpleCache"
            warnings.warn(
                "🔶 Redis not available, falling back to SimpleCache for development.",
                UserWarning,
            )


class ProductionConfig(Config):
    """Production configuration with security focus"""

    DEBUG = False

    def __init__(self):
        super().__init__()

        if not os.environ.get("CRON_SECRET"):
            warnings.warn(
                "🚨 PRODUCTION WARNING: CRON_SECRET not set! "
                "Settlement endpoints can be triggered by anyone.",
                UserWarning,
            )


class TestingConfig(Config):
    """Testing configuration"""

    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    CACHE_TYPE = "SimpleCache"
    SCHEDULER_ENABLED = False
    LOG_TO_FILE = False
    RATELIMIT_ENABLED = False
    USE_SCORING_SUMMARY = False
    CRON_SECRET = None

    def __init__(self):
        # Keep the in-memory URI regardless of DATABASE_URL
        pass


# Configuration mapping
config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
