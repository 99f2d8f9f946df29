"""Configuration management for Engagement Hub.

Manages all application settings including:
- API credentials (Slack, HiBob)
- Database connection (SQLite for dev, PostgreSQL for production)
- Rollup windows, ranking limits and trend thresholds
- Sync timeouts, retries and logging
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration loaded from environment variables and defaults."""

    # Slack API Tokens
    SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN", "")
    SLACK_BOT_NAME = os.getenv("SLACK_BOT_NAME", "Engagement Dashboard Bot")

    # HiBob service user (Basic auth)
    HIBOB_SERVICE_USER_ID = os.getenv("HIBOB_SERVICE_USER_ID", "")
    HIBOB_API_KEY = os.getenv("HIBOB_API_KEY", "")
    HIBOB_BASE_URL = os.getenv("HIBOB_BASE_URL", "https://api.hibob.com")

    # Data directories
    BASE_DIR = Path(__file__).parent
    DATA_DIR = BASE_DIR / os.getenv("DATA_DIR", "data")
    LOGS_DIR = BASE_DIR / "logs"

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'engagement.db'}")

    # Rollups
    METRICS_WINDOW_DAYS = int(os.getenv("METRICS_WINDOW_DAYS", "90"))
    USER_RANKINGS_LIMIT = int(os.getenv("USER_RANKINGS_LIMIT", "50"))
    TOP_POSTS_LIMIT = int(os.getenv("TOP_POSTS_LIMIT", "10"))
    CHANNEL_TREND_DAYS = 3

    # Trend thresholds
    ENGAGEMENT_TREND_RATIO = float(os.getenv("ENGAGEMENT_TREND_RATIO", "0.1"))
    ACTIVATION_TREND_POINTS = float(os.getenv("ACTIVATION_TREND_POINTS", "2.0"))

    # Sync
    SYNC_TIMEOUT_SECONDS = float(os.getenv("SYNC_TIMEOUT_SECONDS", "120"))
    SYNC_CONCURRENCY = int(os.getenv("SYNC_CONCURRENCY", "3"))
    HR_TIME_OFF_LOOKBACK_DAYS = 30
    HR_TIME_OFF_LOOKAHEAD_DAYS = 30

    # Rate limiting (requests per minute)
    SLACK_RATE_LIMIT = int(os.getenv("SLACK_RATE_LIMIT", "50"))
    HIBOB_RATE_LIMIT = int(os.getenv("HIBOB_RATE_LIMIT", "50"))
    DEFAULT_RATE_LIMIT = int(os.getenv("DEFAULT_RATE_LIMIT", "100"))

    # Pagination
    DEFAULT_PAGE_SIZE = 200  # Maximum for most Slack methods
    MAX_RETRIES = 5

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE", "logs/engagement_hub.log")
    LOG_MAX_BYTES = 10 * 1024 * 1024
    LOG_BACKUP_COUNT = 5
    SHOW_PROGRESS = os.getenv("SHOW_PROGRESS", "false").lower() == "true"

    @classmethod
    def create_directories(cls):
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.LOGS_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def validate(cls, slack: bool = True, hibob: bool = False):
        """Validate required configuration for the sources a command uses."""
        errors = []

        if slack and not cls.SLACK_BOT_TOKEN:
            errors.append("SLACK_BOT_TOKEN is required")

        if hibob and not (cls.HIBOB_SERVICE_USER_ID and cls.HIBOB_API_KEY):
            errors.append("HIBOB_SERVICE_USER_ID and HIBOB_API_KEY are required")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True


# Rate limits per upstream API method (requests per minute)
RATE_LIMIT_TIERS = {
    # Slack Tier 2
    "conversations.list": 20,
    "users.list": 20,
    # Slack Tier 3
    "conversations.info": Config.SLACK_RATE_LIMIT,
    "conversations.history": Config.SLACK_RATE_LIMIT,
    "conversations.replies": Config.SLACK_RATE_LIMIT,
    # HiBob
    "hibob.people": Config.HIBOB_RATE_LIMIT,
    "hibob.tables": Config.HIBOB_RATE_LIMIT,
    "hibob.tasks": Config.HIBOB_RATE_LIMIT,
    "hibob.timeoff": Config.HIBOB_RATE_LIMIT,
    "hibob.reports": 10,

    # Default for unknown methods
    "default": Config.DEFAULT_RATE_LIMIT,
}


def get_rate_limit_for_method(method_name: str) -> int:
    """Get rate limit for a specific API method."""
    return RATE_LIMIT_TIERS.get(method_name, RATE_LIMIT_TIERS["default"])
