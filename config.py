"""Configuration for the page events sync service."""
import os
from dataclasses import dataclass
from typing import Optional


GRAPH_API_VERSION = 'v23.0'
GRAPH_BASE_URL = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

PAGINATION_LIMIT = 100
UPSTREAM_MAX_ATTEMPTS = 3
UPSTREAM_RETRY_DELAY_SECONDS = 1

# Upstream error codes
TOKEN_INVALID_ERROR_CODE = 190
RATE_LIMIT_STATUS = 429
SERVER_ERROR_MIN = 500
SERVER_ERROR_MAX = 600

IMAGE_MAX_ATTEMPTS = 4
IMAGE_BACKOFF_BASE_SECONDS = 1
IMAGE_BACKOFF_MAX_SECONDS = 10
IMAGE_CACHE_MAX_AGE = 31536000  # 1 year
IMAGE_ALLOWED_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.svg')
IMAGE_DEFAULT_EXTENSION = '.jpg'
IMAGE_USER_AGENT = 'PageEventsSync/1.0'

DEFAULT_TOKEN_EXPIRES_DAYS = 60


def event_url(event_id: str) -> str:
    """Public URL of an event on the upstream platform."""
    return f"https://facebook.com/events/{event_id}"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    """Runtime settings read from the Lambda environment."""
    pages_table: str = 'page-subscriptions'
    events_table: str = 'page-events'
    image_bucket: Optional[str] = None
    image_make_public: bool = True
    image_signed_url_expiry_seconds: int = 7 * 24 * 3600
    secret_prefix: str = 'page-token-'
    app_id: str = ''
    app_secret: str = ''
    webhook_verify_token: str = ''
    sync_api_key: str = ''
    log_level: str = 'INFO'
    environment: str = 'production'
    past_events_days: int = 30
    token_warning_days: int = 7
    timeout_seconds: int = 30

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == 'development'

    @classmethod
    def from_env(cls) -> 'Settings':
        """
        Build settings from environment variables.

        Returns:
            Settings populated from the environment, with defaults for
            anything unset
        """
        return cls(
            pages_table=os.environ.get('PAGES_TABLE', 'page-subscriptions'),
            events_table=os.environ.get('EVENTS_TABLE', 'page-events'),
            image_bucket=os.environ.get('IMAGE_BUCKET') or None,
            image_make_public=_env_bool('IMAGE_MAKE_PUBLIC', True),
            image_signed_url_expiry_seconds=int(
                os.environ.get('IMAGE_SIGNED_URL_EXPIRY_SECONDS', str(7 * 24 * 3600))
            ),
            secret_prefix=os.environ.get('SECRET_PREFIX', 'page-token-'),
            app_id=os.environ.get('APP_ID', ''),
            app_secret=os.environ.get('APP_SECRET', ''),
            webhook_verify_token=os.environ.get('WEBHOOK_VERIFY_TOKEN', ''),
            sync_api_key=os.environ.get('SYNC_API_KEY', ''),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            environment=os.environ.get('ENVIRONMENT', 'production'),
            past_events_days=int(os.environ.get('PAST_EVENTS_DAYS', '30')),
            token_warning_days=int(os.environ.get('TOKEN_WARNING_DAYS', '7')),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
        )
