"""Access token expiry tracking and expiry transitions for pages."""
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from config import DEFAULT_TOKEN_EXPIRES_DAYS
from processor.models import TokenExpiryStatus, TokenStatus

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def calculate_days_until_expiry(expires_at: datetime, now: Optional[datetime] = None) -> int:
    """Whole days until expiry, rounded up; negative once expired."""
    now = now or datetime.now(timezone.utc)
    return math.ceil((expires_at - now).total_seconds() / SECONDS_PER_DAY)


def get_token_status(days_until_expiry: int, warning_days: int) -> TokenStatus:
    if days_until_expiry < 0:
        return TokenStatus.EXPIRED
    if days_until_expiry <= warning_days:
        return TokenStatus.EXPIRING
    return TokenStatus.VALID


def calculate_expiration_date(
    expires_in_days: int = DEFAULT_TOKEN_EXPIRES_DAYS,
    now: Optional[datetime] = None
) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(days=expires_in_days)


class TokenLifecycleTracker:
    """
    Tracks page access token expiry.

    mark_expired is the single place where a page is switched to dormant.
    """

    def __init__(self, page_store):
        """
        Args:
            page_store: Persistence exposing get_token_expiry and mark_token_expired
        """
        self.page_store = page_store

    def check_expiry(
        self,
        page_id: str,
        warning_days: int,
        now: Optional[datetime] = None
    ) -> TokenExpiryStatus:
        """
        Check whether a page token expires within warning_days.

        A missing or unreadable expiry is reported as expiring now, so the
        page still shows up in warnings.

        Args:
            page_id: Upstream page ID
            warning_days: Warning window in days
            now: Reference time (defaults to current UTC time)

        Returns:
            TokenExpiryStatus for the page
        """
        try:
            expires_at = self.page_store.get_token_expiry(page_id)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Failed to read token expiry for page {page_id}: {e}")
            expires_at = None

        if expires_at is None:
            return TokenExpiryStatus(is_expiring=True, days_until_expiry=0, expires_at=None)

        days = calculate_days_until_expiry(expires_at, now)
        return TokenExpiryStatus(
            is_expiring=days <= warning_days,
            days_until_expiry=days,
            expires_at=expires_at
        )

    def mark_expired(self, page_id: str) -> None:
        """Flag the page token as expired and take the page out of sync."""
        self.page_store.mark_token_expired(page_id)
        logger.warning(f"Marked access token as expired for page {page_id}")
