"""Scheduled renewal of page access tokens that are about to expire."""
import logging

from config import DEFAULT_TOKEN_EXPIRES_DAYS
from processor.models import TokenRefreshResult
from processor.token_lifecycle import calculate_expiration_date
from upstream.errors import AuthInvalidError

logger = logging.getLogger(__name__)


class TokenRefresher:
    """
    Exchanges expiring page tokens for new long-lived ones.

    A refreshed token is stored in the credential store and the page is
    saved with a fresh expiry. Tokens upstream rejects are marked expired.
    """

    def __init__(
        self,
        page_store,
        credential_store,
        client,
        token_tracker,
        app_id: str,
        app_secret: str,
        warning_days: int = 7,
        expires_in_days: int = DEFAULT_TOKEN_EXPIRES_DAYS
    ):
        self.page_store = page_store
        self.credential_store = credential_store
        self.client = client
        self.token_tracker = token_tracker
        self.app_id = app_id
        self.app_secret = app_secret
        self.warning_days = warning_days
        self.expires_in_days = expires_in_days

    def refresh_expiring_tokens(self) -> TokenRefreshResult:
        """
        Refresh every active page token inside the warning window.

        Each page is handled on its own; one failure never stops the run.

        Returns:
            TokenRefreshResult listing refreshed, expired and failed pages
        """
        pages = self.page_store.get_active_pages()
        result = TokenRefreshResult(checked_pages=len(pages))

        if not pages:
            logger.info("No active pages found for token refresh")
            return result

        for page in pages:
            try:
                self._refresh_page(page, result)
            except Exception as e:
                logger.error(
                    f"Unexpected error while refreshing token for page {page.id}: {e}",
                    extra={'page_id': page.id, 'error_type': type(e).__name__},
                    exc_info=True
                )
                result.failed.append(page.id)

        logger.info(
            f"Token refresh completed: {len(result.refreshed)} refreshed, "
            f"{len(result.expired)} expired, {len(result.failed)} failed"
        )
        return result

    def _refresh_page(self, page, result: TokenRefreshResult) -> None:
        credential = self.credential_store.get(page.id)
        if not credential:
            logger.warning(f"No token found for page {page.id}, skipping refresh")
            return

        status = self.token_tracker.check_expiry(page.id, self.warning_days)
        if not status.is_expiring:
            logger.debug(
                f"Token for page {page.id} not expiring yet "
                f"({status.days_until_expiry} days left)"
            )
            return

        logger.info(
            f"Refreshing token for page {page.id} ({page.name}), "
            f"{status.days_until_expiry} days left"
        )
        try:
            new_credential = self.client.exchange_for_long_lived_token(
                credential, self.app_id, self.app_secret
            )
        except AuthInvalidError:
            logger.error(f"Token refresh rejected for page {page.id}, marking expired")
            self.token_tracker.mark_expired(page.id)
            result.expired.append(page.id)
            return

        self.credential_store.put(page.id, new_credential)
        self.page_store.save_page(
            page.id,
            page.name,
            token_expires_at=calculate_expiration_date(self.expires_in_days)
        )
        result.refreshed.append(page.id)
        logger.info(f"Token refreshed and stored for page {page.id}")
