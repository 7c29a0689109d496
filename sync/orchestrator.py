"""Full synchronization of events for every active page."""
import logging
from typing import List

from processor.event_normalizer import normalize_event
from processor.models import EventRecord, ExpiringToken, PageSubscription, SyncRunResult
from upstream.errors import AuthInvalidError

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """
    Pulls events for all active pages and writes them in one batch.

    Pages are processed one at a time. A failure on one page is logged and
    the page contributes no events; only the final batch write can raise.
    """

    def __init__(
        self,
        page_store,
        credential_store,
        client,
        token_tracker,
        image_pipeline,
        object_store,
        past_events_days: int = 30,
        token_warning_days: int = 7
    ):
        self.page_store = page_store
        self.credential_store = credential_store
        self.client = client
        self.token_tracker = token_tracker
        self.image_pipeline = image_pipeline
        self.object_store = object_store
        self.past_events_days = past_events_days
        self.token_warning_days = token_warning_days

    def sync_all_pages(self) -> SyncRunResult:
        """
        Run a full sync.

        Returns:
            SyncRunResult with pages attempted, events written and expiring tokens

        Raises:
            Whatever the final batch write raises
        """
        pages = self.page_store.get_active_pages()
        if not pages:
            logger.info("No active pages to sync")
            return SyncRunResult(synced_pages=0, synced_events=0, expiring_tokens=[])

        bucket = self._acquire_bucket()
        buffer: List[EventRecord] = []
        expiring_tokens: List[ExpiringToken] = []

        for page in pages:
            try:
                buffer.extend(self._sync_page(page, bucket, expiring_tokens))
            except AuthInvalidError:
                logger.error(
                    f"Access token rejected for page {page.id} ({page.name}), marking as expired"
                )
                try:
                    self.token_tracker.mark_expired(page.id)
                except Exception as e:
                    logger.error(
                        f"Failed to mark token expired for page {page.id}: {e}",
                        exc_info=True
                    )
            except Exception as e:
                logger.error(
                    f"Failed to sync events for page {page.id} ({page.name}): {e}",
                    extra={'page_id': page.id, 'error_type': type(e).__name__},
                    exc_info=True
                )

        written = self.page_store.batch_upsert_events(buffer) if buffer else 0

        if expiring_tokens:
            logger.warning(
                f"{len(expiring_tokens)} page tokens expiring soon",
                extra={'tokens': [token.to_dict() for token in expiring_tokens]}
            )

        logger.info(
            f"Sync completed: {len(pages)} pages, {written} events, "
            f"{len(expiring_tokens)} expiring tokens"
        )
        return SyncRunResult(
            synced_pages=len(pages),
            synced_events=written,
            expiring_tokens=expiring_tokens
        )

    def _acquire_bucket(self):
        try:
            return self.object_store.bucket()
        except Exception as e:
            logger.warning(f"Image bucket unavailable, keeping upstream cover URLs: {e}")
            return None

    def _sync_page(
        self,
        page: PageSubscription,
        bucket,
        expiring_tokens: List[ExpiringToken]
    ) -> List[EventRecord]:
        status = self.token_tracker.check_expiry(page.id, self.token_warning_days)
        if status.is_expiring:
            logger.warning(
                f"Token expiring soon for page {page.id} ({page.name}): "
                f"{status.days_until_expiry} days left"
            )
            expiring_tokens.append(ExpiringToken(
                page_id=page.id,
                page_name=page.name,
                days_until_expiry=status.days_until_expiry,
                expires_at=status.expires_at
            ))

        credential = self.credential_store.get(page.id)
        if not credential:
            logger.warning(f"No access token for page {page.id}, skipping")
            return []

        logger.info(f"Syncing events for page {page.id} ({page.name})")
        events = self.client.get_relevant_events(page.id, credential, self.past_events_days)
        logger.info(f"Fetched {len(events)} events for page {page.id}")

        records = []
        for event in events:
            cover_url = self.image_pipeline.process_cover_image(event, page.id, bucket)
            records.append(normalize_event(event, page.id, cover_url))
        return records
