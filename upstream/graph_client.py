"""Client for the upstream Graph API: pages and page events."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from config import (
    GRAPH_BASE_URL,
    PAGINATION_LIMIT,
    RATE_LIMIT_STATUS,
    SERVER_ERROR_MAX,
    SERVER_ERROR_MIN,
    TOKEN_INVALID_ERROR_CODE,
    UPSTREAM_MAX_ATTEMPTS,
    UPSTREAM_RETRY_DELAY_SECONDS,
)
from processor.models import Page, RawEvent, parse_timestamp
from upstream.errors import AuthInvalidError, TransientError, UpstreamError
from upstream.retry import RetryPolicy, execute_with_retry

logger = logging.getLogger(__name__)

EVENT_FIELDS = 'id,name,description,start_time,end_time,place,cover{source}'
TIME_FILTERS = ('upcoming', 'past')


def is_transient(error: Exception) -> bool:
    return isinstance(error, TransientError)


class GraphClient:
    """Paginated, retrying access to pages and their events."""

    def __init__(
        self,
        base_url: str = GRAPH_BASE_URL,
        timeout: int = 30,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize the Graph API client.

        Args:
            base_url: API root including the version segment
            timeout: HTTP request timeout in seconds (default: 30)
            retry_policy: Backoff policy; defaults to 3 attempts, 1 second base
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=UPSTREAM_MAX_ATTEMPTS,
            base_delay=UPSTREAM_RETRY_DELAY_SECONDS,
            is_retryable=is_transient
        )

    def get_pages(self, credential: str) -> List[Page]:
        """
        Fetch every page the credential's user manages.

        Args:
            credential: User access token

        Returns:
            List of Page objects across all result pages
        """
        params = {
            'access_token': credential,
            'fields': 'id,name,access_token',
            'limit': PAGINATION_LIMIT,
        }
        pages = []
        for item in self._get_all(f"{self.base_url}/me/accounts", params):
            try:
                pages.append(Page.from_api(item))
            except ValueError as e:
                logger.warning(f"Skipping malformed page entry: {e}")
        return pages

    def exchange_for_long_lived_token(self, credential: str, app_id: str, app_secret: str) -> str:
        """
        Trade a credential for a fresh long-lived one (valid about 60 days).

        Args:
            credential: Current access token
            app_id: Upstream app ID
            app_secret: Upstream app secret

        Returns:
            The new access token

        Raises:
            AuthInvalidError: If upstream rejects the current credential
            UpstreamError: If the exchange fails or returns no token
        """
        params = {
            'grant_type': 'fb_exchange_token',
            'client_id': app_id,
            'client_secret': app_secret,
            'fb_exchange_token': credential,
        }
        body = self._get(f"{self.base_url}/oauth/access_token", params)

        token = body.get('access_token')
        if not isinstance(token, str) or not token:
            raise UpstreamError('No long-lived token received from upstream')
        return token

    def get_events(
        self,
        page_id: str,
        credential: str,
        time_filter: str = 'upcoming'
    ) -> List[RawEvent]:
        """
        Fetch all events of a page for one time window.

        Args:
            page_id: Upstream page ID
            credential: Page access token
            time_filter: 'upcoming' or 'past'

        Returns:
            List of RawEvent objects; malformed entries are skipped
        """
        if time_filter not in TIME_FILTERS:
            raise ValueError(f"Unsupported time filter: {time_filter}")

        params = {
            'access_token': credential,
            'time_filter': time_filter,
            'fields': EVENT_FIELDS,
            'limit': PAGINATION_LIMIT,
        }
        events = []
        for item in self._get_all(f"{self.base_url}/{page_id}/events", params):
            try:
                events.append(RawEvent.from_api(item))
            except ValueError as e:
                logger.warning(f"Skipping malformed event for page {page_id}: {e}")
        return events

    def get_relevant_events(
        self,
        page_id: str,
        credential: str,
        days_back: int = 30,
        now: Optional[datetime] = None
    ) -> List[RawEvent]:
        """
        Fetch upcoming events plus past events from the last days_back days.

        Past events starting exactly at the cutoff are kept. When an id shows
        up in both windows the past copy wins, since it is merged last.

        Args:
            page_id: Upstream page ID
            credential: Page access token
            days_back: Size of the past window in days
            now: Reference time (defaults to the current UTC time)

        Returns:
            Deduplicated list of events, upcoming first
        """
        upcoming = self.get_events(page_id, credential, 'upcoming')
        past = self.get_events(page_id, credential, 'past')

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days_back)
        recent_past = []
        for event in past:
            start = parse_timestamp(event.start_time)
            if start is not None and start >= cutoff:
                recent_past.append(event)

        unique: Dict[str, RawEvent] = {}
        for event in upcoming + recent_past:
            unique[event.id] = event
        events = list(unique.values())

        logger.debug(
            f"Retrieved events for page {page_id}: {len(upcoming)} upcoming, "
            f"{len(recent_past)} recent past, {len(events)} unique"
        )
        return events

    def _get_all(self, url: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Follow paging.next links until exhausted and concatenate the data."""
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params: Optional[Dict[str, Any]] = params

        while next_url:
            body = self._get(next_url, next_params)
            items.extend(body.get('data') or [])
            next_url = (body.get('paging') or {}).get('next')
            # next links carry the full query string
            next_params = None

        return items

    def _get(self, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        def attempt() -> Dict[str, Any]:
            try:
                response = requests.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise UpstreamError(f"Request to upstream failed: {type(e).__name__}") from e

            if response.ok:
                return response.json()
            raise self._classify(response)

        return execute_with_retry(attempt, self.retry_policy, description='Graph API request')

    def _classify(self, response: requests.Response) -> UpstreamError:
        """Map an error response onto the upstream error taxonomy."""
        status = response.status_code
        error_code = None
        message = response.reason or 'error'
        try:
            error = response.json().get('error') or {}
            error_code = error.get('code')
            message = error.get('message') or message
        except (ValueError, AttributeError):
            pass

        text = f"Graph API returned {status}: {message}"
        if error_code == TOKEN_INVALID_ERROR_CODE:
            logger.error(f"Page access token rejected by upstream (code {error_code})")
            return AuthInvalidError(text, status_code=status, error_code=error_code)
        if status == RATE_LIMIT_STATUS or SERVER_ERROR_MIN <= status < SERVER_ERROR_MAX:
            return TransientError(text, status_code=status, error_code=error_code)
        return UpstreamError(text, status_code=status, error_code=error_code)
