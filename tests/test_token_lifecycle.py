"""Unit tests for token expiry tracking."""
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from processor.models import TokenStatus
from processor.token_lifecycle import (
    TokenLifecycleTracker,
    calculate_days_until_expiry,
    calculate_expiration_date,
    get_token_status,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestHelpers:

    def test_days_until_expiry_rounds_up(self):
        assert calculate_days_until_expiry(NOW + timedelta(days=2, hours=1), NOW) == 3
        assert calculate_days_until_expiry(NOW + timedelta(days=2), NOW) == 2

    def test_days_until_expiry_negative_after_expiry(self):
        assert calculate_days_until_expiry(NOW - timedelta(days=2), NOW) == -2

    @pytest.mark.parametrize('days, expected', [
        (-1, TokenStatus.EXPIRED),
        (0, TokenStatus.EXPIRING),
        (7, TokenStatus.EXPIRING),
        (8, TokenStatus.VALID),
    ])
    def test_get_token_status(self, days, expected):
        assert get_token_status(days, warning_days=7) == expected

    def test_expiration_date_defaults_to_sixty_days(self):
        assert calculate_expiration_date(now=NOW) == NOW + timedelta(days=60)


class TestTokenLifecycleTracker:

    def test_token_within_warning_window_is_expiring(self):
        store = Mock()
        store.get_token_expiry.return_value = NOW + timedelta(days=3)

        status = TokenLifecycleTracker(store).check_expiry('p1', 7, now=NOW)

        assert status.is_expiring is True
        assert status.days_until_expiry == 3
        assert status.expires_at == NOW + timedelta(days=3)

    def test_token_outside_warning_window_is_not_expiring(self):
        store = Mock()
        store.get_token_expiry.return_value = NOW + timedelta(days=30)

        status = TokenLifecycleTracker(store).check_expiry('p1', 7, now=NOW)

        assert status.is_expiring is False
        assert status.days_until_expiry == 30

    def test_missing_expiry_is_reported_as_expiring(self):
        store = Mock()
        store.get_token_expiry.return_value = None

        status = TokenLifecycleTracker(store).check_expiry('p1', 7, now=NOW)

        assert status.is_expiring is True
        assert status.days_until_expiry == 0
        assert status.expires_at is None

    def test_store_error_is_reported_as_expiring(self):
        store = Mock()
        store.get_token_expiry.side_effect = ClientError(
            {'Error': {'Code': 'ResourceNotFoundException', 'Message': 'Table missing'}},
            'GetItem'
        )

        status = TokenLifecycleTracker(store).check_expiry('p1', 7, now=NOW)

        assert status.is_expiring is True
        assert status.days_until_expiry == 0

    def test_connection_failure_is_reported_as_expiring(self):
        store = Mock()
        store.get_token_expiry.side_effect = EndpointConnectionError(
            endpoint_url='https://dynamodb.us-east-1.amazonaws.com'
        )

        status = TokenLifecycleTracker(store).check_expiry('p1', 7, now=NOW)

        assert status.is_expiring is True
        assert status.days_until_expiry == 0
        assert status.expires_at is None

    def test_mark_expired_delegates_to_store(self):
        store = Mock()

        TokenLifecycleTracker(store).mark_expired('p1')

        store.mark_token_expired.assert_called_once_with('p1')
