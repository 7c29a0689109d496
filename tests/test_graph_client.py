"""Unit tests for GraphClient."""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import responses
from requests.exceptions import Timeout
from responses import matchers

from processor.models import RawEvent
from upstream.errors import AuthInvalidError, TransientError, UpstreamError
from upstream.graph_client import GraphClient

BASE = "https://graph.facebook.com/v23.0"
EVENTS_URL = f"{BASE}/p1/events"


def _event(event_id, start='2024-06-01T18:00:00+0000', **extra):
    data = {'id': event_id, 'name': f'Event {event_id}', 'start_time': start}
    data.update(extra)
    return data


class TestGetEvents:
    """Pagination, parsing and error classification."""

    @responses.activate
    def test_follows_pagination_until_exhausted(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={
                'data': [_event('e1'), _event('e2')],
                'paging': {'next': f"{EVENTS_URL}?after=cursor2"}
            },
            match=[matchers.query_param_matcher({'time_filter': 'upcoming'}, strict_match=False)]
        )
        responses.add(
            responses.GET,
            f"{EVENTS_URL}?after=cursor2",
            json={'data': [_event('e3')]}
        )

        client = GraphClient()
        events = client.get_events('p1', 'token-abc', 'upcoming')

        assert [e.id for e in events] == ['e1', 'e2', 'e3']
        assert len(responses.calls) == 2
        assert 'access_token=token-abc' in responses.calls[0].request.url

    @responses.activate
    def test_parses_optional_fields(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={'data': [_event(
                'e1',
                description='Live music',
                end_time='2024-06-01T22:00:00+0000',
                place={'name': 'Town Square', 'location': {'city': 'Copenhagen'}},
                cover={'source': 'https://cdn.example.com/e1.jpg'}
            )]}
        )

        events = GraphClient().get_events('p1', 'token', 'upcoming')

        assert events[0].description == 'Live music'
        assert events[0].place.name == 'Town Square'
        assert events[0].place.location == {'city': 'Copenhagen'}
        assert events[0].cover_source == 'https://cdn.example.com/e1.jpg'

    @responses.activate
    def test_skips_malformed_events(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            json={'data': [_event('e1'), {'name': 'No id'}, _event('e2')]}
        )

        events = GraphClient().get_events('p1', 'token', 'past')

        assert [e.id for e in events] == ['e1', 'e2']

    def test_rejects_unknown_time_filter(self):
        with pytest.raises(ValueError):
            GraphClient().get_events('p1', 'token', 'tomorrow')

    @responses.activate
    def test_retries_server_errors(self):
        responses.add(responses.GET, EVENTS_URL, status=500, json={'error': {'message': 'oops'}})
        responses.add(responses.GET, EVENTS_URL, json={'data': [_event('e1')]})

        events = GraphClient().get_events('p1', 'token', 'upcoming')

        assert len(events) == 1
        assert len(responses.calls) == 2

    @responses.activate
    def test_rate_limit_exhausts_retries(self):
        for _ in range(3):
            responses.add(responses.GET, EVENTS_URL, status=429, json={})

        with pytest.raises(TransientError):
            GraphClient().get_events('p1', 'token', 'upcoming')

        assert len(responses.calls) == 3

    @responses.activate
    def test_invalid_token_is_not_retried(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            status=400,
            json={'error': {'code': 190, 'message': 'Error validating access token'}}
        )

        with pytest.raises(AuthInvalidError) as exc_info:
            GraphClient().get_events('p1', 'token', 'upcoming')

        assert exc_info.value.error_code == 190
        assert len(responses.calls) == 1

    @responses.activate
    def test_other_client_errors_are_not_retried(self):
        responses.add(
            responses.GET,
            EVENTS_URL,
            status=400,
            json={'error': {'code': 100, 'message': 'Invalid parameter'}}
        )

        with pytest.raises(UpstreamError) as exc_info:
            GraphClient().get_events('p1', 'token', 'upcoming')

        assert not isinstance(exc_info.value, (TransientError, AuthInvalidError))
        assert len(responses.calls) == 1

    @responses.activate
    def test_timeout_raises_upstream_error(self):
        responses.add(responses.GET, EVENTS_URL, body=Timeout("Request timed out"))

        with pytest.raises(UpstreamError):
            GraphClient().get_events('p1', 'token', 'upcoming')

        assert len(responses.calls) == 1


class TestGetPages:

    @responses.activate
    def test_collects_pages_across_results(self):
        responses.add(
            responses.GET,
            f"{BASE}/me/accounts",
            json={
                'data': [{'id': 'p1', 'name': 'Page One', 'access_token': 't1'}],
                'paging': {'next': f"{BASE}/me/accounts?after=c2"}
            },
            match=[matchers.query_param_matcher({'access_token': 'user-token'}, strict_match=False)]
        )
        responses.add(
            responses.GET,
            f"{BASE}/me/accounts?after=c2",
            json={'data': [{'id': 'p2', 'name': 'Page Two', 'access_token': 't2'}]}
        )

        pages = GraphClient().get_pages('user-token')

        assert [(p.id, p.name, p.access_token) for p in pages] == [
            ('p1', 'Page One', 't1'),
            ('p2', 'Page Two', 't2'),
        ]


class TestGetRelevantEvents:
    """Windowing and deduplication of upcoming + past events."""

    NOW = datetime(2024, 6, 30, tzinfo=timezone.utc)

    def _run(self, upcoming, past, days_back=30):
        client = GraphClient()
        by_filter = {'upcoming': upcoming, 'past': past}
        with patch.object(client, 'get_events', side_effect=lambda p, c, f: by_filter[f]):
            return client.get_relevant_events('p1', 'token', days_back, now=self.NOW)

    def test_cutoff_boundary_is_inclusive(self):
        on_cutoff = RawEvent(id='edge', name='Edge', start_time='2024-05-31T00:00:00+0000')
        too_old = RawEvent(id='old', name='Old', start_time='2024-05-30T23:59:59+0000')

        events = self._run([], [on_cutoff, too_old])

        assert [e.id for e in events] == ['edge']

    def test_unparseable_past_start_time_is_dropped(self):
        broken = RawEvent(id='broken', name='Broken', start_time='not a date')

        assert self._run([], [broken]) == []

    def test_duplicate_ids_keep_the_past_copy(self):
        upcoming_copy = RawEvent(id='e1', name='Upcoming copy', start_time='2024-06-29T10:00:00+0000')
        other = RawEvent(id='e2', name='Other', start_time='2024-07-02T10:00:00+0000')
        past_copy = RawEvent(id='e1', name='Past copy', start_time='2024-06-29T10:00:00+0000')

        events = self._run([upcoming_copy, other], [past_copy])

        assert [e.id for e in events] == ['e1', 'e2']
        assert events[0].name == 'Past copy'

    def test_upcoming_events_are_not_filtered(self):
        far_future = RawEvent(id='f', name='Future', start_time='2025-01-01T10:00:00+0000')

        assert [e.id for e in self._run([far_future], [])] == ['f']


class TestExchangeForLongLivedToken:

    TOKEN_URL = f"{BASE}/oauth/access_token"

    @responses.activate
    def test_returns_new_token(self):
        responses.add(
            responses.GET,
            self.TOKEN_URL,
            json={'access_token': 'long-lived', 'token_type': 'bearer'},
            match=[matchers.query_param_matcher({
                'grant_type': 'fb_exchange_token',
                'client_id': 'app-1',
                'client_secret': 'shh',
                'fb_exchange_token': 'old-token',
            })]
        )

        assert GraphClient().exchange_for_long_lived_token('old-token', 'app-1', 'shh') == 'long-lived'

    @responses.activate
    def test_missing_token_in_response_raises(self):
        responses.add(responses.GET, self.TOKEN_URL, json={'token_type': 'bearer'})

        with pytest.raises(UpstreamError):
            GraphClient().exchange_for_long_lived_token('old-token', 'app-1', 'shh')

    @responses.activate
    def test_rejected_token_raises_auth_invalid(self):
        responses.add(
            responses.GET,
            self.TOKEN_URL,
            status=400,
            json={'error': {'code': 190, 'message': 'Session has expired'}}
        )

        with pytest.raises(AuthInvalidError):
            GraphClient().exchange_for_long_lived_token('old-token', 'app-1', 'shh')

        assert len(responses.calls) == 1
