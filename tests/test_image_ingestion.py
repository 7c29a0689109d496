"""Unit tests for cover image ingestion."""
from unittest.mock import Mock

import pytest
import responses
from botocore.exceptions import ClientError

from storage.image_ingestion import (
    ImageIngestionPipeline,
    ImageUploadOptions,
    get_file_extension,
    is_permanent_failure,
)

COVER_URL = 'https://scontent.example.com/v/cover.jpg'
PUBLIC_URL = 'https://event-covers.s3.amazonaws.com/covers/p1/e1.jpg'


@pytest.fixture
def bucket():
    handle = Mock()
    handle.make_public.return_value = PUBLIC_URL
    handle.signed_url.return_value = 'https://signed.example.com/covers/p1/e1.jpg?sig=1'
    return handle


@pytest.fixture
def event(raw_event_factory):
    return raw_event_factory(cover_source=COVER_URL)


class TestFileExtension:

    @pytest.mark.parametrize('content_type, url, expected', [
        ('image/png', COVER_URL, '.png'),
        ('image/jpeg; charset=binary', 'https://x/a.png', '.jpg'),
        ('image/webp', 'https://x/a', '.webp'),
        ('application/octet-stream', 'https://x/photo.GIF?x=1', '.gif'),
        ('application/octet-stream', 'https://x/photo.jpeg', '.jpg'),
        (None, 'https://x/photo.exe', '.jpg'),
        (None, '', '.jpg'),
    ])
    def test_extension(self, content_type, url, expected):
        assert get_file_extension(content_type, url) == expected


class TestPermanentFailure:

    def test_access_denied_is_permanent(self):
        error = ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'Denied'}}, 'PutObject')
        assert is_permanent_failure(error) is True

    def test_throttling_is_not_permanent(self):
        error = ClientError({'Error': {'Code': 'SlowDown', 'Message': 'Slow'}}, 'PutObject')
        assert is_permanent_failure(error) is False


class TestProcessCoverImage:

    def test_no_cover_returns_none_without_download(self, raw_event_factory, bucket):
        pipeline = ImageIngestionPipeline()

        assert pipeline.process_cover_image(raw_event_factory(), 'p1', bucket) is None
        bucket.upload.assert_not_called()

    def test_no_bucket_returns_upstream_url(self, event):
        assert ImageIngestionPipeline().process_cover_image(event, 'p1', None) == COVER_URL

    @responses.activate
    def test_uploads_and_makes_public(self, event, bucket):
        responses.add(responses.GET, COVER_URL, body=b'jpegbytes', content_type='image/jpeg')

        url = ImageIngestionPipeline().process_cover_image(event, 'p1', bucket)

        assert url == PUBLIC_URL
        path, _, content_type = bucket.upload.call_args.args
        assert path == 'covers/p1/e1.jpg'
        assert content_type == 'image/jpeg'
        bucket.make_public.assert_called_once_with('covers/p1/e1.jpg')
        assert responses.calls[0].request.headers['User-Agent'] == 'PageEventsSync/1.0'

    @responses.activate
    def test_signed_url_when_not_public(self, event, bucket):
        responses.add(responses.GET, COVER_URL, body=b'png', content_type='image/png')
        pipeline = ImageIngestionPipeline(ImageUploadOptions(make_public=False, signed_url_expiry_seconds=60))

        url = pipeline.process_cover_image(event, 'p1', bucket)

        assert url == 'https://signed.example.com/covers/p1/e1.jpg?sig=1'
        bucket.signed_url.assert_called_once_with('covers/p1/e1.png', 60)
        bucket.make_public.assert_not_called()

    @responses.activate
    def test_not_found_is_not_retried_and_falls_back(self, event, bucket):
        responses.add(responses.GET, COVER_URL, status=404)

        url = ImageIngestionPipeline().process_cover_image(event, 'p1', bucket)

        assert url == COVER_URL
        assert len(responses.calls) == 1
        bucket.upload.assert_not_called()

    @responses.activate
    def test_server_error_is_retried(self, event, bucket, no_retry_sleep):
        responses.add(responses.GET, COVER_URL, status=503)
        responses.add(responses.GET, COVER_URL, body=b'jpegbytes', content_type='image/jpeg')

        url = ImageIngestionPipeline().process_cover_image(event, 'p1', bucket)

        assert url == PUBLIC_URL
        assert len(responses.calls) == 2
        no_retry_sleep.assert_called_once_with(1)

    @responses.activate
    def test_exhausted_retries_fall_back(self, event, bucket):
        for _ in range(4):
            responses.add(responses.GET, COVER_URL, status=500)

        url = ImageIngestionPipeline().process_cover_image(event, 'p1', bucket)

        assert url == COVER_URL
        assert len(responses.calls) == 4

    @responses.activate
    def test_bucket_access_denied_is_not_retried(self, event, bucket):
        responses.add(responses.GET, COVER_URL, body=b'jpegbytes', content_type='image/jpeg')
        bucket.upload.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'Denied'}}, 'PutObject'
        )

        url = ImageIngestionPipeline().process_cover_image(event, 'p1', bucket)

        assert url == COVER_URL
        assert bucket.upload.call_count == 1
