"""Cover image ingestion: stream from the upstream CDN into the image bucket."""
import logging
import os
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests
from botocore.exceptions import ClientError

from config import (
    IMAGE_ALLOWED_EXTENSIONS,
    IMAGE_BACKOFF_BASE_SECONDS,
    IMAGE_BACKOFF_MAX_SECONDS,
    IMAGE_DEFAULT_EXTENSION,
    IMAGE_MAX_ATTEMPTS,
    IMAGE_USER_AGENT,
)
from processor.models import RawEvent
from upstream.retry import RetryPolicy, execute_with_retry

logger = logging.getLogger(__name__)

_CONTENT_TYPE_EXTENSIONS = [
    ('jpeg', '.jpg'),
    ('jpg', '.jpg'),
    ('png', '.png'),
    ('gif', '.gif'),
    ('webp', '.webp'),
    ('svg', '.svg'),
]

_PERMANENT_S3_CODES = {'403', '404', 'AccessDenied', 'Forbidden', 'NoSuchBucket', 'NotFound'}


@dataclass
class ImageUploadOptions:
    make_public: bool = True
    signed_url_expiry_seconds: int = 7 * 24 * 3600
    timeout: int = 30
    max_attempts: int = IMAGE_MAX_ATTEMPTS


def get_file_extension(content_type: Optional[str], original_url: str) -> str:
    """
    Pick a file extension for a downloaded image.

    Content type wins, then the URL path extension, then .jpg.
    """
    if content_type:
        lowered = content_type.lower()
        for marker, extension in _CONTENT_TYPE_EXTENSIONS:
            if marker in lowered:
                return extension

    if original_url:
        ext = os.path.splitext(urlparse(original_url).path)[1].lower()
        if ext in IMAGE_ALLOWED_EXTENSIONS:
            return '.jpg' if ext == '.jpeg' else ext

    return IMAGE_DEFAULT_EXTENSION


def is_permanent_failure(error: Exception) -> bool:
    """Not found / forbidden errors from the image host or the bucket."""
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code in (403, 404)
    if isinstance(error, ClientError):
        return str(error.response.get('Error', {}).get('Code')) in _PERMANENT_S3_CODES
    return False


class ImageIngestionPipeline:
    """Copies event cover images into the image bucket, falling back to upstream URLs."""

    def __init__(self, options: Optional[ImageUploadOptions] = None):
        self.options = options or ImageUploadOptions()

    def process_cover_image(
        self,
        event: RawEvent,
        page_id: str,
        bucket=None,
        options: Optional[ImageUploadOptions] = None
    ) -> Optional[str]:
        """
        Resolve the cover image URL to store for an event.

        Never raises: any failure returns the upstream cover URL instead.

        Args:
            event: Upstream event
            page_id: Page the event belongs to
            bucket: Bucket handle, or None when the bucket is unavailable
            options: Per-call override of the pipeline options

        Returns:
            Stored image URL, the upstream cover URL on fallback, or None if
            the event has no cover
        """
        if not event.cover_source:
            logger.debug(f"Event {event.id} has no cover image")
            return None

        if bucket is None:
            return event.cover_source

        try:
            url = self.upload_image_from_url(
                event.cover_source,
                f"covers/{page_id}/{event.id}",
                bucket,
                options or self.options
            )
            logger.debug(f"Processed cover image for event {event.id}")
            return url
        except Exception as e:
            logger.warning(
                f"Failed to process cover image for event {event.id}, "
                f"using upstream URL: {e}"
            )
            return event.cover_source

    def upload_image_from_url(
        self,
        image_url: str,
        storage_path: str,
        bucket,
        options: ImageUploadOptions
    ) -> str:
        """
        Stream an image into the bucket with retries.

        Args:
            image_url: Source image URL
            storage_path: Object key without extension
            bucket: Bucket handle to upload into
            options: Upload options

        Returns:
            Public URL or signed URL of the stored object

        Raises:
            The last download/upload error once retries are exhausted
        """
        policy = RetryPolicy(
            max_attempts=options.max_attempts,
            base_delay=IMAGE_BACKOFF_BASE_SECONDS,
            max_delay=IMAGE_BACKOFF_MAX_SECONDS,
            is_retryable=lambda e: not is_permanent_failure(e)
        )

        def attempt() -> str:
            with requests.get(
                image_url,
                stream=True,
                timeout=options.timeout,
                headers={'User-Agent': IMAGE_USER_AGENT}
            ) as response:
                response.raise_for_status()
                content_type = response.headers.get('Content-Type') or 'image/jpeg'
                path = f"{storage_path}{get_file_extension(content_type, image_url)}"

                response.raw.decode_content = True
                bucket.upload(path, response.raw, content_type)

            if options.make_public:
                return bucket.make_public(path)
            return bucket.signed_url(path, options.signed_url_expiry_seconds)

        return execute_with_retry(attempt, policy, description=f"Image upload to {storage_path}")
