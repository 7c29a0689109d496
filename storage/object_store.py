"""S3-backed object storage for cover images."""
import logging
from typing import BinaryIO, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import IMAGE_CACHE_MAX_AGE

logger = logging.getLogger(__name__)


class ObjectStoreUnavailableError(Exception):
    """The image bucket cannot be used."""


class S3BucketHandle:
    """Upload target for one S3 bucket."""

    def __init__(self, bucket, client):
        self.bucket = bucket
        self.client = client

    @property
    def name(self) -> str:
        return self.bucket.name

    def object_url(self, path: str) -> str:
        return f"https://{self.name}.s3.amazonaws.com/{path}"

    def upload(self, path: str, stream: BinaryIO, content_type: str) -> str:
        """
        Stream a file object into the bucket.

        Args:
            path: Object key
            stream: Readable binary stream
            content_type: MIME type stored with the object

        Returns:
            Object URL (only reachable once the object is public)
        """
        self.bucket.upload_fileobj(
            stream,
            path,
            ExtraArgs={
                'ContentType': content_type,
                'CacheControl': f"public, max-age={IMAGE_CACHE_MAX_AGE}",
            }
        )
        return self.object_url(path)

    def make_public(self, path: str) -> str:
        self.client.put_object_acl(Bucket=self.name, Key=path, ACL='public-read')
        return self.object_url(path)

    def signed_url(self, path: str, expires_in: int) -> str:
        return self.client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.name, 'Key': path},
            ExpiresIn=expires_in
        )


class S3ObjectStore:
    """Hands out bucket handles; the default bucket comes from configuration."""

    def __init__(self, default_bucket: Optional[str] = None):
        self.default_bucket = default_bucket

    def bucket(self, name: Optional[str] = None) -> S3BucketHandle:
        """
        Get a handle to a bucket.

        Raises:
            ObjectStoreUnavailableError: If no bucket is configured or the
                S3 client cannot be created
        """
        bucket_name = name or self.default_bucket
        if not bucket_name:
            raise ObjectStoreUnavailableError('No image bucket configured')

        try:
            s3 = boto3.resource('s3')
            client = boto3.client('s3')
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreUnavailableError(f"Failed to initialize S3 bucket: {e}") from e

        return S3BucketHandle(s3.Bucket(bucket_name), client)
