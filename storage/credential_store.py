"""Page access tokens held in AWS Secrets Manager."""
import logging
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class CredentialStore:
    """Reads page access tokens from Secrets Manager, one secret per page."""

    def __init__(self, secret_prefix: str = 'page-token-'):
        """
        Args:
            secret_prefix: Secret name prefix; the page ID is appended
        """
        self.secret_prefix = secret_prefix
        self.client = boto3.client('secretsmanager')

    def secret_name(self, page_id: str) -> str:
        return f"{self.secret_prefix}{page_id}"

    def get(self, page_id: str) -> Optional[str]:
        """
        Fetch the current access token for a page.

        Args:
            page_id: Upstream page ID

        Returns:
            The token, or None if no secret exists for the page

        Raises:
            ClientError: For any Secrets Manager failure other than a missing secret
        """
        try:
            response = self.client.get_secret_value(SecretId=self.secret_name(page_id))
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ResourceNotFoundException':
                logger.warning(f"No access token stored for page {page_id}")
                return None
            logger.error(f"Failed to read access token for page {page_id}: {e}")
            raise

        return response.get('SecretString') or None

    def put(self, page_id: str, token: str) -> None:
        """Store a token for a page, creating the secret on first use."""
        name = self.secret_name(page_id)
        try:
            self.client.put_secret_value(SecretId=name, SecretString=token)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'ResourceNotFoundException':
                raise
            self.client.create_secret(Name=name, SecretString=token)
        logger.info(f"Stored access token for page {page_id}")
