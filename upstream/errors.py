"""Error taxonomy for upstream Graph API calls."""
from typing import Optional


class UpstreamError(Exception):
    """An upstream call failed and should not be retried."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthInvalidError(UpstreamError):
    """The upstream platform rejected the page access credential."""


class TransientError(UpstreamError):
    """Rate limiting or a server-side failure; safe to retry."""
