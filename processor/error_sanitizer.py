"""Redaction of sensitive details from error messages and error responses."""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_VALUE = r'[\w\-.~]+'

# Order matters: specific patterns run before their generic suffixes
_REDACTIONS = [
    (re.compile(rf'access_token[=:]\s*{_VALUE}', re.IGNORECASE), 'access_token=REDACTED'),
    (re.compile(rf'app[-_]?secret[=:]\s*{_VALUE}', re.IGNORECASE), 'app_secret=REDACTED'),
    (re.compile(rf'api[-_]?key[=:]\s*{_VALUE}', re.IGNORECASE), 'api_key=REDACTED'),
    (re.compile(rf'token[=:]\s*{_VALUE}', re.IGNORECASE), 'token=REDACTED'),
    (re.compile(rf'bearer\s+{_VALUE}', re.IGNORECASE), 'bearer REDACTED'),
    (re.compile(rf'authorization[=:]\s*{_VALUE}', re.IGNORECASE), 'authorization=REDACTED'),
    (re.compile(rf'(?<![\w])key[=:]\s*{_VALUE}', re.IGNORECASE), 'key=REDACTED'),
    (re.compile(rf'(?<![\w])secret[=:]\s*{_VALUE}', re.IGNORECASE), 'secret=REDACTED'),
    (re.compile(rf'password[=:]\s*{_VALUE}', re.IGNORECASE), 'password=REDACTED'),
    (re.compile(rf'(?<![\w])pass[=:]\s*{_VALUE}', re.IGNORECASE), 'pass=REDACTED'),
    (re.compile(rf'(?<![\w])code[=:]\s*{_VALUE}', re.IGNORECASE), 'code=REDACTED'),
    (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), 'EMAIL_REDACTED'),
    (re.compile(r'arn:aws:secretsmanager:[^\s,)]+'), 'arn:aws:secretsmanager:REDACTED'),
]


def sanitize_error_message(message: Any) -> str:
    """
    Redact tokens, keys, secrets, passwords and emails from a message.

    Args:
        message: Original error message

    Returns:
        Message safe to return to clients
    """
    if not message or not isinstance(message, str):
        return 'An error occurred'

    sanitized = message
    for pattern, replacement in _REDACTIONS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized


def sanitize_error(error: Any) -> Dict[str, Optional[str]]:
    """Extract and sanitize the message of an exception (or string)."""
    if error is None:
        return {'message': 'An unknown error occurred', 'type': None}

    if isinstance(error, str):
        return {'message': sanitize_error_message(error), 'type': None}

    return {
        'message': sanitize_error_message(str(error)),
        'type': type(error).__name__,
    }


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_error_response(
    error: Any,
    include_details: bool = False,
    custom_message: Optional[str] = None
) -> Dict[str, Any]:
    """
    Build a standard error body for HTTP responses.

    The error field carries the custom message when one is given; the
    sanitized exception text only appears under details when
    include_details is set (non-production).

    Args:
        error: Exception or message
        include_details: Whether to add sanitized details and the error type
        custom_message: Client-facing summary of what failed

    Returns:
        Dict with success, error, timestamp and optional details
    """
    sanitized = sanitize_error(error)
    response: Dict[str, Any] = {
        'success': False,
        'error': custom_message or 'An error occurred',
        'timestamp': _timestamp(),
    }

    if include_details:
        response['details'] = sanitized['message']
        if sanitized['type']:
            response['type'] = sanitized['type']

    return response


def create_validation_error_response(
    validation_errors: Any,
    message: str = 'Validation failed'
) -> Dict[str, Any]:
    return {
        'success': False,
        'error': message,
        'message': 'The request contains invalid parameters',
        'timestamp': _timestamp(),
        'details': validation_errors,
    }
