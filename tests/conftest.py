"""Shared fixtures for the test suite."""
import os
from unittest.mock import patch

import pytest

from tests.factories import make_raw_event


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches real AWS."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1',
    }
    with patch.dict(os.environ, env_vars):
        yield


@pytest.fixture(autouse=True)
def no_retry_sleep():
    """Skip backoff delays in retry loops."""
    with patch('upstream.retry.time.sleep') as mock_sleep:
        yield mock_sleep


@pytest.fixture
def raw_event_factory():
    return make_raw_event
