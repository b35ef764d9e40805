"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from gyro_aws.config.models import ProviderSettings, WaitSettings


def make_client_error(code, message="", operation="TestOperation"):
    """Build a botocore ClientError the way boto3 raises it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"RequestId": "req-123"},
        },
        operation,
    )


@pytest.fixture
def client_error():
    """Factory for botocore ClientErrors."""
    return make_client_error


@pytest.fixture
def mock_session():
    """Create a mock boto3 session handing out one MagicMock client per service."""
    clients = {}
    session = MagicMock()
    session.region_name = "us-east-2"
    session.client.side_effect = lambda service, **kwargs: clients.setdefault(
        service, MagicMock(name=f"{service}-client")
    )
    session.clients = clients
    return session


@pytest.fixture
def fast_settings():
    """Adapter settings with waits short enough for tests."""
    return ProviderSettings(wait=WaitSettings(interval=0.001, timeout=0.05))
