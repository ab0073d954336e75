"""Shared pytest fixtures for IDLink packages."""

import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture(autouse=True)
def clean_idlink_env(monkeypatch):
    """Keep host IDLink settings out of tests."""
    for name in (
        "IDLINK_BACKEND",
        "IDLINK_PROJECT_ID",
        "GCP_PROJECT_ID",
        "IDLINK_DATASET",
        "IDLINK_TABLE",
        "IDLINK_BQ_LOCATION",
        "IDLINK_BQ_TIMEOUT",
        "IDLINK_LOCK_TIMEOUT",
        "IDLINK_HOST",
        "IDLINK_LOG_LEVEL",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_observations():
    """A bridging sequence of observations: two clusters, then the link between them."""
    return [
        {"email": "george@hillvalley.edu", "phoneNumber": "919191"},
        {"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"},
        {"email": "george@hillvalley.edu", "phoneNumber": "717171"},
    ]
