"""Tests for repository configuration."""

from __future__ import annotations

import pytest
from idlink.contacts import (
    InMemoryContactRepository,
    RepositoryBackend,
    RepositoryConfig,
    create_repository,
)


class TestRepositoryConfig:
    """Tests for RepositoryConfig."""

    def test_defaults(self) -> None:
        """Test default configuration uses the in-memory store."""
        config = RepositoryConfig()

        assert config.backend == RepositoryBackend.MEMORY
        assert config.dataset == "idlink"
        assert config.table == "contacts"
        assert config.location == "US"
        assert config.timeout == 30.0

    def test_from_env(self, monkeypatch) -> None:
        """Test configuration is read from environment variables."""
        monkeypatch.setenv("IDLINK_BACKEND", "BigQuery")
        monkeypatch.setenv("GCP_PROJECT_ID", "gcp-project")
        monkeypatch.setenv("IDLINK_DATASET", "crm")
        monkeypatch.setenv("IDLINK_BQ_LOCATION", "EU")
        monkeypatch.setenv("IDLINK_BQ_TIMEOUT", "12.5")
        monkeypatch.delenv("IDLINK_PROJECT_ID", raising=False)

        config = RepositoryConfig.from_env()

        assert config.backend == RepositoryBackend.BIGQUERY
        assert config.project_id == "gcp-project"
        assert config.dataset == "crm"
        assert config.location == "EU"
        assert config.timeout == 12.5

    def test_project_id_prefers_idlink_variable(self, monkeypatch) -> None:
        """Test IDLINK_PROJECT_ID overrides GCP_PROJECT_ID."""
        monkeypatch.setenv("GCP_PROJECT_ID", "gcp-project")
        monkeypatch.setenv("IDLINK_PROJECT_ID", "idlink-project")

        assert RepositoryConfig.from_env().project_id == "idlink-project"

    def test_from_env_rejects_unknown_backend(self, monkeypatch) -> None:
        """Test unknown backends fail fast."""
        monkeypatch.setenv("IDLINK_BACKEND", "postgres")

        with pytest.raises(ValueError):
            RepositoryConfig.from_env()


class TestCreateRepository:
    """Tests for create_repository."""

    def test_memory_backend(self) -> None:
        """Test the default backend builds an in-memory store."""
        repository = create_repository(RepositoryConfig(lock_timeout=2.0))

        assert isinstance(repository, InMemoryContactRepository)
        assert repository._identity_locks.timeout == 2.0

    def test_bigquery_backend(self) -> None:
        """Test the BigQuery backend receives its settings."""
        from idlink.contacts.storage import BigQueryContactRepository

        config = RepositoryConfig(
            backend=RepositoryBackend.BIGQUERY,
            project_id="my-project",
            dataset="crm",
            timeout=10.0,
        )

        repository = create_repository(config)

        assert isinstance(repository, BigQueryContactRepository)
        assert repository.table_id == "my-project.crm.contacts"
        assert repository.timeout == 10.0

    def test_bigquery_backend_requires_project(self) -> None:
        """Test the BigQuery backend needs a project ID."""
        config = RepositoryConfig(backend=RepositoryBackend.BIGQUERY)

        with pytest.raises(ValueError, match="project_id is required"):
            create_repository(config)
