"""Configuration for contact repositories."""

from __future__ import annotations

import os
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from idlink.contacts.repository import ContactRepository


class RepositoryBackend(str, Enum):
    """Supported contact stores."""

    MEMORY = "memory"
    BIGQUERY = "bigquery"


class RepositoryConfig(BaseModel):
    """Configuration for the contact repository."""

    backend: RepositoryBackend = RepositoryBackend.MEMORY
    project_id: str | None = None
    dataset: str = "idlink"
    table: str = "contacts"
    location: str = "US"
    timeout: float = 30.0  # seconds, per BigQuery job
    lock_timeout: float = 30.0  # seconds, per identity key lock

    @classmethod
    def from_env(cls) -> RepositoryConfig:
        """Load configuration from environment variables."""
        return cls(
            backend=RepositoryBackend(os.getenv("IDLINK_BACKEND", "memory").lower()),
            project_id=os.getenv("IDLINK_PROJECT_ID") or os.getenv("GCP_PROJECT_ID"),
            dataset=os.getenv("IDLINK_DATASET", "idlink"),
            table=os.getenv("IDLINK_TABLE", "contacts"),
            location=os.getenv("IDLINK_BQ_LOCATION", "US"),
            timeout=float(os.getenv("IDLINK_BQ_TIMEOUT", "30")),
            lock_timeout=float(os.getenv("IDLINK_LOCK_TIMEOUT", "30")),
        )


def create_repository(config: RepositoryConfig | None = None) -> ContactRepository:
    """Build the repository selected by the configuration.

    Args:
        config: Repository configuration. Loaded from the environment if None.

    Returns:
        An unopened repository instance.

    Raises:
        ValueError: If the BigQuery backend is selected without a project ID.
    """
    config = config or RepositoryConfig.from_env()

    if config.backend == RepositoryBackend.BIGQUERY:
        if not config.project_id:
            raise ValueError("project_id is required for the BigQuery backend")

        from idlink.contacts.storage import BigQueryContactRepository

        return BigQueryContactRepository(
            project_id=config.project_id,
            dataset=config.dataset,
            table=config.table,
            location=config.location,
            timeout=config.timeout,
            lock_timeout=config.lock_timeout,
        )

    from idlink.contacts.repository import InMemoryContactRepository

    return InMemoryContactRepository(lock_timeout=config.lock_timeout)
