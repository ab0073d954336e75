"""Settings for the IDLink API process."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field

from idlink.contacts.config import RepositoryConfig


class ApiSettings(BaseModel):
    """Configuration for the HTTP server."""

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)

    @classmethod
    def from_env(cls) -> ApiSettings:
        """Load settings from environment variables."""
        return cls(
            host=os.getenv("IDLINK_HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            log_level=os.getenv("IDLINK_LOG_LEVEL", "INFO").upper(),
            repository=RepositoryConfig.from_env(),
        )
