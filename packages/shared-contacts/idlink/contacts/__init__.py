"""IDLink contact identity resolution.

This package consolidates contact touchpoints (emails, phone numbers) into
clusters representing one person:
- Contact models and the consolidated identity view
- Repository interface with in-memory and BigQuery stores
- IdentityResolver, the resolution and merge engine

Example:
    from idlink.contacts import IdentityResolver, RepositoryConfig, create_repository

    with create_repository(RepositoryConfig.from_env()) as repository:
        resolver = IdentityResolver(repository)
        identity = resolver.resolve(email="doc@hillvalley.edu", phone_number="123456")
        print(identity.to_dict())
"""

from idlink.contacts.config import RepositoryBackend, RepositoryConfig, create_repository
from idlink.contacts.exceptions import (
    ConflictError,
    ConsistencyViolationError,
    ContactNotFoundError,
    ContactResolutionError,
    InvalidInputError,
    RepositoryError,
    RepositoryUnavailableError,
)
from idlink.contacts.models import (
    ConsolidatedIdentity,
    Contact,
    LinkPrecedence,
    Observation,
    OrderedValueSet,
    ResolutionStats,
)
from idlink.contacts.repository import (
    ContactRepository,
    InMemoryContactRepository,
    KeyedLock,
)
from idlink.contacts.resolver import IdentityResolver

__all__ = [
    # Config
    "RepositoryBackend",
    "RepositoryConfig",
    "create_repository",
    # Exceptions
    "ConflictError",
    "ConsistencyViolationError",
    "ContactNotFoundError",
    "ContactResolutionError",
    "InvalidInputError",
    "RepositoryError",
    "RepositoryUnavailableError",
    # Models
    "ConsolidatedIdentity",
    "Contact",
    "LinkPrecedence",
    "Observation",
    "OrderedValueSet",
    "ResolutionStats",
    # Repository
    "ContactRepository",
    "InMemoryContactRepository",
    "KeyedLock",
    # Engine
    "IdentityResolver",
]
