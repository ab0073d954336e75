"""Custom exceptions for contact identity resolution."""

from __future__ import annotations


class ContactResolutionError(Exception):
    """Base exception for identity resolution errors."""

    pass


class InvalidInputError(ContactResolutionError):
    """Raised when an observation carries neither an email nor a phone number."""

    pass


class ContactNotFoundError(ContactResolutionError):
    """Raised when a requested contact does not exist."""

    def __init__(self, contact_id: int):
        super().__init__(f"Contact {contact_id} not found")
        self.contact_id = contact_id


class ConsistencyViolationError(ContactResolutionError):
    """Raised when stored link data is corrupt.

    Covers dangling ``linked_id`` pointers, link cycles and clusters whose
    primary is missing. These require manual repair and are never corrected
    silently.
    """

    def __init__(self, message: str, contact_ids: list[int] | None = None):
        super().__init__(message)
        self.contact_ids = contact_ids or []


class RepositoryError(ContactResolutionError):
    """Base exception for contact repository failures."""

    pass


class RepositoryUnavailableError(RepositoryError):
    """Raised when the repository cannot be reached or times out."""

    pass


class ConflictError(RepositoryError):
    """Raised when a write loses an optimistic concurrency check."""

    pass
