"""Contact repository interface and in-memory implementation."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Final

from idlink.contacts.exceptions import ConflictError, RepositoryUnavailableError
from idlink.contacts.models import Contact, LinkPrecedence

logger = logging.getLogger(__name__)


class Unchecked(Enum):
    """Marker type for skipping the optimistic link check."""

    TOKEN = "unchecked"


# Passed as expected_linked_id to skip the optimistic check
UNCHECKED: Final = Unchecked.TOKEN

# Default seconds to wait for an identity key lock
DEFAULT_LOCK_TIMEOUT = 30.0


class KeyedLock:
    """Per-key mutual exclusion.

    Each identity key gets its own ``threading.Lock``, created on first use
    and discarded once no holder or waiter references it. Multiple keys are
    acquired in sorted order so overlapping callers cannot deadlock.

    Example:
        >>> locks = KeyedLock()
        >>> with locks.hold([("email", "doc@hillvalley.edu")]):
        ...     pass
    """

    def __init__(self, timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._refcounts: dict[tuple[str, str], int] = {}

    def _checkout(self, key: tuple[str, str]) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._refcounts[key] = self._refcounts.get(key, 0) + 1
            return lock

    def _checkin(self, key: tuple[str, str]) -> None:
        with self._guard:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[tuple[str, str]]) -> Generator[None, None, None]:
        """Hold the locks for every key until the block exits.

        Raises:
            RepositoryUnavailableError: If a lock is not acquired within the timeout.
        """
        ordered = sorted(set(keys))
        acquired: list[tuple[str, str]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=self.timeout):
                    self._checkin(key)
                    raise RepositoryUnavailableError(
                        f"Timed out after {self.timeout}s waiting for identity lock"
                    )
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)

    def __len__(self) -> int:
        """Number of keys currently held or awaited."""
        with self._guard:
            return len(self._locks)


class ContactRepository(ABC):
    """Abstract base class for contact stores.

    Subclasses must implement:
    - find_by_email_or_phone(): Contacts matching either field, oldest first
    - find_by_id(): A single contact or None
    - find_cluster_members(): A root and every contact linked to it
    - create_contact(): Insert a contact, assigning id and created_at
    - set_precedence(): Rewrite a contact's link with an optimistic check

    Resolutions touching the same email or phone number are serialized by
    identity_lock(). Subclasses may override it with a store-level lock.

    Can be used as a context manager:
        with InMemoryContactRepository() as repository:
            resolver = IdentityResolver(repository)
    """

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self._identity_locks = KeyedLock(timeout=lock_timeout)
        self._opened = False

    def __enter__(self) -> ContactRepository:
        """Enter context manager."""
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context manager and release resources."""
        self.close()

    @property
    def is_open(self) -> bool:
        """Return True if open() has been called and close() has not."""
        return self._opened

    def open(self) -> None:
        """Prepare the repository for use."""
        self._opened = True

    def close(self) -> None:
        """Release any resources held by the repository."""
        self._opened = False

    def identity_lock(self, keys: Iterable[tuple[str, str]]):
        """Serialize callers that share any of the given identity keys."""
        return self._identity_locks.hold(keys)

    @abstractmethod
    def find_by_email_or_phone(
        self,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> list[Contact]:
        """Return contacts whose email or phone number matches.

        Only supplied fields participate; an absent field never matches.

        Returns:
            Matching contacts ordered by created_at ascending, then id.
        """
        pass  # pragma: no cover

    @abstractmethod
    def find_by_id(self, contact_id: int) -> Contact | None:
        """Return the contact with this id, or None if it does not exist."""
        pass  # pragma: no cover

    @abstractmethod
    def find_cluster_members(self, root_id: int) -> list[Contact]:
        """Return the root and every contact whose linked_id is the root.

        Returns:
            Cluster members ordered by created_at ascending, then id.
        """
        pass  # pragma: no cover

    @abstractmethod
    def create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
        require_absent: bool = False,
    ) -> Contact:
        """Insert a new contact.

        Args:
            email: Email address or None.
            phone_number: Phone number or None.
            link_precedence: PRIMARY or SECONDARY.
            linked_id: Cluster primary for SECONDARY contacts.
            require_absent: Reject the insert if any stored contact already
                matches the email or phone number.

        Returns:
            The stored contact with its assigned id and created_at.

        Raises:
            ConflictError: If require_absent is set and a match exists.
        """
        pass  # pragma: no cover

    @abstractmethod
    def set_precedence(
        self,
        contact_id: int,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
        expected_linked_id: int | None | Unchecked = UNCHECKED,
    ) -> Contact:
        """Rewrite a contact's precedence and link.

        Args:
            contact_id: Contact to rewrite.
            link_precedence: New precedence.
            linked_id: New link target (None for PRIMARY).
            expected_linked_id: The link the caller last read. If the stored
                link differs the write is rejected. Pass UNCHECKED to skip.

        Returns:
            The updated contact.

        Raises:
            ConflictError: If the stored link no longer matches, or the
                contact vanished.
        """
        pass  # pragma: no cover


def _sort_by_age(contacts: Iterable[Contact]) -> list[Contact]:
    return sorted(contacts, key=lambda c: c.age_key)


class InMemoryContactRepository(ContactRepository):
    """Thread-safe contact store held in process memory.

    Suitable for local development and tests. Every returned contact is a
    copy, so callers cannot mutate stored state.

    Example:
        >>> repository = InMemoryContactRepository()
        >>> contact = repository.create_contact(
        ...     "doc@hillvalley.edu", None, LinkPrecedence.PRIMARY
        ... )
        >>> contact.id
        1
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        """Initialize the store.

        Args:
            clock: Optional callable returning the creation timestamp.
            lock_timeout: Seconds to wait for an identity key lock.
        """
        super().__init__(lock_timeout=lock_timeout)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._store_lock = threading.RLock()
        self._contacts: dict[int, Contact] = {}
        self._next_id = 1

    def load(self, contacts: Iterable[Contact]) -> None:
        """Insert pre-built contacts verbatim (ids and links are not checked)."""
        with self._store_lock:
            for contact in contacts:
                self._contacts[contact.id] = replace(contact)
                self._next_id = max(self._next_id, contact.id + 1)

    def all(self) -> list[Contact]:
        """Return every stored contact, oldest first."""
        with self._store_lock:
            return _sort_by_age(replace(c) for c in self._contacts.values())

    def _matches(self, contact: Contact, email: str | None, phone_number: str | None) -> bool:
        return (email is not None and contact.email == email) or (
            phone_number is not None and contact.phone_number == phone_number
        )

    def find_by_email_or_phone(
        self,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> list[Contact]:
        with self._store_lock:
            matches = [
                replace(c)
                for c in self._contacts.values()
                if self._matches(c, email, phone_number)
            ]
        logger.debug(f"Found {len(matches)} contacts for email={email} phone={phone_number}")
        return _sort_by_age(matches)

    def find_by_id(self, contact_id: int) -> Contact | None:
        with self._store_lock:
            contact = self._contacts.get(contact_id)
            return replace(contact) if contact else None

    def find_cluster_members(self, root_id: int) -> list[Contact]:
        with self._store_lock:
            members = [
                replace(c)
                for c in self._contacts.values()
                if c.id == root_id or c.linked_id == root_id
            ]
        return _sort_by_age(members)

    def create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
        require_absent: bool = False,
    ) -> Contact:
        with self._store_lock:
            if require_absent and any(
                self._matches(c, email, phone_number) for c in self._contacts.values()
            ):
                raise ConflictError(
                    f"A contact matching email={email} phone={phone_number} already exists"
                )

            contact = Contact(
                id=self._next_id,
                email=email,
                phone_number=phone_number,
                link_precedence=link_precedence,
                linked_id=linked_id,
                created_at=self._clock(),
            )
            self._contacts[contact.id] = contact
            self._next_id += 1

        logger.info(f"Created {link_precedence.value} contact {contact.id}")
        return replace(contact)

    def set_precedence(
        self,
        contact_id: int,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
        expected_linked_id: int | None | Unchecked = UNCHECKED,
    ) -> Contact:
        with self._store_lock:
            stored = self._contacts.get(contact_id)
            if stored is None:
                raise ConflictError(f"Contact {contact_id} disappeared before update")
            if expected_linked_id is not UNCHECKED and stored.linked_id != expected_linked_id:
                raise ConflictError(
                    f"Contact {contact_id} is linked to {stored.linked_id}, "
                    f"expected {expected_linked_id}"
                )

            updated = replace(
                stored,
                link_precedence=link_precedence,
                linked_id=linked_id,
                updated_at=datetime.now(UTC),
            )
            self._contacts[contact_id] = updated

        logger.info(f"Set contact {contact_id} to {link_precedence.value} -> {linked_id}")
        return replace(updated)
