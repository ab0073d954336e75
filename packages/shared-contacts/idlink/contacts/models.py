"""Contact models for identity resolution.

This module provides the core data structures for representing contact
touchpoints and the consolidated identity built from a cluster of them.

Examples:
    Creating contacts:
        >>> from datetime import UTC, datetime
        >>> primary = Contact(
        ...     id=1,
        ...     email="lorraine@hillvalley.edu",
        ...     phone_number="123456",
        ...     link_precedence=LinkPrecedence.PRIMARY,
        ...     created_at=datetime(2023, 4, 1, tzinfo=UTC),
        ... )
        >>> primary.is_primary
        True

    Building an observation:
        >>> obs = Observation(email="mcfly@hillvalley.edu", phone_number="123456")
        >>> obs.keys
        [('email', 'mcfly@hillvalley.edu'), ('phone', '123456')]
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class LinkPrecedence(str, Enum):
    """Position of a contact within its cluster."""

    PRIMARY = "primary"
    """Oldest contact of the cluster, target of every secondary link"""

    SECONDARY = "secondary"
    """Contact linked into a cluster after its primary was established"""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class Contact:
    """A single stored contact touchpoint.

    Attributes:
        id: Monotonically assigned identifier (implies creation order)
        email: Email address, if the touchpoint carried one
        phone_number: Phone number, if the touchpoint carried one
        link_precedence: PRIMARY or SECONDARY
        linked_id: Id of the cluster primary (SECONDARY contacts only)
        created_at: Creation timestamp
        updated_at: Timestamp of the last precedence rewrite
    """

    id: int
    email: str | None = None
    phone_number: str | None = None
    link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY
    linked_id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate link fields after initialization."""
        if self.link_precedence == LinkPrecedence.PRIMARY and self.linked_id is not None:
            raise ValueError(f"Primary contact {self.id} cannot be linked to {self.linked_id}")
        if self.link_precedence == LinkPrecedence.SECONDARY and self.linked_id is None:
            raise ValueError(f"Secondary contact {self.id} must have a linked_id")
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_primary(self) -> bool:
        """Return True if this contact is a cluster primary."""
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def age_key(self) -> tuple[datetime, int]:
        """Ordering key: oldest first, ties broken by the lower id."""
        return (self.created_at, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "linkPrecedence": self.link_precedence.value,
            "linkedId": self.linked_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Observation:
    """A caller-submitted ``(email?, phone_number?)`` pair.

    Blank strings are treated as absent so that ``""`` never matches a stored
    contact.
    """

    email: str | None = None
    phone_number: str | None = None

    def __post_init__(self) -> None:
        if self.email is not None and not self.email.strip():
            object.__setattr__(self, "email", None)
        if self.phone_number is not None and not self.phone_number.strip():
            object.__setattr__(self, "phone_number", None)

    @property
    def is_empty(self) -> bool:
        """Return True if neither field was supplied."""
        return self.email is None and self.phone_number is None

    @property
    def keys(self) -> list[tuple[str, str]]:
        """Identity keys touched by this observation, used for locking."""
        keys = []
        if self.email is not None:
            keys.append(("email", self.email))
        if self.phone_number is not None:
            keys.append(("phone", self.phone_number))
        return keys


class OrderedValueSet:
    """Insertion-ordered set of strings.

    Keeps first-seen order so consolidated output is deterministic.

    Examples:
        >>> values = OrderedValueSet(["b", "a", "b"])
        >>> values.add("c")
        >>> list(values)
        ['b', 'a', 'c']
    """

    def __init__(self, values: Iterable[str | None] = ()):
        self._values: dict[str, None] = {}
        for value in values:
            self.add(value)

    def add(self, value: str | None) -> None:
        if value:
            self._values.setdefault(value, None)

    def __contains__(self, value: object) -> bool:
        return value in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_list(self) -> list[str]:
        return list(self._values)


@dataclass
class ConsolidatedIdentity:
    """Canonical view of one contact cluster.

    Attributes:
        primary_contact_id: Id of the cluster primary
        emails: Distinct emails, primary's first, then in creation order
        phone_numbers: Distinct phone numbers, same ordering
        secondary_contact_ids: Ids of every other cluster member
    """

    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Render the camelCase wire shape."""
        return {
            "primaryContactId": self.primary_contact_id,
            "emails": list(self.emails),
            "phoneNumbers": list(self.phone_numbers),
            "secondaryContactIds": list(self.secondary_contact_ids),
        }


@dataclass
class ResolutionStats:
    """Writes performed by a single resolution."""

    primary_contact_id: int | None = None
    created_contact_id: int | None = None
    demoted_ids: list[int] = field(default_factory=list)
    repointed_ids: list[int] = field(default_factory=list)

    @property
    def write_count(self) -> int:
        """Number of repository writes issued."""
        created = 1 if self.created_contact_id is not None else 0
        return created + len(self.demoted_ids) + len(self.repointed_ids)
