"""Pytest fixtures for shared-contacts tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from idlink.contacts import (
    Contact,
    IdentityResolver,
    InMemoryContactRepository,
    LinkPrecedence,
)

BASE_TIME = datetime(2023, 4, 1, tzinfo=UTC)


class StepClock:
    """Clock that advances one minute per call."""

    def __init__(self, start: datetime = BASE_TIME):
        self._next = start

    def __call__(self) -> datetime:
        current = self._next
        self._next += timedelta(minutes=1)
        return current


def make_contact(
    contact_id: int,
    email: str | None = None,
    phone_number: str | None = None,
    linked_id: int | None = None,
    minutes: int | None = None,
) -> Contact:
    """Build a stored contact; linked_id makes it SECONDARY."""
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone_number,
        link_precedence=LinkPrecedence.SECONDARY if linked_id else LinkPrecedence.PRIMARY,
        linked_id=linked_id,
        created_at=BASE_TIME - timedelta(days=1) + timedelta(minutes=contact_id if minutes is None else minutes),
    )


@pytest.fixture
def clock() -> StepClock:
    """Deterministic creation clock."""
    return StepClock()


@pytest.fixture
def repository(clock: StepClock) -> InMemoryContactRepository:
    """Empty in-memory repository."""
    return InMemoryContactRepository(clock=clock)


@pytest.fixture
def resolver(repository: InMemoryContactRepository) -> IdentityResolver:
    """Resolver over the in-memory repository."""
    return IdentityResolver(repository)


@pytest.fixture
def contact_factory() -> Callable[..., Contact]:
    """Factory for pre-built stored contacts."""
    return make_contact
