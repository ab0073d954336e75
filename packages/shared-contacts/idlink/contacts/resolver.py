"""Identity resolution engine.

Given an observation (an email and/or phone number) the resolver finds the
clusters it touches, merges them under their oldest primary, records any new
information as a secondary contact and returns the consolidated view.

Merges flatten immediately: every contact that pointed at a demoted primary,
or at any secondary discovered mid-chain, is re-pointed at the surviving
primary in the same call. Primaries are demoted only after their members are
re-pointed, so an interrupted merge is completed by the next resolution that
touches either cluster.

Example:
    >>> with InMemoryContactRepository() as repository:
    ...     resolver = IdentityResolver(repository)
    ...     _ = resolver.resolve(email="lorraine@hillvalley.edu", phone_number="123456")
    ...     identity = resolver.resolve(email="mcfly@hillvalley.edu", phone_number="123456")
    ...     identity.emails
    ['lorraine@hillvalley.edu', 'mcfly@hillvalley.edu']
"""

from __future__ import annotations

import logging

from idlink.contacts.exceptions import (
    ConflictError,
    ConsistencyViolationError,
    ContactNotFoundError,
    InvalidInputError,
)
from idlink.contacts.models import (
    ConsolidatedIdentity,
    Contact,
    LinkPrecedence,
    Observation,
    OrderedValueSet,
    ResolutionStats,
)
from idlink.contacts.repository import ContactRepository

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Resolve observations into consolidated contact identities.

    The resolver holds no state of its own; the repository is injected and
    its lifecycle belongs to the caller.

    Note:
        Resolutions touching the same email or phone number are serialized
        through the repository's identity_lock(). Merges between clusters
        reached through different keys are protected by optimistic checks
        and surface as ConflictError instead of being retried.
    """

    def __init__(self, repository: ContactRepository):
        """Initialize the resolver.

        Args:
            repository: Contact store to read from and write to.
        """
        self.repository = repository

    def resolve(
        self,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> ConsolidatedIdentity:
        """Resolve an observation against known contacts.

        Args:
            email: Observed email address.
            phone_number: Observed phone number.

        Returns:
            Consolidated identity of the cluster the observation belongs to.

        Raises:
            InvalidInputError: If neither field is supplied.
            ConsistencyViolationError: If stored links are corrupt.
            ConflictError: If a concurrent writer changed a contact mid-resolution.
            RepositoryUnavailableError: If the repository cannot be reached.
        """
        observation = Observation(email=email, phone_number=phone_number)
        if observation.is_empty:
            raise InvalidInputError("At least one of email or phoneNumber is required")

        with self.repository.identity_lock(observation.keys):
            identity, stats = self._resolve(observation)

        logger.info(
            f"Resolved identity {identity.primary_contact_id}: "
            f"created={stats.created_contact_id} demoted={stats.demoted_ids} "
            f"repointed={stats.repointed_ids}"
        )
        return identity

    def get_identity(self, contact_id: int) -> ConsolidatedIdentity:
        """Return the consolidated identity of the cluster holding a contact.

        Stale link chains found on the way to the primary are flattened.

        Raises:
            ContactNotFoundError: If no contact has this id.
            ConsistencyViolationError: If stored links are corrupt.
        """
        contact = self.repository.find_by_id(contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)

        observation = Observation(email=contact.email, phone_number=contact.phone_number)
        with self.repository.identity_lock(observation.keys):
            cache: dict[int, Contact] = {contact.id: contact}
            root, hubs = self._find_root(contact, cache)
            if hubs:
                self._merge(root, hubs, ResolutionStats(primary_contact_id=root.id))
            return self._consolidate(root, self._cluster_members(root))

    def _resolve(self, observation: Observation) -> tuple[ConsolidatedIdentity, ResolutionStats]:
        stats = ResolutionStats()
        matches = self.repository.find_by_email_or_phone(
            email=observation.email,
            phone_number=observation.phone_number,
        )

        if not matches:
            contact = self.repository.create_contact(
                observation.email,
                observation.phone_number,
                LinkPrecedence.PRIMARY,
                require_absent=True,
            )
            stats.primary_contact_id = contact.id
            stats.created_contact_id = contact.id
            return self._consolidate(contact, [contact]), stats

        roots, hubs = self._find_roots(matches)
        survivor = min(roots.values(), key=lambda c: c.age_key)
        stats.primary_contact_id = survivor.id

        # Every other root is demoted along with its members
        for root in roots.values():
            if root.id != survivor.id:
                hubs.setdefault(root.id, root)
        if hubs:
            if len(roots) > 1:
                logger.info(
                    f"Merging clusters {sorted(r.id for r in roots.values() if r.id != survivor.id)} "
                    f"into {survivor.id}"
                )
            self._merge(survivor, hubs, stats)

        identity = self._consolidate(survivor, self._cluster_members(survivor))

        if self._introduces_new_information(observation, identity):
            contact = self.repository.create_contact(
                observation.email,
                observation.phone_number,
                LinkPrecedence.SECONDARY,
                linked_id=survivor.id,
            )
            stats.created_contact_id = contact.id
            if contact.email and contact.email not in identity.emails:
                identity.emails.append(contact.email)
            if contact.phone_number and contact.phone_number not in identity.phone_numbers:
                identity.phone_numbers.append(contact.phone_number)
            identity.secondary_contact_ids.append(contact.id)

        return identity, stats

    def _find_roots(
        self, matches: list[Contact]
    ) -> tuple[dict[int, Contact], dict[int, Contact]]:
        """Map matched contacts to their cluster primaries.

        Returns:
            Tuple of (roots by id, stale secondary link targets by id).
        """
        cache = {contact.id: contact for contact in matches}
        roots: dict[int, Contact] = {}
        hubs: dict[int, Contact] = {}

        for contact in matches:
            root, chain_hubs = self._find_root(contact, cache)
            roots.setdefault(root.id, root)
            hubs.update(chain_hubs)

        return roots, hubs

    def _find_root(
        self, contact: Contact, cache: dict[int, Contact]
    ) -> tuple[Contact, dict[int, Contact]]:
        """Follow linked_id pointers from a contact to its primary.

        Any secondary found as a link target is part of a chain and is
        returned for repair.

        Raises:
            ConsistencyViolationError: On a dangling pointer or a cycle.
        """
        hubs: dict[int, Contact] = {}
        visited = [contact.id]
        current = contact

        while not current.is_primary:
            target_id = current.linked_id
            target = cache.get(target_id)
            if target is None:
                target = self.repository.find_by_id(target_id)
            if target is None:
                logger.error(
                    f"Contact {current.id} links to missing contact {target_id}; manual repair required"
                )
                raise ConsistencyViolationError(
                    f"Contact {current.id} links to missing contact {target_id}",
                    contact_ids=[current.id, target_id],
                )
            if target.id in visited:
                logger.error(f"Link cycle among contacts {visited}; manual repair required")
                raise ConsistencyViolationError(
                    f"Link cycle among contacts {visited}",
                    contact_ids=list(visited),
                )

            cache[target.id] = target
            visited.append(target.id)
            if not target.is_primary:
                hubs[target.id] = target
            current = target

        if hubs:
            logger.warning(
                f"Contact {contact.id} reaches primary {current.id} through chain {visited}"
            )
        return current, hubs

    def _merge(
        self,
        survivor: Contact,
        hubs: dict[int, Contact],
        stats: ResolutionStats,
    ) -> None:
        """Point everything under the stale hubs directly at the survivor.

        Members are re-pointed before their hub so an interrupted merge
        leaves each demoted-to-be primary still reachable as a root.
        """
        handled: set[int] = {survivor.id}

        for hub in hubs.values():
            for member in self.repository.find_cluster_members(hub.id):
                if member.id in handled or member.id in hubs or member.linked_id != hub.id:
                    continue
                self.repository.set_precedence(
                    member.id,
                    LinkPrecedence.SECONDARY,
                    linked_id=survivor.id,
                    expected_linked_id=hub.id,
                )
                handled.add(member.id)
                stats.repointed_ids.append(member.id)

        for hub in hubs.values():
            if hub.id in handled:
                continue
            if not hub.is_primary and hub.linked_id == survivor.id:
                handled.add(hub.id)
                continue

            self.repository.set_precedence(
                hub.id,
                LinkPrecedence.SECONDARY,
                linked_id=survivor.id,
                expected_linked_id=hub.linked_id,
            )
            handled.add(hub.id)
            if hub.is_primary:
                stats.demoted_ids.append(hub.id)
            else:
                stats.repointed_ids.append(hub.id)

    def _cluster_members(self, root: Contact) -> list[Contact]:
        """Fetch a cluster and check it is rooted where expected.

        Raises:
            ConflictError: If a concurrent merge demoted the root.
            ConsistencyViolationError: If the root is missing.
        """
        members = self.repository.find_cluster_members(root.id)
        stored_root = next((m for m in members if m.id == root.id), None)
        if stored_root is None:
            stored_root = self.repository.find_by_id(root.id)
        if stored_root is None:
            logger.error(f"Cluster root {root.id} is missing")
            raise ConsistencyViolationError(
                f"Cluster root {root.id} is missing",
                contact_ids=[root.id],
            )
        if not stored_root.is_primary:
            logger.warning(
                f"Cluster root {root.id} was merged into {stored_root.linked_id} concurrently"
            )
            raise ConflictError(
                f"Contact {root.id} was merged into {stored_root.linked_id} during resolution"
            )
        return members

    def _consolidate(self, root: Contact, members: list[Contact]) -> ConsolidatedIdentity:
        """Build the consolidated view, root's values first."""
        emails = OrderedValueSet([root.email])
        phone_numbers = OrderedValueSet([root.phone_number])
        secondary_ids: list[int] = []

        for member in members:
            emails.add(member.email)
            phone_numbers.add(member.phone_number)
            if member.id != root.id:
                secondary_ids.append(member.id)

        return ConsolidatedIdentity(
            primary_contact_id=root.id,
            emails=emails.to_list(),
            phone_numbers=phone_numbers.to_list(),
            secondary_contact_ids=secondary_ids,
        )

    def _introduces_new_information(
        self, observation: Observation, identity: ConsolidatedIdentity
    ) -> bool:
        """Return True if the observation carries a value the cluster lacks.

        Absent fields count as already known.
        """
        if observation.email is not None and observation.email not in identity.emails:
            return True
        return (
            observation.phone_number is not None
            and observation.phone_number not in identity.phone_numbers
        )
