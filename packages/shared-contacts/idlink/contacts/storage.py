"""Contact storage in BigQuery.

Implements the ContactRepository interface on a single `contacts` table.
Creation and link rewrites run as guarded DML so that concurrent writers
are detected rather than silently overwritten.
"""

from __future__ import annotations

import concurrent.futures
import logging
from typing import TYPE_CHECKING, Any

from google.api_core import exceptions as google_exceptions

from idlink.contacts.exceptions import (
    ConflictError,
    ConsistencyViolationError,
    RepositoryUnavailableError,
)
from idlink.contacts.models import Contact, LinkPrecedence
from idlink.contacts.repository import (
    DEFAULT_LOCK_TIMEOUT,
    UNCHECKED,
    ContactRepository,
    Unchecked,
)

if TYPE_CHECKING:
    from google.cloud import bigquery

logger = logging.getLogger(__name__)

CREATE_DATASET_SQL = "CREATE SCHEMA IF NOT EXISTS `{project_id}.{dataset}`"

# SQL for creating the contacts table
CREATE_CONTACTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS `{table_id}` (
    id INT64 NOT NULL,
    email STRING,
    phone_number STRING,
    link_precedence STRING NOT NULL,
    linked_id INT64,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
)
"""

# Single-row id counter. Every create updates it, so BigQuery cancels one of
# any two overlapping create transactions instead of committing both.
CREATE_SEQUENCE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS `{sequence_table_id}` (
    next_id INT64 NOT NULL
)
"""

SEED_SEQUENCE_SQL = """
INSERT INTO `{sequence_table_id}` (next_id)
SELECT IFNULL((SELECT MAX(id) FROM `{table_id}`), 0)
FROM UNNEST([1])
WHERE NOT EXISTS (SELECT 1 FROM `{sequence_table_id}`)
"""

# BigQuery cancels one of two overlapping mutating transactions with this message
CONCURRENT_UPDATE_MARKER = "concurrent update"


class BigQueryContactRepository(ContactRepository):
    """Contact repository backed by a BigQuery table.

    Example:
        >>> repository = BigQueryContactRepository(project_id="my-project")
        >>> repository.ensure_table_exists()
        >>> contacts = repository.find_by_email_or_phone(email="doc@hillvalley.edu")
    """

    def __init__(
        self,
        project_id: str,
        dataset: str = "idlink",
        table: str = "contacts",
        location: str = "US",
        timeout: float = 30.0,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        client: bigquery.Client | None = None,
    ):
        """Initialize contact storage.

        Args:
            project_id: GCP project ID containing the dataset.
            dataset: Dataset holding the contacts table.
            table: Contacts table name.
            location: BigQuery location for query jobs.
            timeout: Seconds to wait for each query job.
            lock_timeout: Seconds to wait for an identity key lock.
            client: Optional BigQuery client. Will be created if not provided.
        """
        super().__init__(lock_timeout=lock_timeout)
        self.project_id = project_id
        self.dataset = dataset
        self.table = table
        self.location = location
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> bigquery.Client:
        """Lazy-initialize BigQuery client."""
        if self._client is None:
            from google.cloud import bigquery

            self._client = bigquery.Client(project=self.project_id, location=self.location)
        return self._client

    @property
    def table_id(self) -> str:
        """Full table ID for the contacts table."""
        return f"{self.project_id}.{self.dataset}.{self.table}"

    @property
    def sequence_table_id(self) -> str:
        """Full table ID for the contact id counter."""
        return f"{self.table_id}_sequence"

    def open(self) -> None:
        """Create the dataset and table if missing, then mark open."""
        self.ensure_table_exists()
        super().open()

    def close(self) -> None:
        """Close the BigQuery client."""
        if self._client is not None:
            self._client.close()
            self._client = None
        super().close()

    def ensure_table_exists(self) -> None:
        """Create the dataset, contacts table and id counter if they don't exist."""
        self._run(CREATE_DATASET_SQL.format(project_id=self.project_id, dataset=self.dataset))
        self._run(CREATE_CONTACTS_TABLE_SQL.format(table_id=self.table_id))
        self._run(CREATE_SEQUENCE_TABLE_SQL.format(sequence_table_id=self.sequence_table_id))
        self._run(
            SEED_SEQUENCE_SQL.format(
                sequence_table_id=self.sequence_table_id, table_id=self.table_id
            )
        )
        logger.info(f"Ensured contacts table exists: {self.table_id}")

    def _run(self, sql: str, params: list[tuple[str, str, Any]] | None = None) -> Any:
        """Execute a query and wait for its result.

        Args:
            sql: SQL statement or script.
            params: (name, type, value) triples for query parameters.

        Returns:
            The BigQuery row iterator for the job.

        Raises:
            ConflictError: If BigQuery rejected the job for a concurrent update.
            RepositoryUnavailableError: For timeouts and other API failures.
        """
        from google.cloud import bigquery

        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter(name, type_, value)
                for name, type_, value in (params or [])
            ]
        )

        try:
            return self.client.query(sql, job_config=job_config).result(timeout=self.timeout)
        except google_exceptions.Conflict as e:
            raise ConflictError(f"Concurrent write to {self.table_id}") from e
        except google_exceptions.BadRequest as e:
            if CONCURRENT_UPDATE_MARKER in str(e).lower():
                raise ConflictError(f"Concurrent write to {self.table_id}") from e
            raise RepositoryUnavailableError(f"BigQuery rejected query on {self.table_id}") from e
        except concurrent.futures.TimeoutError as e:
            raise RepositoryUnavailableError(
                f"BigQuery query timed out after {self.timeout}s"
            ) from e
        except google_exceptions.GoogleAPIError as e:
            raise RepositoryUnavailableError(f"BigQuery unavailable: {type(e).__name__}") from e

    def find_by_email_or_phone(
        self,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> list[Contact]:
        conditions = []
        params: list[tuple[str, str, Any]] = []
        if email is not None:
            conditions.append("email = @email")
            params.append(("email", "STRING", email))
        if phone_number is not None:
            conditions.append("phone_number = @phone_number")
            params.append(("phone_number", "STRING", phone_number))
        if not conditions:
            return []

        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE {" OR ".join(conditions)}
        ORDER BY created_at, id
        """
        return [self._row_to_contact(row) for row in self._run(sql, params)]

    def find_by_id(self, contact_id: int) -> Contact | None:
        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE id = @id
        """
        rows = list(self._run(sql, [("id", "INT64", contact_id)]))
        if not rows:
            return None
        return self._row_to_contact(rows[0])

    def find_cluster_members(self, root_id: int) -> list[Contact]:
        sql = f"""
        SELECT *
        FROM `{self.table_id}`
        WHERE id = @root_id OR linked_id = @root_id
        ORDER BY created_at, id
        """
        return [self._row_to_contact(row) for row in self._run(sql, [("root_id", "INT64", root_id)])]

    def create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
        require_absent: bool = False,
    ) -> Contact:
        # Bumping the counter is a mutation, so two overlapping creates cannot
        # both commit: BigQuery cancels one with a concurrent update error,
        # which _run raises as ConflictError. Inserts alone would not conflict.
        sql = f"""
        DECLARE new_id INT64;
        BEGIN TRANSACTION;
        UPDATE `{self.sequence_table_id}` SET next_id = next_id + 1 WHERE TRUE;
        SET new_id = (SELECT MAX(next_id) FROM `{self.sequence_table_id}`);
        INSERT INTO `{self.table_id}`
            (id, email, phone_number, link_precedence, linked_id, created_at, updated_at)
        SELECT
            new_id, @email, @phone_number, @link_precedence, @linked_id,
            CURRENT_TIMESTAMP(), CURRENT_TIMESTAMP()
        FROM UNNEST([1])
        WHERE NOT @require_absent OR NOT EXISTS (
            SELECT 1
            FROM `{self.table_id}`
            WHERE (@email IS NOT NULL AND email = @email)
               OR (@phone_number IS NOT NULL AND phone_number = @phone_number)
        );
        COMMIT TRANSACTION;
        SELECT * FROM `{self.table_id}` WHERE id = new_id;
        """
        params: list[tuple[str, str, Any]] = [
            ("email", "STRING", email),
            ("phone_number", "STRING", phone_number),
            ("link_precedence", "STRING", link_precedence.value),
            ("linked_id", "INT64", linked_id),
            ("require_absent", "BOOL", require_absent),
        ]

        rows = list(self._run(sql, params))
        if not rows:
            raise ConflictError(
                f"A contact matching email={email} phone={phone_number} already exists"
            )

        contact = self._row_to_contact(rows[0])
        logger.info(f"Created {link_precedence.value} contact {contact.id} in {self.table_id}")
        return contact

    def set_precedence(
        self,
        contact_id: int,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
        expected_linked_id: int | None | Unchecked = UNCHECKED,
    ) -> Contact:
        sql = f"""
        UPDATE `{self.table_id}`
        SET
            link_precedence = @link_precedence,
            linked_id = @linked_id,
            updated_at = CURRENT_TIMESTAMP()
        WHERE id = @id
        """
        params: list[tuple[str, str, Any]] = [
            ("id", "INT64", contact_id),
            ("link_precedence", "STRING", link_precedence.value),
            ("linked_id", "INT64", linked_id),
        ]
        if expected_linked_id is not UNCHECKED:
            sql += " AND linked_id IS NOT DISTINCT FROM @expected_linked_id"
            params.append(("expected_linked_id", "INT64", expected_linked_id))

        result = self._run(sql, params)
        if (result.num_dml_affected_rows or 0) == 0:
            raise ConflictError(
                f"Contact {contact_id} changed or vanished before its link could be rewritten"
            )

        updated = self.find_by_id(contact_id)
        if updated is None:
            raise ConflictError(f"Contact {contact_id} disappeared after update")

        logger.info(f"Set contact {contact_id} to {link_precedence.value} -> {linked_id}")
        return updated

    def _row_to_contact(self, row: Any) -> Contact:
        """Convert a BigQuery row to Contact.

        Args:
            row: BigQuery row containing a contact.

        Returns:
            Contact object.

        Raises:
            ConsistencyViolationError: If the row breaks the link rules.
        """
        try:
            return Contact(
                id=int(row["id"]),
                email=row.get("email"),
                phone_number=row.get("phone_number"),
                link_precedence=LinkPrecedence(row["link_precedence"]),
                linked_id=row.get("linked_id"),
                created_at=row["created_at"],
                updated_at=row.get("updated_at"),
            )
        except ValueError as e:
            logger.error(f"Stored contact {row['id']} is malformed: {e}")
            raise ConsistencyViolationError(
                f"Stored contact {row['id']} is malformed: {e}",
                contact_ids=[row["id"]],
            ) from e
