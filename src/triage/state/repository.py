"""Customer persistence.

This module defines the CustomerRepository protocol the webhook path
depends on and its PostgreSQL implementation using asyncpg. It provides:
- Connection pooling for production use
- Atomic transactions for project synchronization
- An atomic usage counter (``usage = usage + 1``) instead of
  read-modify-write in process memory

Source:
- migrations/001_customers.sql (schema definition)
- src/triage/state/memory.py (in-memory implementation)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, List, Optional, Protocol, runtime_checkable

import asyncpg

from src.triage.errors import UpstreamError
from src.triage.state.models import Customer, Project, _new_id


logger = logging.getLogger(__name__)


class DatabaseError(UpstreamError):
    """Raised when a database operation fails.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, cause=original_error)
        self.original_error = original_error


class CustomerNotFoundError(DatabaseError):
    """Raised when an operation targets a customer that does not exist.

    Attributes:
        name: The customer login that was not found.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Customer not found: {name}")


@runtime_checkable
class CustomerRepository(Protocol):
    """Protocol defining the interface for customer persistence."""

    async def get_by_name(self, name: str) -> Optional[Customer]:
        """Get a customer and its projects by account login."""
        ...

    async def create_with_projects(
        self,
        name: str,
        project_names: Iterable[str],
        usage_limit: int,
    ) -> Customer:
        """Create a customer and its projects in one transaction."""
        ...

    async def delete_by_name(self, name: str) -> None:
        """Delete a customer and its projects.

        Raises:
            CustomerNotFoundError: If no customer has this login.
        """
        ...

    async def upsert(self, name: str, usage_limit: int) -> Customer:
        """Return the customer with this login, creating it if absent."""
        ...

    async def sync_projects(
        self,
        customer_id: str,
        add_names: Iterable[str],
        remove_names: Iterable[str],
    ) -> None:
        """Create and delete projects as one logical unit.

        Creation skips names that already exist. Deletion of names that do
        not exist is a no-op.
        """
        ...

    async def mark_usage_warned(self, customer_id: str) -> None:
        """Record that the billing-warning issue was opened."""
        ...

    async def increment_usage(self, customer_id: str) -> None:
        """Atomically add one to usage and stamp usage_updated_at."""
        ...


class PostgresCustomerRepository:
    """PostgreSQL implementation of the CustomerRepository protocol.

    The repository expects the schema from migrations/001_customers.sql
    to be applied before use.

    Attributes:
        connection_string: PostgreSQL connection URL.
        min_pool_size: Minimum connections in pool.
        max_pool_size: Maximum connections in pool.

    Example:
        >>> async with PostgresCustomerRepository("postgresql://...") as repo:
        ...     customer = await repo.get_by_name("acme")
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool, raising if not connected.

        Raises:
            DatabaseError: If the pool is not initialized.
        """
        if self._pool is None:
            raise DatabaseError(
                "Database pool not initialized. Call connect() first."
            )
        return self._pool

    async def connect(self) -> None:
        """Initialize the connection pool.

        Raises:
            DatabaseError: If connection fails.
        """
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            logger.info(
                "Connecting to PostgreSQL",
                extra={
                    "min_pool_size": self.min_pool_size,
                    "max_pool_size": self.max_pool_size,
                },
            )
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
            logger.info("PostgreSQL connection pool established")
        except Exception as e:
            logger.error(
                "Failed to connect to PostgreSQL",
                extra={"error": str(e)},
            )
            raise DatabaseError(
                f"Failed to connect to PostgreSQL: {e}",
                original_error=e,
            ) from e

    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            logger.info("Closing PostgreSQL connection pool")
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "PostgresCustomerRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Create a transaction context for atomic operations.

        Yields:
            A connection with an active transaction.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def get_by_name(self, name: str) -> Optional[Customer]:
        try:
            async with self.pool.acquire() as conn:
                return await self._fetch_customer(conn, name)
        except Exception as e:
            logger.error(
                "Failed to get customer",
                extra={"customer": name, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to get customer: {e}",
                original_error=e,
            ) from e

    async def create_with_projects(
        self,
        name: str,
        project_names: Iterable[str],
        usage_limit: int,
    ) -> Customer:
        customer_id = _new_id()
        names = list(dict.fromkeys(project_names))

        try:
            async with self._transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO customers (id, name, usage_limit)
                    VALUES ($1, $2, $3)
                    """,
                    customer_id,
                    name,
                    usage_limit,
                )
                await self._insert_projects(conn, customer_id, names)
                customer = await self._fetch_customer(conn, name)

            logger.info(
                "Created customer",
                extra={"customer": name, "projects": len(names)},
            )
            return customer

        except asyncpg.UniqueViolationError as e:
            raise DatabaseError(
                f"Customer already exists: {name}",
                original_error=e,
            ) from e
        except Exception as e:
            logger.error(
                "Failed to create customer",
                extra={"customer": name, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to create customer: {e}",
                original_error=e,
            ) from e

    async def delete_by_name(self, name: str) -> None:
        try:
            async with self.pool.acquire() as conn:
                status = await conn.execute(
                    "DELETE FROM customers WHERE name = $1",
                    name,
                )
        except Exception as e:
            raise DatabaseError(
                f"Failed to delete customer: {e}",
                original_error=e,
            ) from e

        if status.endswith(" 0"):
            raise CustomerNotFoundError(name)

        logger.info("Deleted customer", extra={"customer": name})

    async def upsert(self, name: str, usage_limit: int) -> Customer:
        try:
            async with self._transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO customers (id, name, usage_limit)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (name) DO NOTHING
                    """,
                    _new_id(),
                    name,
                    usage_limit,
                )
                customer = await self._fetch_customer(conn, name)
        except Exception as e:
            logger.error(
                "Failed to upsert customer",
                extra={"customer": name, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to upsert customer: {e}",
                original_error=e,
            ) from e

        if customer is None:
            raise CustomerNotFoundError(name)
        return customer

    async def sync_projects(
        self,
        customer_id: str,
        add_names: Iterable[str],
        remove_names: Iterable[str],
    ) -> None:
        added = list(dict.fromkeys(add_names))
        removed = list(dict.fromkeys(remove_names))

        try:
            async with self._transaction() as conn:
                await self._insert_projects(conn, customer_id, added)
                if removed:
                    await conn.execute(
                        """
                        DELETE FROM projects
                        WHERE customer_id = $1 AND name = ANY($2::text[])
                        """,
                        customer_id,
                        removed,
                    )
        except Exception as e:
            logger.error(
                "Failed to sync projects",
                extra={"customer_id": customer_id, "error": str(e)},
            )
            raise DatabaseError(
                f"Failed to sync projects: {e}",
                original_error=e,
            ) from e

        logger.info(
            "Synced projects",
            extra={
                "customer_id": customer_id,
                "added": len(added),
                "removed": len(removed),
            },
        )

    async def mark_usage_warned(self, customer_id: str) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    "UPDATE customers SET usage_warned = TRUE WHERE id = $1",
                    customer_id,
                )
        except Exception as e:
            raise DatabaseError(
                f"Failed to mark usage warned: {e}",
                original_error=e,
            ) from e

    async def increment_usage(self, customer_id: str) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    UPDATE customers
                    SET usage = usage + 1, usage_updated_at = $2
                    WHERE id = $1
                    """,
                    customer_id,
                    datetime.now(timezone.utc),
                )
        except Exception as e:
            raise DatabaseError(
                f"Failed to increment usage: {e}",
                original_error=e,
            ) from e

    async def _insert_projects(
        self,
        conn: asyncpg.Connection,
        customer_id: str,
        names: List[str],
    ) -> None:
        """Insert projects, skipping names the customer already has."""
        if not names:
            return
        await conn.executemany(
            """
            INSERT INTO projects (id, name, customer_id)
            VALUES ($1, $2, $3)
            ON CONFLICT (customer_id, name) DO NOTHING
            """,
            [(_new_id(), name, customer_id) for name in names],
        )

    async def _fetch_customer(
        self,
        conn: asyncpg.Connection,
        name: str,
    ) -> Optional[Customer]:
        """Load a customer row and its projects."""
        row = await conn.fetchrow(
            """
            SELECT id, name, usage, usage_limit, usage_warned, usage_updated_at
            FROM customers
            WHERE name = $1
            """,
            name,
        )
        if row is None:
            return None

        project_rows = await conn.fetch(
            "SELECT id, name FROM projects WHERE customer_id = $1 ORDER BY name",
            row["id"],
        )

        updated_at = row["usage_updated_at"]
        if updated_at is not None and updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return Customer(
            id=row["id"],
            name=row["name"],
            usage=row["usage"],
            usage_limit=row["usage_limit"],
            usage_warned=row["usage_warned"],
            usage_updated_at=updated_at,
            projects=[
                Project(id=pr["id"], name=pr["name"], customer_id=row["id"])
                for pr in project_rows
            ],
        )
