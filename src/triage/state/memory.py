"""In-memory customer repository.

Used for local development when no database URL is configured, and in
tests. A single asyncio lock serializes writes so project synchronization
behaves as one unit, like the PostgreSQL transaction.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional

from src.triage.state.models import Customer, Project
from src.triage.state.repository import CustomerNotFoundError, DatabaseError


class InMemoryCustomerRepository:
    """CustomerRepository backed by a dictionary keyed on customer login."""

    def __init__(self) -> None:
        self._customers: Dict[str, Customer] = {}
        self._lock = asyncio.Lock()

    async def get_by_name(self, name: str) -> Optional[Customer]:
        customer = self._customers.get(name)
        return customer.model_copy(deep=True) if customer else None

    async def create_with_projects(
        self,
        name: str,
        project_names: Iterable[str],
        usage_limit: int,
    ) -> Customer:
        async with self._lock:
            if name in self._customers:
                raise DatabaseError(f"Customer already exists: {name}")
            customer = Customer(name=name, usage_limit=usage_limit)
            for project_name in dict.fromkeys(project_names):
                customer.projects.append(
                    Project(name=project_name, customer_id=customer.id)
                )
            self._customers[name] = customer
            return customer.model_copy(deep=True)

    async def delete_by_name(self, name: str) -> None:
        async with self._lock:
            if self._customers.pop(name, None) is None:
                raise CustomerNotFoundError(name)

    async def upsert(self, name: str, usage_limit: int) -> Customer:
        async with self._lock:
            customer = self._customers.get(name)
            if customer is None:
                customer = Customer(name=name, usage_limit=usage_limit)
                self._customers[name] = customer
            return customer.model_copy(deep=True)

    async def sync_projects(
        self,
        customer_id: str,
        add_names: Iterable[str],
        remove_names: Iterable[str],
    ) -> None:
        async with self._lock:
            customer = self._by_id(customer_id)
            existing = customer.project_names
            for name in dict.fromkeys(add_names):
                if name not in existing:
                    customer.projects.append(
                        Project(name=name, customer_id=customer_id)
                    )
                    existing.add(name)
            removed = set(remove_names)
            customer.projects = [
                project for project in customer.projects
                if project.name not in removed
            ]

    async def mark_usage_warned(self, customer_id: str) -> None:
        async with self._lock:
            self._by_id(customer_id).usage_warned = True

    async def increment_usage(self, customer_id: str) -> None:
        async with self._lock:
            customer = self._by_id(customer_id)
            customer.usage += 1
            customer.usage_updated_at = datetime.now(timezone.utc)

    def _by_id(self, customer_id: str) -> Customer:
        for customer in self._customers.values():
            if customer.id == customer_id:
                return customer
        raise CustomerNotFoundError(customer_id)
