"""Customer and project persistence.

Customers are created and removed by installation events; their usage
counters are advanced by the usage gate after each applied label.
"""

from src.triage.state.memory import InMemoryCustomerRepository
from src.triage.state.models import Customer, Project
from src.triage.state.repository import (
    CustomerNotFoundError,
    CustomerRepository,
    DatabaseError,
    PostgresCustomerRepository,
)

__all__ = [
    "Customer",
    "CustomerNotFoundError",
    "CustomerRepository",
    "DatabaseError",
    "InMemoryCustomerRepository",
    "PostgresCustomerRepository",
    "Project",
]
