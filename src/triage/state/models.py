"""Customer and project models.

A customer is the GitHub account the app is installed on, identified by
its login. Each repository the installation covers is a project.

The models use Pydantic for validation, consistent with the webhook
models and config.py.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid.uuid4())


class Project(BaseModel):
    """A repository tracked for a customer.

    Attributes:
        id: Unique project identifier.
        name: Repository name without owner prefix. Unique per customer.
        customer_id: Identifier of the owning customer.
    """

    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)


class Customer(BaseModel):
    """A GitHub account with the app installed.

    Attributes:
        id: Unique customer identifier.
        name: GitHub account login. Unique.
        usage: Number of successful label applications in this cycle.
        usage_limit: Labelings allowed before payment is required.
        usage_warned: Whether the billing-warning issue was opened this cycle.
        usage_updated_at: When usage was last incremented.
        projects: Repositories covered by the installation.
    """

    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1)
    usage: int = Field(default=0, ge=0)
    usage_limit: int = Field(default=30, ge=0)
    usage_warned: bool = False
    usage_updated_at: Optional[datetime] = None
    projects: List[Project] = Field(default_factory=list)

    @property
    def over_limit(self) -> bool:
        """True when the customer may not trigger another labeling."""
        return self.usage > self.usage_limit

    @property
    def project_names(self) -> set[str]:
        return {project.name for project in self.projects}
