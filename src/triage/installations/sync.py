"""Installation synchronization.

Keeps the customer and project records in step with the GitHub App
installation lifecycle:

- installation.created: create the customer and its projects
- installation.deleted: delete the customer (best effort)
- installation_repositories.added/removed: reconcile projects by set
  difference, creating the customer if it does not exist yet
"""

import logging
from dataclasses import dataclass
from typing import Union

from src.triage.deadline import with_deadline
from src.triage.errors import TriageError, UpstreamError
from src.triage.state.repository import CustomerRepository
from src.triage.webhook.models import (
    EventKind,
    InstallationEvent,
    InstallationRepositoriesEvent,
)

logger = logging.getLogger(__name__)

InstallationLifecycleEvent = Union[InstallationEvent, InstallationRepositoriesEvent]


@dataclass(frozen=True)
class SyncResult:
    """Outcome of an installation event, as returned to the webhook caller."""

    status_code: int
    message: str


class InstallationSynchronizer:
    """Applies installation events to the customer repository.

    Attributes:
        repository: Customer persistence.
        usage_limit: Limit given to newly created customers.
        timeout: Deadline in seconds for each persistence call.
    """

    def __init__(
        self,
        repository: CustomerRepository,
        usage_limit: int = 30,
        timeout: float = 30.0,
    ):
        self.repository = repository
        self.usage_limit = usage_limit
        self.timeout = timeout

    async def sync(self, event: InstallationLifecycleEvent) -> SyncResult:
        """Apply one installation event.

        Args:
            event: A parsed installation or installation_repositories event.

        Returns:
            SyncResult with the HTTP status and message for the delivery.

        Raises:
            UpstreamError: If customer creation or project sync fails.
        """
        if event.kind == EventKind.INSTALLATION_CREATED:
            return await self._on_created(event)
        if event.kind == EventKind.INSTALLATION_DELETED:
            return await self._on_deleted(event)
        return await self._on_repositories_changed(event)

    async def _on_created(self, event: InstallationEvent) -> SyncResult:
        names = [repo.name for repo in event.repositories]
        await with_deadline(
            self.repository.create_with_projects(event.login, names, self.usage_limit),
            self.timeout,
            "Creating customer",
        )
        logger.info(
            "Installation created",
            extra={"customer": event.login, "projects": len(names)},
        )
        return SyncResult(200, f"Added customer {event.login}")

    async def _on_deleted(self, event: InstallationEvent) -> SyncResult:
        try:
            await with_deadline(
                self.repository.delete_by_name(event.login),
                self.timeout,
                "Deleting customer",
            )
            logger.info("Installation deleted", extra={"customer": event.login})
        except TriageError as e:
            logger.warning(
                "Could not delete customer",
                extra={"customer": event.login, "error": e.message},
            )
        return SyncResult(201, f"Deleted customer {event.login}")

    async def _on_repositories_changed(
        self, event: InstallationRepositoriesEvent
    ) -> SyncResult:
        try:
            customer = await with_deadline(
                self.repository.upsert(event.login, self.usage_limit),
                self.timeout,
                "Upserting customer",
            )
        except TriageError as e:
            logger.error(
                "Could not find or create customer",
                extra={"customer": event.login, "error": e.message},
            )
            raise UpstreamError(
                f"Could not find or create customer {event.login}", cause=e
            ) from e

        existing = customer.project_names
        new_repos = [
            repo.name for repo in event.repositories_added
            if repo.name not in existing
        ]
        removed_repos = [repo.name for repo in event.repositories_removed]

        await with_deadline(
            self.repository.sync_projects(customer.id, new_repos, removed_repos),
            self.timeout,
            "Syncing projects",
        )
        logger.info(
            "Installation repositories updated",
            extra={
                "customer": event.login,
                "added": len(new_repos),
                "removed": len(removed_repos),
            },
        )
        return SyncResult(201, f"Updated repos for {event.login}")
