"""Webhook service connecting verification, sync, gating and labeling.

Receives raw GitHub deliveries and drives them through:
signature check → parse → installation sync, or
customer lookup → usage gate → trigger checks → label selection → usage.

Each outcome maps to the HTTP status and message returned to GitHub.
Failures are raised as TriageError subclasses carrying their status;
the FastAPI exception handler turns them into responses.

Source:
- src/triage/webhook/signature.py (verify_signature)
- src/triage/webhook/handler.py (WebhookHandler)
- src/triage/installations/sync.py (InstallationSynchronizer)
- src/triage/usage/gate.py (UsageGate)
- src/triage/labeler/agent.py (LabelSelector)
- src/triage/metrics.py (TriageMetrics)
"""

import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from src.triage.deadline import with_deadline
from src.triage.errors import (
    AuthorizationError,
    NotFoundError,
    TriageError,
)
from src.triage.github.client import GitHubClient
from src.triage.installations.sync import InstallationSynchronizer
from src.triage.labeler.agent import LabelSelector
from src.triage.metrics import TriageMetrics
from src.triage.state.models import Customer
from src.triage.state.repository import CustomerRepository
from src.triage.usage.gate import UsageGate
from src.triage.webhook.handler import MalformedEventError, WebhookHandler
from src.triage.webhook.models import (
    InstallationEvent,
    InstallationRepositoriesEvent,
    IssueCommentEvent,
    OtherEvent,
)
from src.triage.webhook.signature import verify_signature

logger = logging.getLogger(__name__)


LABEL_COMMAND = "/label"
TRUSTED_ASSOCIATIONS = frozenset({"OWNER", "MEMBER", "COLLABORATOR"})

InstallationClientFactory = Callable[[int], Awaitable[GitHubClient]]


@dataclass(frozen=True)
class WebhookResponse:
    """Status and message returned for a delivery."""

    status_code: int
    message: str


class WebhookService:
    """Handles one GitHub delivery per call.

    Accepts all dependencies via constructor injection. A missing
    label_selector means no completion API key is configured, which
    fails every delivery before any other work.

    Attributes:
        webhook_secret: Shared secret for signature verification.
        repository: Customer persistence.
        synchronizer: Applies installation events.
        usage_gate: Refuses labeling for customers over their limit.
        label_selector: Chooses and attaches labels.
        client_factory: Returns an installation-scoped GitHubClient.
        handler: Parses payloads into typed events.
        timeout: Deadline in seconds for each external call.
        metrics: Prometheus metrics (optional).
    """

    def __init__(
        self,
        webhook_secret: str,
        repository: CustomerRepository,
        synchronizer: InstallationSynchronizer,
        usage_gate: UsageGate,
        label_selector: Optional[LabelSelector],
        client_factory: InstallationClientFactory,
        handler: Optional[WebhookHandler] = None,
        timeout: float = 30.0,
        metrics: Optional[TriageMetrics] = None,
    ):
        self.webhook_secret = webhook_secret
        self.repository = repository
        self.synchronizer = synchronizer
        self.usage_gate = usage_gate
        self.label_selector = label_selector
        self.client_factory = client_factory
        self.handler = handler or WebhookHandler()
        self.timeout = timeout
        self.metrics = metrics

    async def handle(
        self,
        body: bytes,
        signature: Optional[str],
        event_name: Optional[str] = None,
    ) -> WebhookResponse:
        """Process one delivery.

        Args:
            body: Raw request body bytes, exactly as received.
            signature: Value of the x-hub-signature-256 header.
            event_name: Value of the x-github-event header, if present.

        Returns:
            WebhookResponse for the success and acknowledged outcomes.

        Raises:
            TriageError: For every refused or failed delivery; the
                error's status_code is the HTTP response status.
        """
        kind = "unknown"
        try:
            if self.label_selector is None:
                raise TriageError("Missing OpenAI API key")

            if not verify_signature(body, signature, self.webhook_secret):
                logger.warning("Invalid webhook signature")
                raise AuthorizationError("Invalid signature")

            event = self.handler.parse_event(self._decode(body), event_name)
            kind = event.kind.value
            response = await self._dispatch(event)
        except TriageError as e:
            self._record(kind, e.status_code)
            raise

        self._record(kind, response.status_code)
        return response

    def _decode(self, body: bytes):
        try:
            return json.loads(body)
        except ValueError as e:
            raise MalformedEventError("Invalid JSON payload") from e

    async def _dispatch(self, event) -> WebhookResponse:
        if isinstance(event, (InstallationEvent, InstallationRepositoriesEvent)):
            result = await self.synchronizer.sync(event)
            return WebhookResponse(result.status_code, result.message)

        if isinstance(event, OtherEvent):
            return WebhookResponse(202, "Webhook received")

        return await self._label(event)

    async def _label(self, event) -> WebhookResponse:
        repository = event.repository
        customer = await self._find_customer(repository.owner, repository.full_name)

        async with await self.client_factory(event.installation_id) as github:
            await self.usage_gate.check(
                customer,
                github,
                repository.node_id,
                repository.full_name,
            )

            if isinstance(event, IssueCommentEvent):
                if LABEL_COMMAND not in event.comment.body:
                    return WebhookResponse(202, "Non-label comment received")
                if event.comment.author_association not in TRUSTED_ASSOCIATIONS:
                    return WebhookResponse(202, "Comment from non-collaborator received")

            await self.label_selector.label_issue(github, repository, event.issue)

        if self.metrics is not None:
            self.metrics.record_label_applied()

        try:
            await self.usage_gate.record_usage(customer)
        except TriageError as e:
            logger.error(
                "Could not record usage after labeling",
                extra={"customer": customer.name, "error": e.message},
            )

        return WebhookResponse(200, "Webhook received. Labels added.")

    async def _find_customer(self, owner: str, repository: str) -> Customer:
        customer = await with_deadline(
            self.repository.get_by_name(owner),
            self.timeout,
            "Looking up customer",
        )
        if customer is None:
            logger.error(
                "Could not find customer",
                extra={"customer": owner, "repository": repository},
            )
            raise NotFoundError("Could not find customer")
        return customer

    def _record(self, kind: str, status: int) -> None:
        if self.metrics is not None:
            self.metrics.record_webhook_event(kind, status)

