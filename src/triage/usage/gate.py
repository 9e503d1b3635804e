"""Usage gating for billed labeling operations.

A customer whose usage exceeds its limit may not trigger another
labeling. The first gated request of a billing cycle opens a warning
issue with a payment link on the triggering repository; later gated
requests only receive the payment-required response until the flag is
cleared by billing.
"""

import logging
from typing import Optional

from src.triage.billing.payment_links import PaymentLinkProvider
from src.triage.deadline import with_deadline
from src.triage.errors import QuotaExceededError, TriageError, UpstreamError
from src.triage.github.client import GitHubClient
from src.triage.metrics import TriageMetrics
from src.triage.state.models import Customer
from src.triage.state.repository import CustomerRepository

logger = logging.getLogger(__name__)

WARNING_ISSUE_TITLE = "Usage"
BILLING_PLAN = "base"


def format_warning_body(payment_link: str) -> str:
    """Build the markdown body of the billing-warning issue."""
    return (
        "Thanks for trying Triage Bot.\n\n"
        "Running LLM-based services is pricey. At this point, we ask you to "
        "add payment info to continue using Triage Bot.\n\n"
        f"[Add payment info]({payment_link})\n\n"
        "Feel free to close this issue."
    )


class UsageGate:
    """Decides whether a customer may consume one more labeling.

    Attributes:
        repository: Customer persistence.
        payment_links: Payment link provider for warning issues.
        timeout: Deadline in seconds for each external call.
    """

    def __init__(
        self,
        repository: CustomerRepository,
        payment_links: PaymentLinkProvider,
        timeout: float = 30.0,
        metrics: Optional[TriageMetrics] = None,
    ):
        self.repository = repository
        self.payment_links = payment_links
        self.timeout = timeout
        self.metrics = metrics

    async def check(
        self,
        customer: Customer,
        github: GitHubClient,
        repository_node_id: str,
        repository_name: str = "",
    ) -> None:
        """Gate a labeling request on the customer's usage.

        Args:
            customer: The customer owning the repository.
            github: Installation client used to open the warning issue.
            repository_node_id: GraphQL id of the triggering repository.
            repository_name: Full repository name, for logs.

        Raises:
            QuotaExceededError: If the customer is over its limit.
            UpstreamError: If the warning issue could not be opened.
        """
        if not customer.over_limit:
            return

        warned_now = False
        if not customer.usage_warned:
            try:
                await self._open_warning_issue(customer, github, repository_node_id)
                await with_deadline(
                    self.repository.mark_usage_warned(customer.id),
                    self.timeout,
                    "Marking usage warned",
                )
            except TriageError as e:
                logger.warning(
                    "Could not open usage issue",
                    extra={"repository": repository_name, "error": e.message},
                )
                raise UpstreamError("Could not open usage issue", cause=e) from e

            warned_now = True
            logger.info("Usage issue opened", extra={"repository": repository_name})

        if self.metrics is not None:
            self.metrics.record_usage_gated(warned=warned_now)

        logger.warning(
            "Usage limit exceeded",
            extra={
                "repository": repository_name,
                "usage": customer.usage,
                "usage_limit": customer.usage_limit,
            },
        )
        raise QuotaExceededError("Please add payment info to continue.")

    async def record_usage(self, customer: Customer) -> None:
        """Count one successful label application.

        Args:
            customer: The customer whose usage advances.
        """
        await with_deadline(
            self.repository.increment_usage(customer.id),
            self.timeout,
            "Incrementing usage",
        )

    async def _open_warning_issue(
        self,
        customer: Customer,
        github: GitHubClient,
        repository_node_id: str,
    ) -> None:
        payment_link = await with_deadline(
            self.payment_links.create_payment_link(customer.id, BILLING_PLAN),
            self.timeout,
            "Creating payment link",
        )
        await with_deadline(
            github.create_issue(
                repository_node_id,
                WARNING_ISSUE_TITLE,
                format_warning_body(payment_link),
            ),
            self.timeout,
            "Opening usage issue",
        )
