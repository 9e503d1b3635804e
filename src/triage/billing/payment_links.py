"""Payment link generation.

The usage gate embeds a payment link in the billing-warning issue. Links
are created through the Stripe Payment Links REST API, tagged with the
customer id so that the billing webhook (outside this service) can reset
the customer's usage once payment is added.
"""

import logging
from typing import Dict, Optional, Protocol, runtime_checkable

import httpx

from src.triage.errors import UpstreamError

logger = logging.getLogger(__name__)

STRIPE_API_URL = "https://api.stripe.com"


class PaymentLinkError(UpstreamError):
    """Raised when a payment link cannot be created."""


@runtime_checkable
class PaymentLinkProvider(Protocol):
    """Creates payment links for a customer and plan."""

    async def create_payment_link(self, customer_id: str, plan: str) -> str:
        """Return a URL where the customer can add payment info."""
        ...


class StripePaymentLinks:
    """PaymentLinkProvider backed by the Stripe REST API.

    Attributes:
        prices: Mapping from plan name to Stripe price id.
        base_url: Stripe API base URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        secret_key: str,
        prices: Dict[str, str],
        base_url: str = STRIPE_API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._secret_key = secret_key
        self.prices = prices
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def create_payment_link(self, customer_id: str, plan: str) -> str:
        """Create a single-use subscription link for a plan.

        Args:
            customer_id: Identifier of the customer being billed.
            plan: Plan name, e.g. "base".

        Returns:
            The payment link URL.

        Raises:
            PaymentLinkError: If the plan is unknown or Stripe fails.
        """
        price = self.prices.get(plan)
        if not price:
            raise PaymentLinkError(f"No price configured for plan: {plan}")

        form = {
            "line_items[0][price]": price,
            "line_items[0][quantity]": "1",
            "metadata[customerId]": customer_id,
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    "/v1/payment_links",
                    data=form,
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                )
        except httpx.RequestError as e:
            raise PaymentLinkError(f"Stripe request failed: {e}", cause=e) from e

        if response.status_code != 200:
            logger.error(
                "Stripe payment link error",
                extra={
                    "status_code": response.status_code,
                    "response": response.text[:500],
                },
            )
            raise PaymentLinkError(
                f"Stripe payment link error: {response.status_code}"
            )

        url = response.json().get("url")
        if not url:
            raise PaymentLinkError("Stripe response did not include a URL")

        logger.info(
            "Created payment link",
            extra={"customer_id": customer_id, "plan": plan},
        )
        return url
