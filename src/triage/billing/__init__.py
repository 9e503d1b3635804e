"""Payment link generation for billing-warning issues."""

from src.triage.billing.payment_links import (
    PaymentLinkError,
    PaymentLinkProvider,
    StripePaymentLinks,
)

__all__ = [
    "PaymentLinkError",
    "PaymentLinkProvider",
    "StripePaymentLinks",
]
