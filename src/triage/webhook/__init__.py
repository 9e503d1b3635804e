"""GitHub webhook verification and parsing.

Deliveries handled by the service:
- installation.created / installation.deleted
- installation_repositories.added / installation_repositories.removed
- issues.opened
- issue_comment.created

Everything else is acknowledged as an OtherEvent.
"""

from src.triage.webhook.handler import MalformedEventError, WebhookHandler
from src.triage.webhook.models import (
    EventKind,
    InstallationEvent,
    InstallationRepositoriesEvent,
    IssueCommentEvent,
    IssueOpenedEvent,
    OtherEvent,
    WebhookEvent,
)
from src.triage.webhook.signature import compute_signature, verify_signature

__all__ = [
    "EventKind",
    "InstallationEvent",
    "InstallationRepositoriesEvent",
    "IssueCommentEvent",
    "IssueOpenedEvent",
    "MalformedEventError",
    "OtherEvent",
    "WebhookEvent",
    "WebhookHandler",
    "compute_signature",
    "verify_signature",
]
